"""Domain models, error taxonomy and payload decoders."""
