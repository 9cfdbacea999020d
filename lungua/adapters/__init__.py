"""
Adapters for the collaborators the pipeline talks to.

Each adapter implements a protocol declared in ``lungua.services`` so the
pipeline can run against real hardware and services or against test doubles.
"""
