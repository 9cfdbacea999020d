"""
Error taxonomy for the telemetry pipeline.

None of these are fatal: peripheral errors degrade to an Error status badge,
backend and location errors are logged and worked around.
"""


class LunguaError(Exception):
    """Base class for all pipeline errors."""


class PeripheralError(LunguaError):
    """Failure while setting up or running a peripheral session."""

    retryable: bool = True


class PlatformUnsupported(PeripheralError):
    """The wireless stack is not available on this host."""

    retryable = False


class DeviceRejected(PeripheralError):
    """Device selection was cancelled or no matching device was found."""


class LinkError(PeripheralError):
    """The transport dropped or failed during session setup."""


class PayloadError(LunguaError):
    """A notification payload could not be decoded."""


class BackendUnreachable(LunguaError):
    """The anomaly logging backend could not be reached."""


class LocationDenied(LunguaError):
    """Location permission was denied or no fix is available."""
