"""
Error taxonomy for sensor bring-up and the tracking loop.

Lifecycle operations (set_up, refresh_frame, run_process) catch these,
log them and report failure as a boolean; registry operations raise them.
"""


class TrackingError(RuntimeError):
    pass


class ConfigurationError(TrackingError):
    """Required document field missing or invalid, or a name collision."""


class DeviceError(TrackingError):
    """Capture device cannot be opened or configured."""


class CaptureError(TrackingError):
    """A frame read yielded no usable data."""


class SetupOrderError(TrackingError):
    """Operation invoked before a successful set_up()."""


class EndOfSequenceError(CaptureError):
    """An offline source has no further frames."""
