"""
Error taxonomy for the sensing pipeline.

Start errors are fatal to starting a session and carry a readable cause.
TransientFrameFailure is recovered inside the scheduler tick.
"""
from __future__ import annotations


class SensingError(Exception):
    """Base class for all sensing errors."""


class StartError(SensingError):
    """A session could not be started."""


class PermissionDenied(StartError):
    def __init__(self, kind: str, cause: str = ""):
        self.kind = kind
        self.cause = cause
        super().__init__(f"Permission denied for {kind} device" + (f": {cause}" if cause else ""))


class DeviceNotFound(StartError):
    def __init__(self, kind: str, cause: str = ""):
        self.kind = kind
        self.cause = cause
        super().__init__(f"No {kind} device found" + (f": {cause}" if cause else ""))


class DeviceCaptureError(StartError):
    """Acquisition failed for a reason that is neither permission nor absence."""
    def __init__(self, kind: str, cause: str = ""):
        self.kind = kind
        self.cause = cause
        super().__init__(f"Could not open {kind} device: {cause or 'unknown error'}")


class ModelUnavailable(StartError):
    """Both the full and the reduced landmark model failed to build."""


class AlreadyRunning(StartError):
    def __init__(self, modality: str):
        self.modality = modality
        super().__init__(f"{modality} analysis is already running")


class TransientFrameFailure(SensingError):
    """A single frame or sample could not be analyzed."""
