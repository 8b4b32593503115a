# clockin/core/errors.py
"""
Exception hierarchy for the attendance pipeline.

Groups:
- Environment: camera, detector init/readiness
- Validation: face checks on a captured frame
- Business rule: weekend, already marked, geofence, clock-out without check-in
- Transport: upload, insert, existence query, timeouts

Lower layers raise these with a human readable message; only the
CaptureOrchestrator maps them to state transitions.
"""
from typing import Optional


class ClockInError(Exception):
    """Base class for every error raised by clockin."""


# === ENVIRONMENT ===

class CameraError(ClockInError):
    """Camera could not be started."""


class PermissionDenied(CameraError):
    def __init__(self, message: str = "Camera permission denied. Please allow camera access."):
        super().__init__(message)


class NoDevice(CameraError):
    def __init__(self, message: str = "No camera device found."):
        super().__init__(message)


class OtherCameraError(CameraError):
    pass


class DetectorInitError(ClockInError):
    """Face detector construction failed."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Face Detector initialization failed: {cause}")
        self.cause = cause


class DetectorNotReady(ClockInError):
    def __init__(self, message: str = "Face Detector not initialized. Call initialize() first."):
        super().__init__(message)


# === VALIDATION ===

class ValidationFailed(ClockInError):
    """Captured frame did not pass face validation."""

    def __init__(self, result):
        super().__init__(result.message)
        self.result = result


# === BUSINESS RULE ===

class BusinessRuleError(ClockInError):
    pass


class WeekendNotAllowed(BusinessRuleError):
    def __init__(self, message: str = "Attendance not allowed on weekends"):
        super().__init__(message)


class AlreadyMarked(BusinessRuleError):
    def __init__(self, message: str = "You have already marked attendance today."):
        super().__init__(message)


class OutsideGeofence(BusinessRuleError):
    pass


class NotCheckedIn(BusinessRuleError):
    def __init__(self, message: str = "No attendance record found for today to clock out."):
        super().__init__(message)


# === TRANSPORT ===

class TransportError(ClockInError):
    """Backend call failed. Retry is allowed at the submit stage."""


class UploadError(TransportError):
    pass


class DestinationMissingError(UploadError):
    """Storage bucket / directory does not exist."""


class InsertError(TransportError):
    pass


class OrphanedUploadError(InsertError):
    """
    Upload succeeded but the insert failed.

    The uploaded object is left in storage; `uploaded_path` lets the caller
    retry the insert or delete the orphan.
    """

    def __init__(self, message: str, uploaded_path: str, photo_url: Optional[str] = None):
        super().__init__(message)
        self.uploaded_path = uploaded_path
        self.photo_url = photo_url


class GuardCheckError(TransportError):
    """Same-day existence query failed; submission is blocked."""


class GatewayTimeout(TransportError):
    """The call did not answer in time; it may still complete in the background."""


class InsertOutcomeUnknown(GatewayTimeout):
    """
    The insert timed out after the photo was uploaded.

    The record may or may not have been written, so the photo is not an
    orphan yet; `discard_orphan()` checks for a persisted record first.
    """

    def __init__(self, message: str, uploaded_path: str, photo_url: Optional[str] = None):
        super().__init__(message)
        self.uploaded_path = uploaded_path
        self.photo_url = photo_url


# === STATE MACHINE ===

class InvalidTransition(ClockInError):
    def __init__(self, action: str, state):
        super().__init__(f"Cannot {action} while {getattr(state, 'value', state)}")
        self.action = action
        self.state = state


class CaptureCancelled(ClockInError):
    """The session was cancelled while this action was in flight; its result was dropped."""

    def __init__(self, message: str = "Capture cancelled"):
        super().__init__(message)
