# clockin/processing/capture.py
"""
Capture Orchestrator - one attendance attempt for one subject.

States:

    IDLE -> CAMERA_REQUESTED -> CAMERA_ACTIVE -> CAPTURING -> VALIDATING
        VALIDATING -> VALIDATION_FAILED -> CAMERA_ACTIVE
        VALIDATING -> CAPTURED -> SUBMITTING -> SUCCESS
                                  SUBMITTING -> SUBMIT_FAILED -> CAPTURED

Every user action is a method. Stages run one after another; the state lock
is held only for transitions so `cancel()` can interleave with a blocking
camera, detector or network call. Each cancel bumps a generation counter and
a stage that finishes under an old generation drops its result.

The orchestrator owns the camera stream: it is released on success, cancel,
close and context-manager exit.

Usage:
    with CaptureOrchestrator("E1", camera, loader, gateway) as session:
        session.start_camera()
        validation = session.capture()
        if validation.is_valid:
            record = session.submit()
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Protocol

import cv2
import numpy as np

from ..core.camera import classify_camera_error
from ..core.errors import (
    AlreadyMarked,
    CameraError,
    CaptureCancelled,
    ClockInError,
    GatewayTimeout,
    InsertOutcomeUnknown,
    InvalidTransition,
    OrphanedUploadError,
    OtherCameraError,
    TransportError,
    UploadError,
)
from ..core.settings import settings
from ..data.models import AttendanceRecord, GeoLocation
from ..detect.validation import FaceValidator, ValidationResult
from .attendance import AttendanceGuard, Geofence
from .time_policy import TimePolicy

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    CAMERA_REQUESTED = "camera_requested"
    CAMERA_ACTIVE = "camera_active"
    CAPTURING = "capturing"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    CAPTURED = "captured"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    SUBMIT_FAILED = "submit_failed"


class LocationProvider(Protocol):
    def get_location(self) -> Optional[GeoLocation]: ...


class StaticLocationProvider:
    """Fixed position, e.g. a kiosk bolted to the office wall."""

    def __init__(self, location: Optional[GeoLocation] = None):
        self.location = location

    def get_location(self) -> Optional[GeoLocation]:
        return self.location


@dataclass
class CapturedPhoto:
    """Validated frame held in memory until submit."""
    jpeg: bytes
    frame: np.ndarray
    validation: ValidationResult
    captured_at: datetime
    # Storage path, fixed by the first upload attempt and reused on retry
    upload_path: Optional[str] = None


def encode_jpeg(frame: np.ndarray, quality: int = 90) -> bytes:
    ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        raise OtherCameraError("Failed to capture image")
    return buffer.tobytes()


class CaptureOrchestrator:
    """State machine around camera, validator, guard, policy and gateway."""

    def __init__(
        self,
        subject_id: str,
        camera,
        loader,
        gateway,
        policy: Optional[TimePolicy] = None,
        location_provider: Optional[LocationProvider] = None,
        geofence: Optional[Geofence] = None,
        clock: Callable[[], datetime] = datetime.now,
        min_face_size: Optional[int] = None,
        jpeg_quality: Optional[int] = None,
        facing_mode: Optional[str] = None,
        resolution: Optional[tuple] = None,
        warm_detector: bool = True
    ):
        self.subject_id = subject_id
        self.camera = camera
        self.loader = loader
        self.gateway = gateway
        self.policy = policy or TimePolicy(settings.CHECK_IN_TIME, settings.LATE_LIMIT_MINUTES)
        self.guard = AttendanceGuard(gateway)
        self.validator = FaceValidator(loader, min_face_size or settings.MIN_FACE_SIZE)
        self.location_provider = location_provider
        self.geofence = geofence
        self.clock = clock
        self.jpeg_quality = jpeg_quality or settings.JPEG_QUALITY
        self.facing_mode = facing_mode or settings.FACING_MODE
        self.resolution = resolution or (settings.CAMERA_WIDTH, settings.CAMERA_HEIGHT)
        self.warm_detector = warm_detector

        self._lock = threading.Lock()
        self._state = CaptureState.IDLE
        self._generation = 0
        self._photo: Optional[CapturedPhoto] = None
        self.location: Optional[GeoLocation] = None
        self.last_message = ""
        self.last_validation: Optional[ValidationResult] = None
        self.record: Optional[AttendanceRecord] = None
        self.orphan_path: Optional[str] = None
        self._orphan_date: Optional[str] = None
        self._orphan_url: Optional[str] = None

    # === STATE HELPERS ===

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def photo(self) -> Optional[CapturedPhoto]:
        return self._photo

    def _begin(self, action: str, allowed, next_state: CaptureState) -> int:
        with self._lock:
            if self._state not in allowed:
                raise InvalidTransition(action, self._state)
            self._set_state(next_state)
            return self._generation

    def _advance(self, generation: int, next_state: CaptureState):
        """Move on, unless a cancel happened since `generation` was taken."""
        with self._lock:
            if generation != self._generation:
                raise CaptureCancelled()
            self._set_state(next_state)

    def _restore(self, generation: int, next_state: CaptureState):
        """Fall back after a failed stage; a no-op once cancelled."""
        with self._lock:
            if generation == self._generation:
                self._set_state(next_state)

    def _set_state(self, next_state: CaptureState):
        if next_state != self._state:
            logger.debug(f"[{self.subject_id}] {self._state.value} -> {next_state.value}")
        self._state = next_state

    # === ACTIONS ===

    def start_camera(self, location: Optional[GeoLocation] = None):
        """
        Request the location (optional) and open the video stream.

        Raises:
            PermissionDenied, NoDevice, OtherCameraError: state back to IDLE
            CaptureCancelled: cancelled while the camera was opening
        """
        generation = self._begin("start camera", (CaptureState.IDLE, CaptureState.SUCCESS),
                                 CaptureState.CAMERA_REQUESTED)
        self.record = None
        self.last_validation = None
        self.location = location or self._request_location()
        if self.warm_detector:
            self._warm_up_detector()

        width, height = self.resolution
        try:
            self.camera.open(facing_mode=self.facing_mode, width=width, height=height)
        except CameraError as e:
            self._restore(generation, CaptureState.IDLE)
            self.last_message = str(e)
            raise
        except Exception as e:
            self._restore(generation, CaptureState.IDLE)
            error = classify_camera_error(e)
            self.last_message = str(error)
            raise error from e

        try:
            self._advance(generation, CaptureState.CAMERA_ACTIVE)
        except CaptureCancelled:
            self.camera.stop()
            raise
        self.last_message = "Camera ready"
        logger.info(f"📷 [{self.subject_id}] Camera active")

    def _request_location(self) -> Optional[GeoLocation]:
        if self.location_provider is None:
            return None
        try:
            return self.location_provider.get_location()
        except Exception as e:
            logger.warning(f"⚠️ Location unavailable: {e}")
            return None

    def _warm_up_detector(self):
        """Start detector construction in the background if nobody has yet."""
        if self.loader.get_handle() is not None or self.loader.is_initializing:
            return

        def _init():
            try:
                self.loader.initialize()
            except ClockInError as e:
                logger.warning(f"⚠️ {e}")

        threading.Thread(target=_init, name="detector-init", daemon=True).start()

    def capture(self) -> ValidationResult:
        """
        Grab one frame and validate it.

        Returns the ValidationResult. An invalid result leaves the stream
        active (CAMERA_ACTIVE); a valid one holds the JPEG (CAPTURED).

        Raises:
            DetectorNotReady: back to CAMERA_ACTIVE
            OtherCameraError: no frame could be read
        """
        generation = self._begin("capture", (CaptureState.CAMERA_ACTIVE,), CaptureState.CAPTURING)
        try:
            frame = self.camera.read()
            if frame is None:
                raise OtherCameraError("Could not read frame from camera")
            frame = frame.copy()

            self._advance(generation, CaptureState.VALIDATING)
            validation = self.validator.validate(self.validator.detect(frame))
            self.last_validation = validation
            self.last_message = validation.message

            if not validation.is_valid:
                self._advance(generation, CaptureState.VALIDATION_FAILED)
                logger.info(f"[{self.subject_id}] {validation.message}")
                self._advance(generation, CaptureState.CAMERA_ACTIVE)
                return validation

            photo = CapturedPhoto(
                jpeg=encode_jpeg(frame, self.jpeg_quality),
                frame=frame,
                validation=validation,
                captured_at=self.clock(),
            )
        except CaptureCancelled:
            raise
        except Exception as e:
            self._restore(generation, CaptureState.CAMERA_ACTIVE)
            self.last_message = str(e)
            raise

        with self._lock:
            if generation != self._generation:
                raise CaptureCancelled()
            self._photo = photo
            self._set_state(CaptureState.CAPTURED)
        logger.info(f"📸 [{self.subject_id}] Frame captured ({len(photo.jpeg)} bytes)")
        return validation

    def retake(self):
        """Discard the captured photo and go back to the live stream."""
        self._begin("retake", (CaptureState.CAPTURED,), CaptureState.CAMERA_ACTIVE)
        self._photo = None
        self.last_validation = None
        self.last_message = "Camera ready"

    def submit(self) -> AttendanceRecord:
        """
        Guard check, time policy, geofence, upload, resolve URL, insert.

        Any failure returns to CAPTURED so the same photo can be submitted
        again.

        Raises:
            AlreadyMarked, WeekendNotAllowed, OutsideGeofence
            GuardCheckError: the same-day query failed, nothing was written
            UploadError: nothing was written
            GatewayTimeout: the upload may still land; `orphan_path` names it
            OrphanedUploadError: the photo is stored but no record exists
            InsertOutcomeUnknown: the insert timed out, the record may exist
        """
        generation = self._begin("submit", (CaptureState.CAPTURED,), CaptureState.SUBMITTING)
        photo = self._photo
        try:
            now = self.clock()
            date = now.strftime("%Y-%m-%d")

            self.guard.check(self.subject_id, date)
            self._advance(generation, CaptureState.SUBMITTING)

            decision = self.policy.evaluate(now)
            if self.geofence is not None:
                self.geofence.check(self.location)

            path = self._upload(photo, now, date)
            self._advance(generation, CaptureState.SUBMITTING)

            record = self._persist(path, decision)
        except CaptureCancelled:
            raise
        except Exception as e:
            self._restore(generation, CaptureState.SUBMIT_FAILED)
            logger.warning(f"⚠️ [{self.subject_id}] Submit failed: {e}")
            self._restore(generation, CaptureState.CAPTURED)
            self.last_message = str(e)
            raise

        try:
            self._advance(generation, CaptureState.SUCCESS)
        except CaptureCancelled:
            # The record is written; only the local session was cancelled
            logger.info(f"[{self.subject_id}] Cancelled after insert, record kept")
            self._forget_orphan()
            raise

        self.record = record
        self._photo = None
        self._forget_orphan()
        self.camera.stop()
        self.last_message = f"Attendance marked: {record.status.value} at {record.check_in_time}"
        logger.info(f"🟢 {self.subject_id} - CHECK-IN {record.check_in_time} ({record.status.value})")
        self._touch_last_seen()
        return record

    def _upload(self, photo: CapturedPhoto, now: datetime, date: str) -> str:
        """
        Upload the held photo and return its storage path.

        The path is tracked as a possible orphan before the call, since a
        timed-out upload can still land. A retry of the same photo reuses
        the path so it never leaves a second copy behind.
        """
        first_attempt = photo.upload_path is None
        if first_attempt:
            photo.upload_path = f"{self.subject_id}/{int(now.timestamp() * 1000)}.jpg"
        path = photo.upload_path

        previous = (self.orphan_path, self._orphan_date, self._orphan_url)
        self.orphan_path = path
        self._orphan_date = date
        self._orphan_url = None
        try:
            self.gateway.upload_image(path, photo.jpeg)
        except UploadError:
            # Refused outright: nothing of this photo is stored
            if first_attempt:
                self.orphan_path, self._orphan_date, self._orphan_url = previous
            raise
        return path

    def _persist(self, path: str, decision) -> AttendanceRecord:
        """Resolve the URL and insert; any failure here leaves `path` orphaned."""
        photo_url = None
        try:
            photo_url = self.gateway.resolve_public_url(path)
            self._orphan_url = photo_url
            record = AttendanceRecord(
                subject_id=self.subject_id,
                date=decision.date,
                check_in_time=decision.check_in_time,
                status=decision.status,
                photo_url=photo_url,
                location=self.location,
            )
            self.gateway.insert_attendance(record)
        except AlreadyMarked:
            raise
        except GatewayTimeout as e:
            if photo_url is None:
                logger.error(f"❌ Photo {path} uploaded but its URL could not be resolved: {e}")
                raise OrphanedUploadError(str(e), path) from e
            logger.warning(f"⏱️ Insert for {path} timed out, the record may still be written")
            raise InsertOutcomeUnknown(str(e), path, photo_url) from e
        except TransportError as e:
            logger.error(f"❌ Photo {path} uploaded but the record was not saved: {e}")
            raise OrphanedUploadError(str(e), path, photo_url) from e
        return record

    def _forget_orphan(self):
        self.orphan_path = None
        self._orphan_date = None
        self._orphan_url = None

    def _touch_last_seen(self):
        try:
            self.gateway.touch_last_seen(self.subject_id)
        except Exception as e:
            logger.warning(f"⚠️ Could not update last seen for {self.subject_id}: {e}")

    def discard_orphan(self) -> bool:
        """
        Delete the photo left behind by a failed insert.

        A record of the same day that points at the photo means the insert
        went through after all (e.g. after a timeout); the photo is kept.

        Returns:
            True if an orphan was deleted

        Raises:
            TransportError: the record lookup failed, nothing was deleted
        """
        path = self.orphan_path
        if path is None:
            return False

        url = self._orphan_url or self.gateway.resolve_public_url(path)
        record = self.gateway.fetch_attendance(self.subject_id, self._orphan_date)
        if record is not None and record.photo_url == url:
            logger.info(f"[{self.subject_id}] Photo {path} belongs to a saved record, not deleting")
            self._forget_orphan()
            return False

        self.gateway.delete_image(path)
        self._forget_orphan()
        logger.info(f"🗑️ Deleted orphaned photo {path}")
        return True

    def cancel(self):
        """Stop the stream and drop any captured photo. Safe in any state."""
        with self._lock:
            self._generation += 1
            previous = self._state
            self._set_state(CaptureState.IDLE)
            self._photo = None
        self.camera.stop()
        if previous not in (CaptureState.IDLE, CaptureState.SUCCESS):
            self.last_message = "Cancelled"
            logger.info(f"[{self.subject_id}] Cancelled from {previous.value}")

    def close(self):
        self.cancel()

    def snapshot(self) -> dict:
        """JSON-friendly view for the web API."""
        return {
            "subject_id": self.subject_id,
            "state": self._state.value,
            "message": self.last_message,
            "has_photo": self._photo is not None,
            "validation": self.last_validation.to_dict() if self.last_validation else None,
            "record": self.record.to_row() if self.record else None,
            "orphan_path": self.orphan_path,
        }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
