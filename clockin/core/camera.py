# clockin/core/camera.py
"""
Camera capability.

The orchestrator only talks to the CameraDevice protocol: open a stream with
facing-mode and resolution hints, read still frames, stop. CameraManager is
the OpenCV implementation.

Usage:
    from clockin.core.camera import CameraManager

    camera = CameraManager()
    camera.open(facing_mode="user", width=640, height=480)
    frame = camera.read()
    camera.stop()
"""
import cv2
import time
import logging
import threading
from typing import Optional, Tuple, Protocol
from dataclasses import dataclass

import numpy as np

from .errors import CameraError, NoDevice, OtherCameraError, PermissionDenied

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("permission", "not authorized", "not permitted", "access denied")


class CameraDevice(Protocol):
    def open(self, facing_mode: str = "user", width: int = 640, height: int = 480) -> None: ...

    def read(self) -> Optional[np.ndarray]: ...

    def stop(self) -> None: ...

    def is_opened(self) -> bool: ...


@dataclass
class CameraConfig:
    """Camera configuration."""
    width: int = 640
    height: int = 480
    fps: int = 15
    buffer_size: int = 1
    warmup_frames: int = 5
    max_retries: int = 1      # busy/absent device only, never permission errors
    retry_delay: float = 1.0
    use_mjpg: bool = False


def classify_camera_error(exc: BaseException) -> CameraError:
    """Map a backend exception to PermissionDenied / NoDevice / OtherCameraError."""
    if isinstance(exc, CameraError):
        return exc
    if isinstance(exc, PermissionError):
        return PermissionDenied()
    text = str(exc).lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return PermissionDenied()
    if "not found" in text or "no such device" in text:
        return NoDevice()
    return OtherCameraError(f"Camera error: {exc}")


class CameraManager:
    """OpenCV video stream. `stop()` is idempotent."""

    def __init__(
        self,
        device_id: int = 0,
        config: Optional[CameraConfig] = None,
        is_pi: bool = False
    ):
        self.device_id = device_id
        self.config = config or CameraConfig()
        self.is_pi = is_pi
        self.facing_mode = "user"

        self._cap: Optional[cv2.VideoCapture] = None
        self._is_open = False

        if is_pi:
            self.config.use_mjpg = True
            self.config.fps = 15

    def open(self, facing_mode: str = "user", width: Optional[int] = None, height: Optional[int] = None) -> None:
        """
        Open the stream.

        OpenCV cannot pick a device by facing mode; the hint is recorded and
        `device_id` selects the camera.

        Raises:
            PermissionDenied, NoDevice, OtherCameraError
        """
        self.facing_mode = facing_mode
        if width:
            self.config.width = width
        if height:
            self.config.height = height

        for attempt in range(self.config.max_retries):
            try:
                self._cap = cv2.VideoCapture(self.device_id)
            except Exception as e:
                self._release_capture()
                raise classify_camera_error(e) from e

            if self._cap.isOpened():
                self._configure_camera()
                self._warmup()
                self._is_open = True
                actual_w, actual_h = self.get_resolution()
                logger.info(f"📹 Camera opened: {actual_w}x{actual_h} (facing={facing_mode})")
                return

            self._release_capture()
            if attempt < self.config.max_retries - 1:
                logger.warning(
                    f"⚠️ Camera not ready, retrying ({attempt + 1}/{self.config.max_retries})..."
                )
                time.sleep(self.config.retry_delay)

        logger.error(f"❌ No camera at device {self.device_id}")
        raise NoDevice()

    def _configure_camera(self):
        if self._cap is None:
            return

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, self.config.buffer_size)

        if self.is_pi:
            self._cap.set(cv2.CAP_PROP_FPS, self.config.fps)
            if self.config.use_mjpg:
                self._cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*'MJPG'))

    def _warmup(self):
        """Drop the first frames so exposure settles."""
        if self._cap is None:
            return
        for _ in range(self.config.warmup_frames):
            self._cap.grab()

    def read(self) -> Optional[np.ndarray]:
        """
        Read the current frame.

        Returns:
            BGR frame (numpy array) or None when the stream is closed or the
            read failed
        """
        if not self._is_open or self._cap is None:
            return None

        ret, frame = self._cap.read()
        if not ret:
            logger.warning("Could not read frame!")
            return None
        return frame

    def _release_capture(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def stop(self) -> None:
        """Release the stream. Safe to call repeatedly."""
        was_open = self._is_open or self._cap is not None
        self._release_capture()
        self._is_open = False
        if was_open:
            logger.info("📹 Camera released")

    # Compatible name
    release = stop

    def is_opened(self) -> bool:
        return self._is_open and self._cap is not None and self._cap.isOpened()

    def get_resolution(self) -> Tuple[int, int]:
        if self._cap is None:
            return (0, 0)
        return (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        )

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


class FrameBufferCamera:
    """
    CameraDevice fed from outside, e.g. frames posted by a browser.

    `push()` stores the latest frame; `read()` returns a copy of it.
    """

    def __init__(self):
        self.facing_mode = "user"
        self._frame: Optional[np.ndarray] = None
        self._is_open = False
        self._lock = threading.Lock()

    def open(self, facing_mode: str = "user", width: Optional[int] = None, height: Optional[int] = None) -> None:
        self.facing_mode = facing_mode
        self._is_open = True

    def push(self, frame: np.ndarray):
        if not self._is_open:
            raise OtherCameraError("Camera is not started")
        with self._lock:
            self._frame = frame

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if not self._is_open or self._frame is None:
                return None
            return self._frame.copy()

    def stop(self) -> None:
        with self._lock:
            self._frame = None
        self._is_open = False

    def is_opened(self) -> bool:
        return self._is_open


def create_camera(
    device_id: int = 0,
    width: int = 640,
    height: int = 480,
    is_pi: bool = False
) -> CameraManager:
    """Build a CameraManager with a platform-appropriate config."""
    config = CameraConfig(
        width=width,
        height=height,
        fps=15 if is_pi else 30,
        use_mjpg=is_pi
    )
    return CameraManager(device_id=device_id, config=config, is_pi=is_pi)
