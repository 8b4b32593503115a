# clockin/detect/validation.py
"""
Face validation for attendance frames.

`FaceValidator.validate` is pure: it only looks at a DetectionResult, so every
branch can be checked with hand-made results. `FaceValidator.detect` runs the
model through the ModelLoader handle.

Rules, first match wins:
    1. no face
    2. more than one face
    3. one face without a bounding box
    4. box smaller than MIN_FACE_SIZE in width or height
    5. valid
"""
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..core.errors import DetectorNotReady
from .detect import BoundingBox, DetectionResult

MIN_FACE_SIZE = 100  # px

MSG_NO_FACE = "No face detected. Please face the camera."
MSG_MULTIPLE = "Multiple faces detected ({count}). Only one person is allowed."
MSG_NO_BOX = "Face detected but unable to determine size. Try again."
MSG_TOO_SMALL = "Face too small. Move closer to the camera. (Size: {width}x{height}px)"
MSG_VALID = "Face detected! Ready for attendance."


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    message: str
    face_count: int
    bounding_box: Optional[BoundingBox] = None
    confidence: Optional[float] = None

    def to_dict(self) -> dict:
        box = self.bounding_box
        return {
            "is_valid": self.is_valid,
            "message": self.message,
            "face_count": self.face_count,
            "bounding_box": None if box is None else {
                "origin_x": box.origin_x,
                "origin_y": box.origin_y,
                "width": box.width,
                "height": box.height,
            },
            "confidence": self.confidence,
        }


def validate_detection(result: DetectionResult, min_face_size: int = MIN_FACE_SIZE) -> ValidationResult:
    face_count = result.face_count

    if face_count == 0:
        return ValidationResult(False, MSG_NO_FACE, 0)

    if face_count > 1:
        return ValidationResult(False, MSG_MULTIPLE.format(count=face_count), face_count)

    detection = result.detections[0]
    box = detection.bounding_box
    if box is None:
        return ValidationResult(False, MSG_NO_BOX, 1)

    if box.width < min_face_size or box.height < min_face_size:
        message = MSG_TOO_SMALL.format(width=round(box.width), height=round(box.height))
        return ValidationResult(False, message, 1, box)

    return ValidationResult(True, MSG_VALID, 1, box, detection.confidence)


class FaceValidator:
    """Runs detection with the loader's detector and applies the rules."""

    def __init__(self, loader, min_face_size: int = MIN_FACE_SIZE):
        self.loader = loader
        self.min_face_size = min_face_size

    def detect(self, frame: np.ndarray) -> DetectionResult:
        """
        Raises:
            DetectorNotReady: the loader has no handle yet
        """
        detector = self.loader.get_handle()
        if detector is None:
            raise DetectorNotReady()
        return detector.detect(frame)

    def validate(self, result: DetectionResult) -> ValidationResult:
        return validate_detection(result, self.min_face_size)
