# clockin/detect/__init__.py
"""
Face detection and validation.

Exports:
- UltraLightFaceDetector: TFLite RFB-320 detector, image mode
- FaceValidator / validate_detection: single-face rules for attendance
"""

from .detect import BoundingBox, Detection, DetectionResult, UltraLightFaceDetector
from .validation import FaceValidator, ValidationResult, validate_detection

__all__ = [
    'BoundingBox',
    'Detection',
    'DetectionResult',
    'UltraLightFaceDetector',
    'FaceValidator',
    'ValidationResult',
    'validate_detection',
]
