# clockin/detect/detect.py
"""
Face detection on a single still frame.

Model: version-RFB-320 (Ultra-Light-Fast-Generic-Face-Detector), INT8 or
float TFLite export without post-processing.
- Input: [1, 240, 320, 3]
- Output: boxes [1, 4420, 4] and scores [1, 4420, 2]

Runs in image mode only: one call = one frame, no tracking between calls.
Inference is guarded by a lock so the detector can be shared by several
orchestrators.
"""
import logging
import threading
from dataclasses import dataclass, field
from math import ceil
from typing import Callable, List, Optional

import cv2
import numpy as np

from ..core.tflite_helper import get_interpreter

logger = logging.getLogger(__name__)

INPUT_SIZE = (320, 240)  # (width, height)
CENTER_VARIANCE = 0.1
SIZE_VARIANCE = 0.2
NMS_IOU_THRESHOLD = 0.3

FEATURE_STRIDES = (8, 16, 32, 64)
MIN_BOXES = ((10, 16, 24), (32, 48), (64, 96), (128, 176, 256))

# Fallback quantization when the model does not report its own
DEFAULT_INPUT_SCALE = 0.0078125
DEFAULT_INPUT_ZERO_POINT = -1


@dataclass(frozen=True)
class BoundingBox:
    """Pixel box in the coordinates of the analysed frame."""
    origin_x: float
    origin_y: float
    width: float
    height: float

    def as_xywh(self):
        return (int(self.origin_x), int(self.origin_y), int(self.width), int(self.height))


@dataclass(frozen=True)
class Detection:
    bounding_box: Optional[BoundingBox]
    confidence: Optional[float] = None


@dataclass(frozen=True)
class DetectionResult:
    """Output of one frame. Produced per capture, never persisted."""
    detections: List[Detection] = field(default_factory=list)

    @property
    def face_count(self) -> int:
        return len(self.detections)

    @property
    def bounding_box(self) -> Optional[BoundingBox]:
        if self.face_count != 1:
            return None
        return self.detections[0].bounding_box

    @property
    def confidence(self) -> Optional[float]:
        if self.face_count != 1:
            return None
        return self.detections[0].confidence


def generate_priors(input_size=INPUT_SIZE) -> np.ndarray:
    """
    Anchor boxes (cx, cy, w, h), normalised, in model output order.

    4420 priors for 320x240.
    """
    width, height = input_size
    feature_maps = [(ceil(height / s), ceil(width / s)) for s in FEATURE_STRIDES]

    total = sum(fh * fw * len(sizes) for (fh, fw), sizes in zip(feature_maps, MIN_BOXES))
    priors = np.empty((total, 4), dtype=np.float32)

    idx = 0
    for (fh, fw), sizes in zip(feature_maps, MIN_BOXES):
        for y in range(fh):
            cy = (y + 0.5) / fh
            for x in range(fw):
                cx = (x + 0.5) / fw
                for size in sizes:
                    priors[idx] = (cx, cy, size / width, size / height)
                    idx += 1
    return priors


def decode_boxes(encoded: np.ndarray, priors: np.ndarray) -> np.ndarray:
    """SSD decode to normalised corner form (x_min, y_min, x_max, y_max)."""
    centers = priors[:, :2] + encoded[:, :2] * CENTER_VARIANCE * priors[:, 2:]
    sizes = priors[:, 2:] * np.exp(encoded[:, 2:] * SIZE_VARIANCE)
    return np.concatenate([centers - sizes / 2, centers + sizes / 2], axis=1)


def _quant_param(detail: dict, key: str, default):
    values = detail.get('quantization_parameters', {}).get(key)
    if values is None or len(values) == 0:
        return default
    return values[0]


class UltraLightFaceDetector:
    """
    RFB-320 face detector over a TFLite interpreter.

    Construction loads the model and raises on failure; the ModelLoader turns
    that into DetectorInitError.
    """

    def __init__(
        self,
        model_path: str,
        conf_threshold: float = 0.6,
        interpreter_factory: Callable = get_interpreter,
    ):
        self._inference_lock = threading.Lock()
        self.model_path = model_path
        self.conf_threshold = conf_threshold

        self.interpreter = interpreter_factory(model_path)
        self.interpreter.allocate_tensors()
        input_details = self.interpreter.get_input_details()
        output_details = self.interpreter.get_output_details()

        self._input_index = input_details[0]['index']
        self._input_dtype = input_details[0].get('dtype', np.int8)
        self._input_scale = float(_quant_param(input_details[0], 'scales', DEFAULT_INPUT_SCALE))
        self._input_zero_point = int(_quant_param(input_details[0], 'zero_points', DEFAULT_INPUT_ZERO_POINT))

        self._outputs = [
            (
                d['index'],
                float(_quant_param(d, 'scales', 1.0)),
                int(_quant_param(d, 'zero_points', 0)),
            )
            for d in output_details
        ]
        self._priors = generate_priors(INPUT_SIZE)
        logger.info(f"[Detector] Loaded: {model_path} ({len(self._priors)} priors)")

    def _preprocess(self, frame: np.ndarray) -> np.ndarray:
        """Resize, BGR->RGB, scale to [-1, 1], quantize when the model is integer."""
        rgb = cv2.cvtColor(cv2.resize(frame, INPUT_SIZE), cv2.COLOR_BGR2RGB)
        normalized = (rgb.astype(np.float32) - 127.5) / 127.5

        if np.dtype(self._input_dtype) in (np.dtype(np.int8), np.dtype(np.uint8)):
            info = np.iinfo(self._input_dtype)
            quantized = np.round(normalized / self._input_scale + self._input_zero_point)
            tensor = np.clip(quantized, info.min, info.max).astype(self._input_dtype)
        else:
            tensor = normalized
        return np.expand_dims(tensor, axis=0)

    @staticmethod
    def _dequantize(raw: np.ndarray, scale: float, zero_point: int) -> np.ndarray:
        if raw.dtype in (np.int8, np.uint8):
            return (raw.astype(np.float32) - zero_point) * scale
        return raw.astype(np.float32)

    def detect_faces(self, frame: np.ndarray) -> List[Detection]:
        """
        Detect faces in one BGR frame.

        Returns:
            Detections with pixel boxes clipped to the frame, best first
        """
        h_img, w_img = frame.shape[:2]
        tensor = self._preprocess(frame)

        with self._inference_lock:
            self.interpreter.set_tensor(self._input_index, tensor)
            self.interpreter.invoke()
            outputs = [
                self._dequantize(np.array(self.interpreter.get_tensor(idx)[0], copy=True), scale, zp)
                for idx, scale, zp in self._outputs
            ]

        # boxes end in 4, scores end in 2
        boxes_enc = next(o for o in outputs if o.shape[-1] == 4)
        scores = next(o for o in outputs if o.shape[-1] == 2)[:, 1]

        mask = scores > self.conf_threshold
        if not np.any(mask):
            return []

        corners = decode_boxes(boxes_enc[mask], self._priors[mask])
        corners *= np.array([w_img, h_img, w_img, h_img], dtype=np.float32)
        kept_scores = scores[mask]

        xywh = [
            [int(x0), int(y0), int(x1 - x0), int(y1 - y0)]
            for x0, y0, x1, y1 in corners
        ]
        keep = cv2.dnn.NMSBoxes(xywh, kept_scores.tolist(), self.conf_threshold, NMS_IOU_THRESHOLD)

        detections = []
        for i in np.array(keep).flatten():
            x, y, w, h = xywh[i]
            x0, y0 = max(0, x), max(0, y)
            w = min(x + w, w_img) - x0
            h = min(y + h, h_img) - y0
            if w <= 0 or h <= 0:
                continue
            detections.append(Detection(
                bounding_box=BoundingBox(x0, y0, w, h),
                confidence=float(kept_scores[i]),
            ))
        detections.sort(key=lambda d: d.confidence or 0.0, reverse=True)
        return detections

    def detect(self, frame: np.ndarray) -> DetectionResult:
        return DetectionResult(detections=self.detect_faces(frame))
