# clockin/processing/display.py
"""
Preview overlay.

Draws detection boxes on the captured frame (first face green, others red)
and a one-line status banner for the CLI preview window.

Usage:
    display = DisplayHandler()
    display.draw_detections(frame, detection_result)
    display.draw_message(frame, "Face detected!", ok=True)
"""
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from ..detect.detect import DetectionResult


@dataclass
class ColorScheme:
    """BGR colours."""
    PRIMARY_FACE: Tuple[int, int, int] = (0, 255, 0)
    OTHER_FACE: Tuple[int, int, int] = (0, 0, 255)
    OK: Tuple[int, int, int] = (0, 200, 0)
    ERROR: Tuple[int, int, int] = (0, 0, 255)
    INFO: Tuple[int, int, int] = (200, 200, 200)


class DisplayHandler:
    def __init__(
        self,
        overlay_enabled: bool = True,
        colors: Optional[ColorScheme] = None,
        font: int = cv2.FONT_HERSHEY_SIMPLEX,
        font_scale: float = 0.6,
        thickness: int = 2
    ):
        self.enabled = overlay_enabled
        self.colors = colors or ColorScheme()
        self.font = font
        self.font_scale = font_scale
        self.thickness = thickness

    def draw_detections(self, frame: np.ndarray, result: DetectionResult) -> np.ndarray:
        """
        Draw every detection box with its index and confidence.

        Detections without a bounding box are skipped.
        """
        if not self.enabled:
            return frame

        for index, detection in enumerate(result.detections):
            box = detection.bounding_box
            if box is None:
                continue
            x, y, w, h = box.as_xywh()
            color = self.colors.PRIMARY_FACE if index == 0 else self.colors.OTHER_FACE

            cv2.rectangle(frame, (x, y), (x + w, y + h), color, self.thickness)
            cv2.putText(frame, f"Face {index + 1}", (x, max(0, y - 5)),
                        self.font, self.font_scale, color, self.thickness)
            if detection.confidence:
                cv2.putText(frame, f"Confidence: {detection.confidence * 100:.1f}%",
                            (x, y + h + 20), self.font, self.font_scale, color, self.thickness)
        return frame

    def draw_message(self, frame: np.ndarray, message: str, ok: bool = True,
                     position: Tuple[int, int] = (10, 30)) -> np.ndarray:
        if not self.enabled or not message:
            return frame
        color = self.colors.OK if ok else self.colors.ERROR
        cv2.putText(frame, message, position, self.font, self.font_scale, color, self.thickness)
        return frame

    def draw_help(self, frame: np.ndarray, text: str) -> np.ndarray:
        if not self.enabled:
            return frame
        h = frame.shape[0]
        cv2.putText(frame, text, (10, h - 10), self.font, 0.4, self.colors.INFO, 1)
        return frame

    def show(self, window_name: str, frame: np.ndarray) -> int:
        """Show `frame` and return the pressed key, -1 when disabled."""
        if not self.enabled:
            return -1
        cv2.imshow(window_name, frame)
        return cv2.waitKey(1) & 0xFF

    def destroy_windows(self):
        if self.enabled:
            cv2.destroyAllWindows()
