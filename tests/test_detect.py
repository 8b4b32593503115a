import numpy as np
import pytest

from clockin.detect.detect import (
    DetectionResult,
    UltraLightFaceDetector,
    decode_boxes,
    generate_priors,
)
from conftest import face

NUM_PRIORS = 4420
# stride-64 map is 4x5 with sizes (128, 176, 256); row 1, col 2, size 128
FACE_PRIOR = 3600 + 600 + 160 + (1 * 5 + 2) * 3


class FakeInterpreter:
    """Float model that scores one prior as a face."""

    def __init__(self, hot_priors=(FACE_PRIOR,)):
        self.boxes = np.zeros((1, NUM_PRIORS, 4), dtype=np.float32)
        self.scores = np.zeros((1, NUM_PRIORS, 2), dtype=np.float32)
        self.scores[0, :, 0] = 1.0
        for idx in hot_priors:
            self.scores[0, idx] = (0.05, 0.95)
        self.input = None
        self.allocated = False

    def allocate_tensors(self):
        self.allocated = True

    def get_input_details(self):
        return [{
            'index': 0,
            'dtype': np.float32,
            'quantization_parameters': {'scales': np.array([]), 'zero_points': np.array([])},
        }]

    def get_output_details(self):
        return [{'index': 1}, {'index': 2}]

    def set_tensor(self, index, tensor):
        self.input = tensor

    def invoke(self):
        pass

    def get_tensor(self, index):
        return self.boxes if index == 1 else self.scores


def test_prior_count_for_320x240():
    priors = generate_priors()

    assert priors.shape == (NUM_PRIORS, 4)
    assert priors[FACE_PRIOR] == pytest.approx([0.5, 0.375, 0.4, 128 / 240])


def test_zero_offsets_decode_to_prior():
    priors = np.array([[0.5, 0.5, 0.2, 0.4]], dtype=np.float32)

    corners = decode_boxes(np.zeros((1, 4), dtype=np.float32), priors)

    assert corners[0] == pytest.approx([0.4, 0.3, 0.6, 0.7])


def test_detects_single_face():
    interpreter = FakeInterpreter()
    detector = UltraLightFaceDetector("model.tflite", interpreter_factory=lambda path: interpreter)
    frame = np.zeros((240, 320, 3), dtype=np.uint8)

    result = detector.detect(frame)

    assert interpreter.allocated
    assert interpreter.input.shape == (1, 240, 320, 3)
    assert result.face_count == 1
    box = result.bounding_box
    assert abs(box.width - 128) <= 2
    assert abs(box.height - 128) <= 2
    assert result.confidence == pytest.approx(0.95)


def test_boxes_scale_to_frame_size():
    detector = UltraLightFaceDetector("model.tflite", interpreter_factory=lambda path: FakeInterpreter())
    frame = np.zeros((480, 640, 3), dtype=np.uint8)

    box = detector.detect(frame).bounding_box

    assert abs(box.width - 256) <= 2
    assert abs(box.height - 256) <= 2


def test_nothing_above_threshold():
    detector = UltraLightFaceDetector("model.tflite", interpreter_factory=lambda path: FakeInterpreter(()))

    assert detector.detect(np.zeros((240, 320, 3), dtype=np.uint8)).face_count == 0


def test_result_box_only_for_single_face():
    assert DetectionResult([face(), face(x=300)]).bounding_box is None
    assert DetectionResult([face()]).bounding_box is not None
