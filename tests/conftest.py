from __future__ import annotations

import time
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np
import pytest

from clockin.core.model_loader import ModelLoader
from clockin.data.models import AttendanceRecord
from clockin.detect.detect import BoundingBox, Detection, DetectionResult

# 2024-03-04 is a Monday
TUESDAY_0905 = datetime(2024, 3, 5, 9, 5)
SATURDAY_0900 = datetime(2024, 3, 9, 9, 0)


def face(width=200, height=200, x=50, y=40, confidence=0.93) -> Detection:
    return Detection(BoundingBox(x, y, width, height), confidence)


class FakeCamera:
    def __init__(self, frame: Optional[np.ndarray] = None, open_error: Optional[BaseException] = None):
        self.frame = frame if frame is not None else np.zeros((480, 640, 3), dtype=np.uint8)
        self.open_error = open_error
        self.opened = False
        self.open_calls = 0
        self.stop_calls = 0
        self.last_open_args = None

    def open(self, facing_mode="user", width=None, height=None):
        self.open_calls += 1
        self.last_open_args = (facing_mode, width, height)
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def read(self):
        if not self.opened or self.frame is None:
            return None
        return self.frame.copy()

    def stop(self):
        self.stop_calls += 1
        self.opened = False

    def is_opened(self):
        return self.opened


class FakeDetector:
    def __init__(self, detections: List[Detection]):
        self.detections = list(detections)
        self.calls = 0

    def detect(self, frame) -> DetectionResult:
        self.calls += 1
        return DetectionResult(list(self.detections))


class InMemoryGateway:
    """DataAccessGateway in memory; `fail` maps an operation name to the error to raise."""

    def __init__(self):
        self.rows: Dict[Tuple[str, str], AttendanceRecord] = {}
        self.images: Dict[str, bytes] = {}
        self.fail: Dict[str, BaseException] = {}
        self.fail_once: Dict[str, BaseException] = {}
        self.upload_calls = 0
        self.insert_calls = 0
        self.query_calls = 0
        self.touched: List[str] = []
        self.upload_hook = None
        self.insert_hook = None

    def _maybe_fail(self, name):
        if name in self.fail_once:
            raise self.fail_once.pop(name)
        if name in self.fail:
            raise self.fail[name]

    def add(self, record: AttendanceRecord):
        self.rows[(record.subject_id, record.date)] = record

    def query_attendance_exists(self, subject_id, date):
        self.query_calls += 1
        self._maybe_fail("query")
        return (subject_id, date) in self.rows

    def upload_image(self, path, blob):
        self.upload_calls += 1
        if self.upload_hook is not None:
            self.upload_hook()
        self._maybe_fail("upload")
        self.images[path] = blob

    def resolve_public_url(self, path):
        self._maybe_fail("resolve")
        return f"https://storage.example/attendance-photos/{path}"

    def insert_attendance(self, record):
        self.insert_calls += 1
        if self.insert_hook is not None:
            self.insert_hook()
        self._maybe_fail("insert")
        self.add(record)

    def fetch_attendance(self, subject_id, date):
        return self.rows.get((subject_id, date))

    def update_check_out(self, subject_id, date, check_out_time):
        from clockin.core.errors import NotCheckedIn

        record = self.rows.get((subject_id, date))
        if record is None:
            raise NotCheckedIn()
        record = record.with_check_out(check_out_time)
        self.rows[(subject_id, date)] = record
        return record

    def list_attendance(self, subject_id, start_date, end_date):
        records = [
            r for (sid, d), r in self.rows.items()
            if sid == subject_id and start_date <= d <= end_date
        ]
        return sorted(records, key=lambda r: r.date, reverse=True)

    def delete_image(self, path):
        self.images.pop(path, None)

    def touch_last_seen(self, subject_id):
        self._maybe_fail("touch")
        self.touched.append(subject_id)


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def ready_loader():
    """Loader whose detector finds one 200x200 face."""
    loader = ModelLoader(factory=lambda: FakeDetector([face(200, 200)]))
    loader.initialize()
    return loader


def make_loader(detections: List[Detection]) -> ModelLoader:
    loader = ModelLoader(factory=lambda: FakeDetector(detections))
    loader.initialize()
    return loader
