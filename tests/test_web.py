import io
import threading

import cv2
import numpy as np
import pytest

from clockin.core.camera import FrameBufferCamera
from clockin.core.errors import InsertError
from clockin.core.model_loader import ModelLoader
from clockin.data.gateway import TimeoutGateway
from clockin.data.models import AttendanceRecord, AttendanceStatus
from clockin.processing.capture import CaptureOrchestrator
from clockin.web.server import SessionRegistry, create_app

from conftest import TUESDAY_0905, FakeCamera, FakeDetector, face, make_loader


@pytest.fixture
def client(gateway, ready_loader):
    app = create_app(
        gateway=gateway,
        loader=ready_loader,
        camera_factory=lambda subject_id: FakeCamera(),
        clock=lambda: TUESDAY_0905,
        geofence=None,
        warm_detector=False,
    )
    app.testing = True
    return app.test_client()


def test_full_flow(client, gateway):
    assert client.post('/api/session/E1/camera').status_code == 200

    captured = client.post('/api/session/E1/capture').get_json()
    assert captured['success'] is True
    assert captured['state'] == 'captured'

    resp = client.post('/api/session/E1/submit')
    body = resp.get_json()

    assert resp.status_code == 201
    assert body['state'] == 'success'
    assert body['record']['status'] == 'Present'
    assert body['record']['check_in'] == '09:05'
    assert gateway.insert_calls == 1


def test_state_endpoint(client):
    body = client.get('/api/session/E2/state').get_json()

    assert body['state'] == 'idle'
    assert body['subject_id'] == 'E2'


def test_capture_before_camera_is_conflict(client):
    resp = client.post('/api/session/E1/capture')

    assert resp.status_code == 409
    assert resp.get_json()['type'] == 'InvalidTransition'


def test_already_marked_is_conflict(client, gateway):
    gateway.add(AttendanceRecord("E1", "2024-03-05", "09:00", AttendanceStatus.PRESENT, "u"))
    client.post('/api/session/E1/camera')
    client.post('/api/session/E1/capture')

    resp = client.post('/api/session/E1/submit')

    assert resp.status_code == 409
    assert resp.get_json()['error'] == "You have already marked attendance today."
    assert client.get('/api/session/E1/state').get_json()['state'] == 'captured'


def test_orphan_reported_and_discarded(client, gateway):
    gateway.fail_once["insert"] = InsertError("insert failed")
    client.post('/api/session/E1/camera')
    client.post('/api/session/E1/capture')

    resp = client.post('/api/session/E1/submit')
    body = resp.get_json()

    assert resp.status_code == 502
    assert body['type'] == 'OrphanedUploadError'
    assert body['uploaded_path'] in gateway.images

    discarded = client.post('/api/session/E1/orphan').get_json()
    assert discarded['deleted'] is True
    assert gateway.images == {}


def test_retake_and_cancel(client):
    client.post('/api/session/E1/camera')
    client.post('/api/session/E1/capture')

    assert client.post('/api/session/E1/retake').get_json()['state'] == 'camera_active'
    assert client.post('/api/session/E1/cancel').get_json()['state'] == 'idle'
    assert client.post('/api/session/E1/cancel').status_code == 200


def test_invalid_capture_returns_message(gateway):
    app = create_app(
        gateway=gateway,
        loader=make_loader([face(60, 60)]),
        camera_factory=lambda subject_id: FakeCamera(),
        clock=lambda: TUESDAY_0905,
        warm_detector=False,
    )
    client = app.test_client()
    client.post('/api/session/E1/camera')

    body = client.post('/api/session/E1/capture').get_json()

    assert body['success'] is False
    assert body['state'] == 'camera_active'
    assert body['validation']['message'].startswith("Face too small")


def test_uploaded_frame_feeds_session(gateway, ready_loader):
    app = create_app(gateway=gateway, loader=ready_loader, clock=lambda: TUESDAY_0905, warm_detector=False)
    client = app.test_client()
    ok, jpeg = cv2.imencode('.jpg', np.zeros((240, 320, 3), dtype=np.uint8))
    assert ok

    client.post('/api/session/E1/camera', json={'latitude': 21.0285, 'longitude': 105.8542})
    resp = client.post(
        '/api/session/E1/capture',
        data={'image': (io.BytesIO(jpeg.tobytes()), 'frame.jpg')},
        content_type='multipart/form-data',
    )

    assert resp.get_json()['state'] == 'captured'
    assert client.post('/api/session/E1/submit').get_json()['record']['latitude'] == 21.0285


def test_capture_without_frame_is_camera_error(gateway, ready_loader):
    app = create_app(gateway=gateway, loader=ready_loader, clock=lambda: TUESDAY_0905, warm_detector=False)
    client = app.test_client()
    client.post('/api/session/E1/camera')

    resp = client.post('/api/session/E1/capture')

    assert resp.status_code == 500
    assert resp.get_json()['type'] == 'OtherCameraError'


def test_bad_image_is_bad_request(client):
    client.post('/api/session/E1/camera')

    resp = client.post(
        '/api/session/E1/capture',
        data={'image': (io.BytesIO(b"not an image"), 'frame.jpg')},
        content_type='multipart/form-data',
    )

    assert resp.status_code == 400


def test_detector_not_ready_is_503(gateway):
    loader = ModelLoader(factory=lambda: FakeDetector([face()]))
    app = create_app(
        gateway=gateway,
        loader=loader,
        camera_factory=lambda subject_id: FakeCamera(),
        clock=lambda: TUESDAY_0905,
        warm_detector=False,
    )
    client = app.test_client()
    client.post('/api/session/E1/camera')

    assert client.post('/api/session/E1/capture').status_code == 503
    assert client.post('/api/detector').status_code == 200
    assert client.get('/api/health').get_json()['detector_ready'] is True


def test_detector_init_failure_is_503(gateway):
    def broken():
        raise RuntimeError("no model")

    app = create_app(gateway=gateway, loader=ModelLoader(factory=broken), warm_detector=False)

    resp = app.test_client().post('/api/detector')

    assert resp.status_code == 503
    assert "no model" in resp.get_json()['error']


def test_clock_out_history_and_stats(client, gateway):
    gateway.add(AttendanceRecord("E1", "2024-03-04", "09:35", AttendanceStatus.LATE, "u"))
    gateway.add(AttendanceRecord("E1", "2024-03-05", "09:00", AttendanceStatus.PRESENT, "u"))

    out = client.post('/api/attendance/E1/clock-out').get_json()
    history = client.get('/api/attendance/E1/history?year=2024&month=3').get_json()
    stats = client.get('/api/attendance/E1/stats?year=2024&month=3').get_json()
    today = client.get('/api/attendance/E1/today').get_json()

    assert out['record']['check_out'] == '09:05'
    assert [r['date'] for r in history] == ['2024-03-05', '2024-03-04']
    assert stats['present_days'] == 2
    assert stats['late_days'] == 1
    assert today['marked'] is True


def test_clock_out_without_check_in_is_404(client):
    resp = client.post('/api/attendance/E9/clock-out')

    assert resp.status_code == 404
    assert resp.get_json()['type'] == 'NotCheckedIn'


def test_invalid_month_is_bad_request(client):
    assert client.get('/api/attendance/E1/stats?year=2024&month=13').status_code == 400


def test_default_camera_is_frame_buffer(gateway, ready_loader):
    app = create_app(gateway=gateway, loader=ready_loader, warm_detector=False)

    session = app.extensions['clockin']['sessions'].get('E1')

    assert isinstance(session.camera, FrameBufferCamera)


def test_finished_sessions_are_dropped(client, gateway):
    sessions = client.application.extensions['clockin']['sessions']

    client.post('/api/session/E1/camera')
    client.post('/api/session/E1/capture')
    client.post('/api/session/E1/submit')
    client.post('/api/session/E2/camera')
    client.post('/api/session/E2/cancel')

    assert len(sessions) == 0


def test_session_with_orphan_is_kept(client, gateway):
    sessions = client.application.extensions['clockin']['sessions']
    gateway.fail_once["insert"] = InsertError("insert failed")
    client.post('/api/session/E1/camera')
    client.post('/api/session/E1/capture')
    client.post('/api/session/E1/submit')

    client.post('/api/session/E1/cancel')

    assert len(sessions) == 1
    assert client.get('/api/session/E1/state').get_json()['orphan_path'] in gateway.images


def test_idle_sessions_expire():
    now = [0.0]
    cameras = []

    def make_session(subject_id):
        camera = FakeCamera()
        cameras.append(camera)
        return CaptureOrchestrator(subject_id, camera, make_loader([face()]), None, warm_detector=False)

    registry = SessionRegistry(make_session, idle_ttl=60, clock=lambda: now[0])
    registry.get('E1').start_camera()
    registry.get('E2')

    now[0] = 30.0
    registry.get('E2')
    now[0] = 70.0
    registry.get('E3')

    assert len(registry) == 2
    assert not cameras[0].opened
    assert registry.get('E2') is not None


def test_insert_timeout_is_504_with_uploaded_path(gateway, ready_loader):
    release = threading.Event()
    gateway.insert_hook = lambda: release.wait(timeout=5)
    wrapped = TimeoutGateway(gateway, timeout=0.1)
    app = create_app(
        gateway=wrapped,
        loader=ready_loader,
        camera_factory=lambda subject_id: FakeCamera(),
        clock=lambda: TUESDAY_0905,
        warm_detector=False,
    )
    client = app.test_client()
    client.post('/api/session/E1/camera')
    client.post('/api/session/E1/capture')

    resp = client.post('/api/session/E1/submit')
    body = resp.get_json()
    release.set()

    assert resp.status_code == 504
    assert body['type'] == 'InsertOutcomeUnknown'
    assert body['uploaded_path'] in gateway.images
    wrapped.shutdown()
