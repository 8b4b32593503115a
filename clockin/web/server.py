# clockin/web/server.py
"""
JSON API over the capture flow, one CaptureOrchestrator per subject.

Endpoints:
- POST /api/session/<subject>/camera     - start camera (optional lat/lon body)
- POST /api/session/<subject>/capture    - capture (optional `image` file upload)
- POST /api/session/<subject>/submit     - submit the captured photo
- POST /api/session/<subject>/retake     - drop the photo, back to camera
- POST /api/session/<subject>/cancel     - stop everything
- POST /api/session/<subject>/orphan     - delete a photo left by a failed insert
- GET  /api/session/<subject>/state      - current state
- GET  /api/attendance/<subject>/today   - today's record (if any)
- POST /api/attendance/<subject>/clock-out
- GET  /api/attendance/<subject>/history?year=&month=
- GET  /api/attendance/<subject>/stats?year=&month=
- POST /api/detector                     - (re)try detector initialization
- GET  /api/health

Errors are returned as {"success": false, "error": ..., "type": ...} with a
status code picked from the exception class.

Usage:
    app = create_app()
    run_server(app, port=5000)
"""
import logging
import socket
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Optional

import cv2
import numpy as np
from flask import Blueprint, Flask, current_app, jsonify, request

from ..core.camera import FrameBufferCamera
from ..core.errors import (
    AlreadyMarked,
    BusinessRuleError,
    CaptureCancelled,
    ClockInError,
    DetectorInitError,
    DetectorNotReady,
    GatewayTimeout,
    InsertOutcomeUnknown,
    InvalidTransition,
    NoDevice,
    NotCheckedIn,
    OrphanedUploadError,
    OtherCameraError,
    PermissionDenied,
    TransportError,
)
from ..core.model_loader import get_default_loader
from ..core.settings import settings
from ..data.models import GeoLocation
from ..processing.attendance import AttendanceService, AttendanceGuard, geofence_from_settings
from ..processing.capture import CaptureOrchestrator, CaptureState
from ..processing.reports import monthly_stats

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')

# Seconds without a request before a session is dropped
SESSION_IDLE_TTL = 600.0

# First match wins, so subclasses come before their bases
_STATUS_CODES = (
    (PermissionDenied, 403),
    (NoDevice, 404),
    (OtherCameraError, 500),
    (DetectorNotReady, 503),
    (DetectorInitError, 503),
    (InvalidTransition, 409),
    (CaptureCancelled, 409),
    (AlreadyMarked, 409),
    (NotCheckedIn, 404),
    (BusinessRuleError, 422),
    (GatewayTimeout, 504),
    (TransportError, 502),
)


def status_code_for(error: ClockInError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return 500


class SessionRegistry:
    """
    Orchestrators keyed by subject id, created on first use.

    A finished session (cancelled or submitted) is dropped right away unless
    it still tracks an orphaned photo; any other session is dropped once it
    has been idle for `idle_ttl` seconds and no action is in flight.
    """

    _BUSY = (
        CaptureState.CAMERA_REQUESTED,
        CaptureState.CAPTURING,
        CaptureState.VALIDATING,
        CaptureState.SUBMITTING,
    )

    def __init__(
        self,
        factory: Callable[[str], CaptureOrchestrator],
        idle_ttl: float = SESSION_IDLE_TTL,
        clock: Callable[[], float] = time.monotonic
    ):
        self._factory = factory
        self._sessions: Dict[str, CaptureOrchestrator] = {}
        self._last_used: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.idle_ttl = idle_ttl
        self._clock = clock

    def __len__(self):
        return len(self._sessions)

    def get(self, subject_id: str) -> CaptureOrchestrator:
        with self._lock:
            now = self._clock()
            expired = self._expire(now)
            session = self._sessions.get(subject_id)
            if session is None:
                session = self._sessions[subject_id] = self._factory(subject_id)
            self._last_used[subject_id] = now
        for stale in expired:
            stale.close()
        return session

    def _expire(self, now: float):
        expired = []
        for subject_id, last_used in list(self._last_used.items()):
            session = self._sessions[subject_id]
            if now - last_used < self.idle_ttl or session.state in self._BUSY:
                continue
            if session.orphan_path is not None:
                logger.warning(f"⚠️ [{subject_id}] Session expired with photo {session.orphan_path} unclaimed")
            del self._sessions[subject_id]
            del self._last_used[subject_id]
            expired.append(session)
        return expired

    def release(self, subject_id: str):
        """Drop a finished session; kept while it tracks an orphaned photo."""
        with self._lock:
            session = self._sessions.get(subject_id)
            if session is None or session.orphan_path is not None:
                return
            if session.state not in (CaptureState.IDLE, CaptureState.SUCCESS):
                return
            del self._sessions[subject_id]
            del self._last_used[subject_id]
        session.close()

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._last_used.clear()
        for session in sessions:
            session.close()


def _deps():
    return current_app.extensions['clockin']


def _session(subject_id: str) -> CaptureOrchestrator:
    return _deps()['sessions'].get(subject_id)


def _year_month():
    now = _deps()['clock']()
    year = request.args.get('year', default=now.year, type=int)
    month = request.args.get('month', default=now.month, type=int)
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    return year, month


@api_bp.errorhandler(ClockInError)
def handle_clockin_error(error: ClockInError):
    body = {'success': False, 'error': str(error), 'type': type(error).__name__}
    if isinstance(error, (OrphanedUploadError, InsertOutcomeUnknown)):
        body['uploaded_path'] = error.uploaded_path
    return jsonify(body), status_code_for(error)


@api_bp.errorhandler(ValueError)
def handle_bad_request(error: ValueError):
    return jsonify({'success': False, 'error': str(error), 'type': 'BadRequest'}), 400


# === CAPTURE SESSION ===

@api_bp.route('/session/<subject_id>/camera', methods=['POST'])
def api_start_camera(subject_id):
    payload = request.get_json(silent=True) or {}
    location = None
    if payload.get('latitude') is not None and payload.get('longitude') is not None:
        location = GeoLocation(float(payload['latitude']), float(payload['longitude']))

    session = _session(subject_id)
    session.start_camera(location=location)
    return jsonify({'success': True, **session.snapshot()})


@api_bp.route('/session/<subject_id>/capture', methods=['POST'])
def api_capture(subject_id):
    session = _session(subject_id)

    upload = request.files.get('image')
    if upload is not None:
        data = np.frombuffer(upload.read(), np.uint8)
        frame = cv2.imdecode(data, cv2.IMREAD_COLOR)
        if frame is None:
            raise ValueError("Could not decode image")
        if not isinstance(session.camera, FrameBufferCamera):
            raise ValueError("This session reads frames from a local camera")
        session.camera.push(frame)

    validation = session.capture()
    return jsonify({'success': validation.is_valid, **session.snapshot()})


@api_bp.route('/session/<subject_id>/submit', methods=['POST'])
def api_submit(subject_id):
    session = _session(subject_id)
    session.submit()
    body = {'success': True, **session.snapshot()}
    _deps()['sessions'].release(subject_id)
    return jsonify(body), 201


@api_bp.route('/session/<subject_id>/retake', methods=['POST'])
def api_retake(subject_id):
    session = _session(subject_id)
    session.retake()
    return jsonify({'success': True, **session.snapshot()})


@api_bp.route('/session/<subject_id>/cancel', methods=['POST'])
def api_cancel(subject_id):
    session = _session(subject_id)
    session.cancel()
    body = {'success': True, **session.snapshot()}
    _deps()['sessions'].release(subject_id)
    return jsonify(body)


@api_bp.route('/session/<subject_id>/orphan', methods=['POST'])
def api_discard_orphan(subject_id):
    deleted = _session(subject_id).discard_orphan()
    _deps()['sessions'].release(subject_id)
    return jsonify({'success': True, 'deleted': deleted})


@api_bp.route('/session/<subject_id>/state', methods=['GET'])
def api_state(subject_id):
    return jsonify(_session(subject_id).snapshot())


# === ATTENDANCE ===

@api_bp.route('/attendance/<subject_id>/today', methods=['GET'])
def api_today(subject_id):
    deps = _deps()
    now = deps['clock']()
    guard = AttendanceGuard(deps['gateway'])
    marked = guard.is_marked(subject_id, now.strftime("%Y-%m-%d"))
    record = deps['service'].today_record(subject_id, now) if marked else None
    return jsonify({
        'date': now.strftime("%Y-%m-%d"),
        'marked': marked,
        'record': record.to_row() if record else None,
    })


@api_bp.route('/attendance/<subject_id>/clock-out', methods=['POST'])
def api_clock_out(subject_id):
    record = _deps()['service'].clock_out(subject_id)
    return jsonify({'success': True, 'record': record.to_row()})


@api_bp.route('/attendance/<subject_id>/history', methods=['GET'])
def api_history(subject_id):
    year, month = _year_month()
    records = _deps()['service'].history(subject_id, year, month)
    return jsonify([r.to_row() for r in records])


@api_bp.route('/attendance/<subject_id>/stats', methods=['GET'])
def api_stats(subject_id):
    year, month = _year_month()
    records = _deps()['service'].history(subject_id, year, month)
    return jsonify(monthly_stats(records, year, month).to_dict())


# === SYSTEM ===

@api_bp.route('/detector', methods=['POST'])
def api_init_detector():
    _deps()['loader'].initialize()
    return jsonify({'success': True, 'ready': True})


@api_bp.route('/health', methods=['GET'])
def api_health():
    return jsonify({
        'status': 'ok',
        'detector_ready': _deps()['loader'].is_ready,
        'backend': settings.BACKEND,
    })


def create_app(
    gateway=None,
    loader=None,
    camera_factory: Optional[Callable[[str], object]] = None,
    clock: Callable[[], datetime] = datetime.now,
    geofence=None,
    warm_detector: bool = True,
    session_ttl: float = SESSION_IDLE_TTL
) -> Flask:
    """
    Build the Flask app.

    Defaults: configured gateway, process-wide model loader and a
    FrameBufferCamera per session (frames come from the client).
    """
    if gateway is None:
        from ..data import create_gateway
        gateway = create_gateway()
    loader = loader or get_default_loader()
    camera_factory = camera_factory or (lambda subject_id: FrameBufferCamera())
    if geofence is None:
        geofence = geofence_from_settings()

    def make_session(subject_id: str) -> CaptureOrchestrator:
        return CaptureOrchestrator(
            subject_id,
            camera=camera_factory(subject_id),
            loader=loader,
            gateway=gateway,
            geofence=geofence,
            clock=clock,
            warm_detector=warm_detector,
        )

    app = Flask(__name__)
    app.extensions['clockin'] = {
        'gateway': gateway,
        'loader': loader,
        'clock': clock,
        'sessions': SessionRegistry(make_session, idle_ttl=session_ttl),
        'service': AttendanceService(gateway, clock=clock),
    }
    app.register_blueprint(api_bp)
    return app


def get_local_ip():
    """LAN address of this machine, for the startup banner."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


def run_server(app: Optional[Flask] = None, host='0.0.0.0', port=None):
    app = app or create_app()
    port = port or settings.WEB_PORT
    local_ip = get_local_ip()
    logger.info(f"🌐 Attendance API running: http://{local_ip}:{port} (local: http://localhost:{port})")
    try:
        app.run(host=host, port=port, debug=False, threaded=True)
    finally:
        app.extensions['clockin']['sessions'].close_all()
