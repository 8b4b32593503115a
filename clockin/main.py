# clockin/main.py
"""
ClockIn - Main Entry Point.

Wires the modules together:
- core/: settings, camera, model loader
- detect/: face detection and validation
- processing/: time policy, guard, capture orchestrator
- data/: SQLite / Supabase gateways
- web/: Flask JSON API

Usage:
    python -m clockin.main --subject E1                 # Preview window, keyboard
    python -m clockin.main --subject E1 --headless      # Prompt on stdin
    python -m clockin.main --web --port 5000            # JSON API
    python -m clockin.main --subject E1 --backend supabase
"""
import os
import time
import logging
import argparse

# === SETUP DISPLAY BEFORE IMPORTING CV2 ===
if os.environ.get("DISPLAY", "") == "" and os.name != "nt":
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from .core import settings, CameraConfig, CameraManager
from .core.errors import CameraError, ClockInError, DetectorInitError, OrphanedUploadError
from .core.model_loader import get_default_loader
from .data import create_gateway
from .data.models import GeoLocation
from .detect.detect import Detection, DetectionResult
from .processing import (
    AttendanceService,
    CaptureOrchestrator,
    CaptureState,
    DisplayHandler,
    StaticLocationProvider,
    geofence_from_settings,
)

logger = logging.getLogger(__name__)

WINDOW_NAME = "ClockIn"
KEY_HELP = "c=capture | s=submit | r=retake | o=clock-out | q=quit"


def setup_logging(verbose: bool = False):
    handlers = [logging.StreamHandler()]
    if settings.IS_PI:
        handlers.append(logging.FileHandler('attendance.log', encoding='utf-8'))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='ClockIn - face-verified attendance',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m clockin.main --subject E1
  python -m clockin.main --subject E1 --resolution 1280x720
  python -m clockin.main --web --port 8080
        """
    )

    parser.add_argument(
        '--subject', '-s',
        type=str,
        metavar='ID',
        help='Subject (employee) id to mark attendance for'
    )

    # Camera settings
    parser.add_argument(
        '--camera', '-c',
        type=int,
        metavar='ID',
        help=f'Camera device ID (default: {settings.CAMERA_ID})'
    )
    parser.add_argument(
        '--resolution', '-r',
        type=str,
        metavar='WxH',
        help=f'Camera resolution (default: {settings.CAMERA_WIDTH}x{settings.CAMERA_HEIGHT})'
    )
    parser.add_argument(
        '--location',
        type=str,
        metavar='LAT,LON',
        help='Device location, used for the office geofence'
    )

    # Backend
    parser.add_argument(
        '--backend', '-b',
        choices=('sqlite', 'supabase'),
        help=f'Data backend (default: {settings.BACKEND})'
    )

    # Web server
    parser.add_argument(
        '--web',
        action='store_true',
        help='Serve the JSON API instead of the local capture loop'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        metavar='PORT',
        help=f'Web server port (default: {settings.WEB_PORT})'
    )

    # Display mode
    parser.add_argument(
        '--headless',
        action='store_true',
        help='No preview window; read commands from stdin'
    )

    # Debug
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose logging'
    )

    args = parser.parse_args(argv)
    if not args.web and not args.subject:
        parser.error('--subject is required unless --web is given')
    return args


def parse_location(value: str) -> GeoLocation:
    lat, lon = (float(part) for part in value.split(','))
    return GeoLocation(lat, lon)


def apply_arguments(args):
    """Apply command line arguments to settings."""
    changes = []

    if args.camera is not None:
        settings.CAMERA_ID = args.camera
        changes.append(f"Camera: {args.camera}")

    if args.resolution:
        try:
            w, h = map(int, args.resolution.lower().split('x'))
            settings.CAMERA_WIDTH = w
            settings.CAMERA_HEIGHT = h
            changes.append(f"Resolution: {w}x{h}")
        except ValueError:
            logger.warning(f"⚠️ Invalid resolution format: {args.resolution} (use WxH, e.g., 640x480)")

    if args.backend:
        settings.BACKEND = args.backend
        changes.append(f"Backend: {args.backend}")

    if args.port:
        settings.WEB_PORT = args.port
        changes.append(f"Port: {args.port}")

    if args.headless:
        settings.HEADLESS_MODE = True
        changes.append("Mode: headless")

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        changes.append("Verbose: ON")

    return changes


def _preview_result(session: CaptureOrchestrator) -> DetectionResult:
    """Detection overlay for the held photo, rebuilt from its validation."""
    validation = session.last_validation
    if validation is None or validation.bounding_box is None:
        return DetectionResult([])
    return DetectionResult([Detection(validation.bounding_box, validation.confidence)])


def handle_command(command: str, session: CaptureOrchestrator, service: AttendanceService) -> bool:
    """
    Run one keyboard/stdin command.

    Returns:
        True to quit
    """
    if command == 'q':
        return True

    try:
        if command == 'c':
            result = session.capture()
            print(("✅ " if result.is_valid else "❌ ") + result.message)
        elif command == 's':
            record = session.submit()
            print(f"🟢 Attendance marked: {record.status.value} at {record.check_in_time}")
        elif command == 'r':
            session.retake()
        elif command == 'o':
            record = service.clock_out(session.subject_id)
            session.last_message = f"Clocked out at {record.check_out_time}"
            print(f"🔴 {session.last_message}")
    except OrphanedUploadError as e:
        logger.error(f"❌ {e} (photo kept at {e.uploaded_path})")
        session.last_message = str(e)
    except ClockInError as e:
        print(f"❌ {e}")
        session.last_message = str(e)
    return False


def run_headless(session: CaptureOrchestrator, service: AttendanceService):
    print(f"⌨️  {KEY_HELP}")
    while True:
        try:
            command = input(f"[{session.state.value}] > ").strip().lower()[:1]
        except EOFError:
            break
        if handle_command(command, session, service):
            break


def run_preview(session: CaptureOrchestrator, service: AttendanceService):
    display = DisplayHandler()
    last_frame = None
    while True:
        if session.state == CaptureState.CAPTURED and session.photo is not None:
            frame = session.photo.frame.copy()
            display.draw_detections(frame, _preview_result(session))
        else:
            frame = session.camera.read()
            if frame is None:
                frame = last_frame
            else:
                last_frame = frame.copy()
        if frame is None:
            time.sleep(0.01)
            continue

        ok = session.last_validation is None or session.last_validation.is_valid
        display.draw_message(frame, session.last_message, ok=ok)
        display.draw_help(frame, KEY_HELP)

        key = display.show(WINDOW_NAME, frame)
        if key == 255 or key < 0:
            continue
        if handle_command(chr(key).lower(), session, service):
            break
    display.destroy_windows()


def main(argv=None):
    """Main entry point."""

    # === 0. PARSE ARGUMENTS ===
    args = parse_arguments(argv)
    setup_logging(args.verbose)
    arg_changes = apply_arguments(args)
    for change in arg_changes:
        logger.info(f"🔧 {change}")

    # === 1. BACKEND ===
    gateway = create_gateway()
    loader = get_default_loader()

    if args.web:
        from .web import create_app, run_server
        run_server(create_app(gateway=gateway, loader=loader), port=settings.WEB_PORT)
        return

    # === 2. DETECTOR ===
    try:
        loader.initialize()
    except DetectorInitError as e:
        logger.error(f"❌ {e}")
        return

    # === 3. CAMERA ===
    camera_config = CameraConfig(
        width=settings.CAMERA_WIDTH,
        height=settings.CAMERA_HEIGHT,
        fps=15 if settings.IS_PI else 30
    )
    camera = CameraManager(device_id=settings.CAMERA_ID, config=camera_config, is_pi=settings.IS_PI)

    location = parse_location(args.location) if args.location else None
    session = CaptureOrchestrator(
        args.subject,
        camera=camera,
        loader=loader,
        gateway=gateway,
        location_provider=StaticLocationProvider(location),
        geofence=geofence_from_settings(),
    )
    service = AttendanceService(gateway)

    # === 4. LOOP ===
    with session:
        try:
            session.start_camera()
        except CameraError as e:
            logger.error(f"❌ {e}")
            return

        try:
            if settings.HEADLESS_MODE:
                run_headless(session, service)
            else:
                run_preview(session, service)
        except KeyboardInterrupt:
            print("\n🛑 Stopped (Ctrl+C)")

    print("👋 Bye!")


if __name__ == "__main__":
    main()
