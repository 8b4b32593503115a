# clockin package
"""
ClockIn - face-verified attendance capture

Structure:
    clockin/
    ├── core/                     # Core infrastructure
    │   ├── settings.py           # Configuration
    │   ├── errors.py             # Exception hierarchy
    │   ├── camera.py             # Camera capability (OpenCV)
    │   ├── tflite_helper.py      # TFLite interpreter helper
    │   └── model_loader.py       # Once-only detector construction
    ├── detect/                   # Face detection
    │   ├── detect.py             # RFB-320 TFLite detector
    │   └── validation.py         # Single-face rules
    ├── data/                     # Data layer
    │   ├── gateway.py            # Gateway contract + timeout wrapper
    │   ├── database.py           # SQLite backend
    │   └── supabase_gateway.py   # Supabase backend
    ├── processing/               # Attendance logic
    │   ├── time_policy.py        # Present / Late / Absent
    │   ├── attendance.py         # Same-day guard, geofence, clock-out
    │   ├── capture.py            # Capture orchestrator
    │   ├── reports.py            # Monthly stats
    │   └── display.py            # Preview overlay
    ├── web/                      # Web server
    │   └── server.py             # Flask JSON API
    └── main.py                   # Main application

Usage:
    from clockin import CaptureOrchestrator, ModelLoader, create_gateway

    loader = ModelLoader()
    session = CaptureOrchestrator("E1", camera, loader, create_gateway())
"""

from .core.settings import settings
from .core.model_loader import ModelLoader
from .data import create_gateway
from .processing.capture import CaptureOrchestrator, CaptureState
from .processing.time_policy import TimePolicy

__all__ = [
    'settings',
    'ModelLoader',
    'create_gateway',
    'CaptureOrchestrator',
    'CaptureState',
    'TimePolicy',
]
