# clockin/web/__init__.py
"""
Web module - Flask JSON API for capture sessions and attendance.
"""
from .server import create_app, run_server, api_bp

__all__ = [
    'create_app',
    'run_server',
    'api_bp',
]
