# clockin/core/__init__.py
"""
Core modules - infrastructure and configuration.

- settings: unified configuration
- errors: exception hierarchy
- camera: camera capability (OpenCV)
- tflite_helper: TFLite interpreter helper
- model_loader: once-only detector construction
"""

from .settings import settings, Settings
from .camera import CameraDevice, CameraManager, CameraConfig, FrameBufferCamera, create_camera
from .tflite_helper import get_interpreter
from .model_loader import ModelLoader, get_default_loader

__all__ = [
    'settings',
    'Settings',
    'CameraDevice',
    'CameraManager',
    'CameraConfig',
    'FrameBufferCamera',
    'create_camera',
    'get_interpreter',
    'ModelLoader',
    'get_default_loader',
]
