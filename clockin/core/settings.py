# clockin/core/settings.py
"""
Configuration for the attendance client.

Defaults live on the dataclass, then `config/config.json` overrides them,
then environment variables override both (secrets such as SUPABASE_KEY
should only come from the environment).
"""
import os
import json
import platform
from dataclasses import dataclass, field, fields
from typing import Optional


# === PLATFORM DETECTION ===
IS_WINDOWS = platform.system() == "Windows"
IS_PI = platform.system() == "Linux" and os.path.exists("/proc/device-tree/model")
HAS_DISPLAY = IS_WINDOWS or os.environ.get("DISPLAY", "") != ""

# === PATHS ===
BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
CONFIG_PATH = os.environ.get("CLOCKIN_CONFIG", os.path.join(BASE_DIR, 'config', 'config.json'))

ENV_PREFIX = "CLOCKIN_"

# Env names that are read without the prefix
_PLAIN_ENV = {
    "SUPABASE_URL": "SUPABASE_URL",
    "SUPABASE_KEY": "SUPABASE_KEY",
}


def _load_json_config(path: str) -> dict:
    """Load config from a JSON file, {} when missing or invalid."""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError):
        return {}


def _coerce(value: str, current):
    """Convert an env string to the type of the current value."""
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


@dataclass
class Settings:
    """Runtime settings for capture, policy, storage and web."""

    # === PLATFORM (read-only) ===
    IS_WINDOWS: bool = field(default_factory=lambda: IS_WINDOWS)
    IS_PI: bool = field(default_factory=lambda: IS_PI)
    HAS_DISPLAY: bool = field(default_factory=lambda: HAS_DISPLAY)
    BASE_DIR: str = field(default_factory=lambda: BASE_DIR)

    # === TIME POLICY ===
    CHECK_IN_TIME: str = "09:30"
    LATE_LIMIT_MINUTES: int = 10

    # === FACE VALIDATION ===
    MIN_FACE_SIZE: int = 100             # px, width and height
    DETECTION_THRESHOLD: float = 0.6
    DETECTION_MODEL: str = "models/detection/version-RFB-320_int8_without_postprocessing.tflite"
    MODEL_CACHE_DIR: str = "models/cache"
    TFLITE_NUM_THREADS: int = 4

    # === CAMERA ===
    CAMERA_ID: int = 0
    CAMERA_WIDTH: int = 640
    CAMERA_HEIGHT: int = 480
    FACING_MODE: str = "user"
    JPEG_QUALITY: int = 90

    # === BACKEND ===
    BACKEND: str = "sqlite"              # sqlite | supabase
    DB_PATH: str = "attendance.db"
    PHOTO_DIR: str = "attendance-photos"
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    ATTENDANCE_BUCKET: str = "attendance-photos"
    ATTENDANCE_TABLE: str = "attendance"
    PROFILES_TABLE: str = "profiles"
    GATEWAY_TIMEOUT: float = 0.0         # seconds, 0 = no timeout

    # === GEOFENCE ===
    OFFICE_LATITUDE: Optional[float] = None
    OFFICE_LONGITUDE: Optional[float] = None
    GEOFENCE_RADIUS_M: float = 0.0       # 0 = disabled

    # === WEB SERVER ===
    WEB_PORT: int = 5000

    # === DISPLAY ===
    HEADLESS_MODE: bool = False

    def __post_init__(self):
        self._load_from_json()
        self._load_from_env()
        self._compute_defaults()

    def _load_from_json(self):
        config = _load_json_config(CONFIG_PATH)
        for key, value in config.items():
            if hasattr(self, key) and value is not None:
                setattr(self, key, value)

    def _load_from_env(self):
        for f in fields(self):
            env_name = _PLAIN_ENV.get(f.name, ENV_PREFIX + f.name)
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            current = getattr(self, f.name)
            if current is None:
                # Optional floats (office coordinates)
                setattr(self, f.name, float(raw))
            else:
                setattr(self, f.name, _coerce(raw, current))

    def _compute_defaults(self):
        if self.IS_PI:
            self.CAMERA_WIDTH = min(self.CAMERA_WIDTH, 320)
            self.CAMERA_HEIGHT = min(self.CAMERA_HEIGHT, 240)
            self.TFLITE_NUM_THREADS = 2
        if not self.IS_WINDOWS and not self.HAS_DISPLAY:
            self.HEADLESS_MODE = True

    # === PROPERTY ALIASES ===
    @property
    def check_in_time(self) -> str:
        return self.CHECK_IN_TIME

    @property
    def late_limit_minutes(self) -> int:
        return self.LATE_LIMIT_MINUTES

    @property
    def min_face_size(self) -> int:
        return self.MIN_FACE_SIZE

    @property
    def camera_width(self) -> int:
        return self.CAMERA_WIDTH

    @property
    def camera_height(self) -> int:
        return self.CAMERA_HEIGHT

    @property
    def tflite_num_threads(self) -> int:
        return self.TFLITE_NUM_THREADS

    @property
    def geofence_enabled(self) -> bool:
        return (
            self.GEOFENCE_RADIUS_M > 0
            and self.OFFICE_LATITUDE is not None
            and self.OFFICE_LONGITUDE is not None
        )

    @property
    def web_port(self) -> int:
        return self.WEB_PORT


# === SINGLETON ===
settings = Settings()
