# clockin/core/model_loader.py
"""
Lazy, once-only construction of the face detector.

One ModelLoader holds either nothing, an in-flight construction (a shared
Future) or the built handle. Concurrent `initialize()` calls wait on the same
Future, so the detector is constructed once. A failed attempt is cleared so
the user can trigger another one; nothing retries automatically.

Usage:
    loader = ModelLoader()
    detector = loader.initialize()      # blocks until ready
    loader.get_handle()                 # detector or None, never blocks
"""
import logging
import os
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import requests

from .errors import DetectorInitError
from .settings import settings

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK = 64 * 1024


def fetch_model_asset(model_path: str, cache_dir: Optional[str] = None, timeout: float = 30.0) -> str:
    """
    Return a local path for `model_path`.

    http(s) URLs are downloaded once into `cache_dir`; local paths are
    returned unchanged.
    """
    if urlparse(model_path).scheme not in ("http", "https"):
        return model_path

    cache_dir = cache_dir or os.path.join(settings.BASE_DIR, settings.MODEL_CACHE_DIR)
    os.makedirs(cache_dir, exist_ok=True)
    target = os.path.join(cache_dir, os.path.basename(urlparse(model_path).path) or "model.tflite")
    if os.path.exists(target):
        return target

    logger.info(f"⬇️ Downloading model asset: {model_path}")
    partial = target + ".part"
    with requests.get(model_path, stream=True, timeout=timeout) as resp:
        resp.raise_for_status()
        with open(partial, "wb") as f:
            for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK):
                f.write(chunk)
    os.replace(partial, target)
    return target


def default_detector_factory():
    """Build the RFB-320 detector from settings."""
    from ..detect.detect import UltraLightFaceDetector

    model_path = fetch_model_asset(settings.DETECTION_MODEL)
    if not os.path.isabs(model_path):
        model_path = os.path.join(settings.BASE_DIR, model_path)
    return UltraLightFaceDetector(model_path=model_path, conf_threshold=settings.DETECTION_THRESHOLD)


class ModelLoader:
    """Write-once, read-many holder for the detector handle."""

    def __init__(self, factory: Callable[[], Any] = default_detector_factory):
        self._factory = factory
        self._lock = threading.Lock()
        self._future: Optional[Future] = None
        self._handle = None

    def initialize(self):
        """
        Return the detector, constructing it on the first call.

        Raises:
            DetectorInitError: construction failed (for this attempt)
        """
        if self._handle is not None:
            return self._handle

        with self._lock:
            if self._handle is not None:
                return self._handle
            future = self._future
            owner = future is None
            if owner:
                future = self._future = Future()

        if not owner:
            # Another caller is constructing; share its outcome
            return future.result()

        try:
            handle = self._factory()
        except Exception as e:
            logger.error(f"❌ Failed to initialize Face Detector: {e}")
            error = DetectorInitError(e)
            with self._lock:
                self._future = None
            future.set_exception(error)
            raise error from e

        with self._lock:
            self._handle = handle
            self._future = None
        future.set_result(handle)
        logger.info("✅ Face Detector initialized successfully")
        return handle

    def get_handle(self):
        """The detector if already built, else None."""
        return self._handle

    @property
    def is_ready(self) -> bool:
        return self._handle is not None

    @property
    def is_initializing(self) -> bool:
        return self._future is not None


# Process-wide default used by the CLI and web server
_default_loader: Optional[ModelLoader] = None
_default_lock = threading.Lock()


def get_default_loader() -> ModelLoader:
    global _default_loader
    with _default_lock:
        if _default_loader is None:
            _default_loader = ModelLoader()
        return _default_loader
