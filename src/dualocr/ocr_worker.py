# src/dualocr/ocr_worker.py
from __future__ import annotations

import importlib
import logging
import os
import threading
from typing import Any, Union

from .exceptions import EngineNotReady
from .logger import configure_worker_logging
from .models import RecognitionResult

logger = logging.getLogger("dualocr")

# One engine instance per worker. Thread-local so the same code serves both
# single-thread executors and single-process executors (whose tasks run on
# the process main thread).
_local = threading.local()

BACKEND_ALIASES = {
    "tess": "dualocr.ocr_backends.tesseract_backend.TesseractOCREngine",
    "tesseract": "dualocr.ocr_backends.tesseract_backend.TesseractOCREngine",
    "pytesseract": "dualocr.ocr_backends.tesseract_backend.TesseractOCREngine",
    "easy": "dualocr.ocr_backends.easyocr_backend.EasyOCREngine",
    "easyocr": "dualocr.ocr_backends.easyocr_backend.EasyOCREngine",
}

Backend = Union[str, type]


def normalize_backend_alias(name: str) -> str:
    """Expand short aliases (case-insensitive) to a dotted 'module.Class' path."""
    if not name:
        return name
    original = name.strip().strip('"\'')
    alias = original.lower()
    if alias in BACKEND_ALIASES:
        return BACKEND_ALIASES[alias]
    if alias.endswith(".tesseract_backend"):
        return BACKEND_ALIASES["tesseract"]
    if alias.endswith(".easyocr_backend"):
        return BACKEND_ALIASES["easyocr"]
    return original


def _import_obj(dotted: str):
    mod_path, _, attr = dotted.rpartition(".")
    if not mod_path or not attr:
        raise ImportError(f"Invalid backend path, {dotted}")
    mod = importlib.import_module(mod_path)
    try:
        return getattr(mod, attr)
    except AttributeError as e:
        raise ImportError(f"Backend class not found, {dotted}") from e


def resolve_backend(backend: Backend) -> type:
    if isinstance(backend, str):
        return _import_obj(normalize_backend_alias(backend))
    return backend


def initialize_worker(log_queue: Any, backend: Backend, backend_kwargs: dict):
    """
    Executor initializer, called once in each recognizer worker.
    Loads the backend class and creates the engine instance.
    """
    configure_worker_logging(log_queue)
    name = backend if isinstance(backend, str) else backend.__name__
    logger.info("Initializing recognizer worker, backend, %s, pid, %s", name, os.getpid())
    try:
        EngineCls = resolve_backend(backend)
    except Exception:
        logger.exception("Cannot import backend, %s", name)
        raise

    try:
        _local.engine = EngineCls(**(backend_kwargs or {}))
    except Exception:
        logger.exception("Backend initialization failed for %s", name)
        raise

    logger.info("Recognizer worker ready, pid, %s", os.getpid())


def _engine():
    engine = getattr(_local, "engine", None)
    if engine is None:
        raise EngineNotReady("Recognizer worker called before initialization")
    return engine


def worker_ready() -> int:
    """Warm-up probe: forces the initializer to run and confirms the engine loaded."""
    _engine()
    return os.getpid()


def recognize_image(image: bytes) -> RecognitionResult:
    """Runs the worker's engine on one encoded image."""
    return _engine().recognize(image)
