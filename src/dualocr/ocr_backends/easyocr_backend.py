# dualocr/ocr_backends/easyocr_backend.py
from __future__ import annotations

from typing import List, Dict, Any
import io
import os
import time
import logging
import errno
import numpy as np
from PIL import Image

import easyocr

from ..exceptions import RecognitionFailure
from ..models import LineRecord, RecognitionResult
from .base import BaseOCREngine

logger = logging.getLogger("dualocr")


# -----------------------------
# Helpers
# -----------------------------

# Tesseract-style profile codes to EasyOCR language ids
_EASYOCR_LANG_MAP = {
    "kor": "ko",
    "eng": "en",
    "vie": "vi",
    "jpn": "ja",
    "chi_sim": "ch_sim",
    "chi_tra": "ch_tra",
    "fra": "fr",
    "deu": "de",
    "spa": "es",
}


def _as_bool(x, default=True) -> bool:
    if isinstance(x, bool):
        return x
    if isinstance(x, str):
        s = x.strip().lower()
        if s in ("true", "1", "yes", "y", "on"):
            return True
        if s in ("false", "0", "no", "n", "off"):
            return False
    return default


def _norm_langs_to_easyocr(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """Accept languages or lang ("kor", "eng+kor" or a list) and normalize for EasyOCR."""
    k = dict(kwargs or {})
    langs = k.pop("languages", None) or k.pop("lang", None)
    if isinstance(langs, str):
        langs = langs.replace(",", "+").split("+")
    if not langs:
        langs = ["ko", "en"]
    k["languages"] = [_EASYOCR_LANG_MAP.get(str(l).strip(), str(l).strip()) for l in langs if str(l).strip()]
    return k


def _bytes_to_rgb(image: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(image)) as im:
        return np.array(im.convert("RGB"))


def _torch_cuda_available() -> bool:
    try:
        import torch
        return bool(torch.cuda.is_available())
    except Exception:
        return False


def _acquire_file_lock(lock_path: str, timeout: float = 120.0, poll: float = 0.2):
    """
    Inter-process lock using atomic file create.
    Prevents concurrent EasyOCR model downloads across pool workers.
    """
    start = time.perf_counter()
    lock_dir = os.path.dirname(lock_path) or "."
    os.makedirs(lock_dir, exist_ok=True)
    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.write(fd, str(os.getpid()).encode("utf-8"))
            return fd
        except OSError as e:
            if e.errno != errno.EEXIST:
                raise
            if time.perf_counter() - start > timeout:
                logger.warning("Model init lock timeout; proceeding without lock: %s", lock_path)
                return None
            time.sleep(poll)


def _release_file_lock(fd, lock_path: str):
    try:
        if fd is not None:
            os.close(fd)
        if lock_path and os.path.exists(lock_path):
            os.unlink(lock_path)
    except OSError:
        logger.debug("Failed to release lock: %s", lock_path, exc_info=True)


def _bbox_from_polygon(points) -> Dict[str, int]:
    xs = [int(p[0]) for p in points]
    ys = [int(p[1]) for p in points]
    return {"x0": min(xs), "y0": min(ys), "x1": max(xs), "y1": max(ys)}


# -----------------------------
# Backend
# -----------------------------

class EasyOCREngine(BaseOCREngine):
    """
    EasyOCR adapter.

    Supported kwargs (all optional):
      - languages / lang: list[str] | str (default ["ko","en"])
      - gpu / use_gpu: bool (used only when CUDA is available)
      - model_storage_directory: str (shared cache dir recommended)
      - download_enabled: bool (default True)
      - decoder: "greedy" | "beamsearch", beam_width
    """

    def __init__(self, **kwargs: Dict[str, Any]):
        k = _norm_langs_to_easyocr(kwargs)

        want_gpu = _as_bool(k.pop("gpu", k.pop("use_gpu", True)), True)
        use_gpu = bool(want_gpu and _torch_cuda_available())

        model_dir = k.pop("model_storage_directory", None)
        download_enabled = _as_bool(k.pop("download_enabled", True), True)

        decoder = str(k.pop("decoder", "greedy")).strip().lower()
        self._decoder = decoder if decoder in ("greedy", "beamsearch") else "greedy"
        try:
            beam_width = int(k.pop("beam_width", 10))
        except (TypeError, ValueError):
            beam_width = 10
        self._beam_width = max(1, min(beam_width, 20))

        cache_root = model_dir or os.path.join(os.path.expanduser("~"), ".cache", "easyocr")
        lock_path = os.path.join(cache_root, "model_init.lock")
        fd = _acquire_file_lock(lock_path, timeout=180.0)
        try:
            langs = k.pop("languages")
            try:
                self.reader = easyocr.Reader(
                    langs,
                    gpu=use_gpu,
                    model_storage_directory=model_dir,
                    download_enabled=download_enabled,
                    verbose=False,
                )
            except Exception as e:
                if not use_gpu:
                    raise
                logger.warning("EasyOCR GPU init failed, falling back to CPU: %s", e)
                self.reader = easyocr.Reader(
                    langs,
                    gpu=False,
                    model_storage_directory=model_dir,
                    download_enabled=download_enabled,
                    verbose=False,
                )
        finally:
            _release_file_lock(fd, lock_path)

    def recognize(self, image: bytes) -> RecognitionResult:
        try:
            rgb = _bytes_to_rgb(image)
        except (OSError, ValueError) as e:
            raise RecognitionFailure(f"Cannot decode image, {e}") from e
        with np.errstate(over="ignore", invalid="ignore"):
            detections = self.reader.readtext(
                rgb,
                detail=1,
                paragraph=False,
                decoder=self._decoder,
                beamWidth=self._beam_width,
            )

        lines: List[LineRecord] = []
        for points, text, conf in detections:
            text = str(text or "").strip()
            if not text:
                continue
            lines.append(LineRecord(
                text=text,
                confidence=round(float(conf) * 100.0, 2),
                bbox=_bbox_from_polygon(points),
            ))

        confidence = round(sum(l.confidence for l in lines) / len(lines), 2) if lines else 0.0
        return RecognitionResult(
            text="\n".join(l.text for l in lines),
            confidence=confidence,
            lines=tuple(lines),
            words=sum(len(l.text.split()) for l in lines),
            paragraphs=1 if lines else 0,
        )
