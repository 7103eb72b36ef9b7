# dualocr/ocr_backends/tesseract_backend.py
from __future__ import annotations

import io
import os
import platform
import re
import shutil
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List

from PIL import Image, UnidentifiedImageError
import pytesseract as pt

from ..exceptions import RecognitionFailure
from ..models import LineRecord, RecognitionResult
from .base import BaseOCREngine


def _as_int(x, default: int) -> int:
    try:
        if isinstance(x, str):
            x = x.strip().rstrip(",}] ")
        return int(x)
    except Exception:
        m = re.search(r"-?\d+", str(x))
        return int(m.group()) if m else default


def _as_float(x, default: float = -1.0) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default


def resolve_tesseract_cmd() -> str | None:
    # 1) explicit env override
    cmd = os.getenv("TESSERACT_CMD")
    if cmd and Path(cmd).exists():
        return cmd

    # 2) look on PATH
    cmd = shutil.which("tesseract")
    if cmd:
        return cmd

    # 3) common fallbacks by OS
    system = platform.system()
    if system == "Windows":
        candidates = [
            r"C:\Program Files\Tesseract-OCR\tesseract.exe",
            r"C:\Program Files (x86)\Tesseract-OCR\tesseract.exe",
        ]
    elif system == "Darwin":
        candidates = [
            "/opt/homebrew/bin/tesseract",
            "/usr/local/bin/tesseract",
        ]
    else:
        candidates = [
            "/usr/bin/tesseract",
            "/usr/local/bin/tesseract",
            "/snap/bin/tesseract",
        ]

    for p in candidates:
        if Path(p).exists():
            return p
    return None


# Short codes to Tesseract traineddata names
_TESS_LANG_MAP = {
    "ko": "kor",
    "en": "eng",
    "vi": "vie",
    "ja": "jpn",
    "zh": "chi_sim",
    "fr": "fra",
    "de": "deu",
    "es": "spa",
}


def normalize_language_profile(profile: str | List[str] | None) -> str:
    """
    Map a language profile to Tesseract's "+"-joined form, keeping order.
    Accepts "kor", "en+ko", "eng, kor" or a list of codes.
    """
    if isinstance(profile, (list, tuple)):
        parts = [str(p) for p in profile]
    else:
        parts = re.split(r"[+,\s]+", str(profile or ""))
    codes: List[str] = []
    for p in parts:
        p = p.strip().lower()
        if not p:
            continue
        code = _TESS_LANG_MAP.get(p, p)
        if code not in codes:
            codes.append(code)
    return "+".join(codes) or "kor"


def result_from_data(data: Dict[str, List[Any]]) -> RecognitionResult:
    """
    Build a RecognitionResult from pytesseract ``image_to_data`` DICT output.

    Level meanings: 1=page, 2=block, 3=paragraph, 4=line, 5=word.
    """
    n = len(data.get("level", []))
    line_boxes: Dict[tuple, Dict[str, int]] = {}
    line_words: "OrderedDict[tuple, List[tuple[str, float]]]" = OrderedDict()
    paragraphs: "OrderedDict[tuple, List[tuple]]" = OrderedDict()
    word_confs: List[float] = []
    words = 0

    for i in range(n):
        level = _as_int(data["level"][i], 0)
        key = (
            _as_int(data["page_num"][i], 1),
            _as_int(data["block_num"][i], 0),
            _as_int(data["par_num"][i], 0),
            _as_int(data["line_num"][i], 0),
        )
        if level == 4:
            left, top = _as_int(data["left"][i], 0), _as_int(data["top"][i], 0)
            line_boxes[key] = {
                "x0": left,
                "y0": top,
                "x1": left + _as_int(data["width"][i], 0),
                "y1": top + _as_int(data["height"][i], 0),
            }
            continue
        if level != 5:
            continue

        text = str(data["text"][i] or "").strip()
        if not text:
            continue
        conf = _as_float(data["conf"][i])
        words += 1
        if conf >= 0:
            word_confs.append(conf)
        line_words.setdefault(key, []).append((text, conf))
        par_key = key[:3]
        if key not in paragraphs.setdefault(par_key, []):
            paragraphs[par_key].append(key)

    lines: List[LineRecord] = []
    para_texts: List[str] = []
    for par_key, line_keys in paragraphs.items():
        rendered = []
        for key in line_keys:
            tokens = line_words[key]
            line_text = " ".join(t for t, _ in tokens).strip()
            if not line_text:
                continue
            confs = [c for _, c in tokens if c >= 0]
            lines.append(LineRecord(
                text=line_text,
                confidence=round(sum(confs) / len(confs), 2) if confs else 0.0,
                bbox=line_boxes.get(key, {}),
            ))
            rendered.append(line_text)
        if rendered:
            para_texts.append("\n".join(rendered))

    confidence = round(sum(word_confs) / len(word_confs), 2) if word_confs else 0.0
    return RecognitionResult(
        text="\n\n".join(para_texts).strip(),
        confidence=confidence,
        lines=tuple(lines),
        words=words,
        paragraphs=len(para_texts),
    )


class TesseractOCREngine(BaseOCREngine):
    """
    Pytesseract-based backend.

    Kwargs supported (all optional):
      - languages / lang: str or list[str], mapped to "kor", "eng+kor", ...
      - tesseract_cmd: full path to tesseract binary (Windows)
      - tessdata_prefix: path to tessdata directory
      - oem: 0..3 (default 3 = LSTM)
      - psm: page segmentation mode (default 3 = fully automatic)
      - preserve_interword_spaces: bool (default True)
      - extra_config: str of extra flags (appended to config string)
      - timeout: seconds before a single image is abandoned (default 0, no limit)
    """

    def __init__(self, **kwargs: Dict[str, Any]):
        k = dict(kwargs)

        for junk in ("gpu", "use_gpu", "beamsearch", "model_storage_directory", "download_enabled"):
            k.pop(junk, None)

        tesseract_cmd = k.pop("tesseract_cmd", None) or k.pop("tesseract_path", None) or resolve_tesseract_cmd()
        if tesseract_cmd:
            pt.pytesseract.tesseract_cmd = str(tesseract_cmd)

        tessdata_prefix = k.pop("tessdata_prefix", None)
        if tessdata_prefix:
            os.environ["TESSDATA_PREFIX"] = str(tessdata_prefix)

        self.lang = normalize_language_profile(k.pop("languages", None) or k.pop("lang", None))

        oem = _as_int(k.pop("oem", 3), 3)
        psm = _as_int(k.pop("psm", 3), 3)
        preserve_spaces = bool(k.pop("preserve_interword_spaces", True))
        extra_cfg = str(k.pop("extra_config", "")).strip()
        self._timeout = _as_int(k.pop("timeout", 0), 0)

        cfg_parts = [f"--oem {oem}", f"--psm {psm}"]
        if preserve_spaces:
            cfg_parts.append("-c preserve_interword_spaces=1")
        if extra_cfg:
            cfg_parts.append(extra_cfg)
        self._config = " ".join(cfg_parts)

        # fail at worker start, not on the first image
        pt.get_tesseract_version()

    def _to_pil(self, image: bytes) -> Image.Image:
        with Image.open(io.BytesIO(image)) as im:
            return im.convert("RGB")

    def recognize(self, image: bytes) -> RecognitionResult:
        try:
            pil_im = self._to_pil(image)
        except (UnidentifiedImageError, OSError) as e:
            raise RecognitionFailure(f"Cannot decode image, {e}") from e
        try:
            data = pt.image_to_data(
                pil_im,
                lang=self.lang,
                config=self._config,
                output_type=pt.Output.DICT,
                timeout=self._timeout,
            )
        except (pt.TesseractError, RuntimeError) as e:
            # pytesseract signals a timeout with RuntimeError
            raise RecognitionFailure(f"Tesseract failed, {e}") from e
        return result_from_data(data)
