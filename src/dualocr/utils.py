# src/dualocr/utils.py
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Iterable, List, Optional, Union

from slugify import slugify

logger = logging.getLogger("dualocr")

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp", ".gif")


def collect_image_paths(inputs: Iterable[Union[str, Path]]) -> List[Path]:
    """
    Expand files and directories into a list of image paths.

    Order follows the inputs; directories are walked recursively in sorted
    order. Paths seen twice are kept once.
    """
    paths: List[Path] = []
    seen = set()
    for raw in inputs:
        p = Path(raw)
        if p.is_dir():
            candidates = sorted(f for f in p.rglob("*") if f.is_file())
        elif p.is_file():
            candidates = [p]
        else:
            logger.warning("Input path does not exist, %s", p)
            continue
        for f in candidates:
            if f.suffix.lower() not in IMAGE_EXTENSIONS:
                continue
            key = f.resolve()
            if key in seen:
                continue
            seen.add(key)
            paths.append(f)
    return paths


def safe_fname(name: str, fallback: str = "file") -> str:
    """
    Create a filesystem safe name, preserve extension when present.
    """
    name = (name or "").strip() or fallback
    if "." in name:
        base, ext = name.rsplit(".", 1)
        return f"{slugify(base)[:100] or fallback}.{ext}"
    return slugify(name)[:100] or fallback


def log_error(error_log_path: Optional[Path], source_path: str, reason: str) -> None:
    """Append one failure record to the error JSONL log."""
    if not error_log_path:
        return
    try:
        error_log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(error_log_path, "a", encoding="utf-8") as f:
            log_entry = {
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
                "source_path": source_path,
                "error_reason": reason,
            }
            f.write(json.dumps(log_entry, ensure_ascii=False) + "\n")
    except OSError:
        logger.exception("Failed to write error log")
