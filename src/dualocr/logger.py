# src/dualocr/logger.py
"""
Logging for the main process and recognizer workers.

Everything under the "dualocr" logger goes through one queue; a single
QueueListener in the main process fans records out to the console (written
through tqdm so the batch bar survives), a rotating log file and, optionally,
a JSONL file of PROGRESS records.
"""
import json
import logging
import sys
import time
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO, Union

from tqdm import tqdm

PROGRESS = 25
logging.addLevelName(PROGRESS, "PROGRESS")

# extra= fields carried by progress records
PROGRESS_FIELDS = ("phase", "pct", "current", "total", "batch_id", "image_id")


def progress(self, msg, *args, **kwargs):
    if self.isEnabledFor(PROGRESS):
        self._log(PROGRESS, msg, args, **kwargs)


logging.Logger.progress = progress


class LevelFilter(logging.Filter):
    """Keeps only ``levelno`` records, or drops them when ``exclude`` is set."""

    def __init__(self, levelno: int, exclude: bool = False):
        super().__init__()
        self.levelno = levelno
        self.exclude = exclude

    def filter(self, record: logging.LogRecord) -> bool:
        return (record.levelno == self.levelno) != self.exclude


class TqdmConsoleHandler(logging.Handler):
    """Console handler that prints above an active tqdm bar instead of through it."""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__()
        self.stream = stream
        self.setFormatter(logging.Formatter("%(levelname)-8s | %(message)s"))

    def emit(self, record: logging.LogRecord):
        try:
            tqdm.write(self.format(record), file=self.stream or sys.stderr)
        except Exception:
            self.handleError(record)


class ProgressJsonHandler(logging.FileHandler):
    """Appends one JSON object per PROGRESS record."""

    def __init__(self, path: Union[str, Path]):
        super().__init__(path, mode="a", encoding="utf-8")
        self.setLevel(PROGRESS)
        self.addFilter(LevelFilter(PROGRESS))

    def format(self, record: logging.LogRecord) -> str:
        evt = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(record.created)),
            "msg": record.getMessage(),
        }
        for field in PROGRESS_FIELDS:
            evt[field] = getattr(record, field, None)
        return json.dumps(evt, ensure_ascii=False)


def setup_logging(
    log_queue: Any,
    *,
    console: bool = True,
    console_level: int = logging.WARNING,
    level: int = logging.INFO,
    file_path: Optional[Union[str, Path]] = None,
    file_level: Optional[int] = None,
    progress_path: Optional[Union[str, Path]] = None,
) -> QueueListener:
    """
    Route the package logger through ``log_queue`` and build its listener.

    Args:
        log_queue: Queue shared by the main process and all workers.
        console: Echo non-progress records to stderr via tqdm.write.
        console_level: Threshold for the console.
        level: Threshold for the package logger itself.
        file_path: Rotating log file; PROGRESS records are left out.
        file_level: Threshold for the log file (defaults to ``level``).
        progress_path: JSONL file that receives only PROGRESS records.

    Returns:
        A QueueListener; the caller starts and stops it.
    """
    handlers = []
    file_level = level if file_level is None else file_level

    if file_path:
        fp = Path(file_path)
        fp.parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(fp, maxBytes=5 * 1024 * 1024, backupCount=2, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter("%(asctime)s | %(processName)-15s | %(levelname)-8s | %(message)s"))
        fh.addFilter(LevelFilter(PROGRESS, exclude=True))
        handlers.append(fh)

    if console:
        ch = TqdmConsoleHandler()
        ch.setLevel(console_level)
        ch.addFilter(LevelFilter(PROGRESS, exclude=True))
        handlers.append(ch)

    if progress_path:
        pp = Path(progress_path)
        pp.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(ProgressJsonHandler(pp))

    logger = logging.getLogger("dualocr")
    logger.setLevel(min(level, file_level, PROGRESS if progress_path else level))
    logger.handlers.clear()
    logger.addHandler(QueueHandler(log_queue))
    logger.propagate = False

    return QueueListener(log_queue, *handlers, respect_handler_level=True)


def configure_worker_logging(log_queue: Any):
    """
    Point a recognizer worker's package logger at the shared queue.

    Runs from the executor initializer. A None queue (thread workers) leaves
    the parent's setup in place.
    """
    if log_queue is None:
        return
    logger = logging.getLogger("dualocr")
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.addHandler(QueueHandler(log_queue))
