# tests/test_logger.py
import io
import json
import logging
import queue

from dualocr.logger import (
    PROGRESS,
    LevelFilter,
    TqdmConsoleHandler,
    configure_worker_logging,
    setup_logging,
)


def _record(levelno, msg="m"):
    return logging.LogRecord("dualocr", levelno, __file__, 1, msg, None, None)


def _stop(listener):
    listener.stop()
    for h in listener.handlers:
        h.close()


def test_level_filter_keeps_or_drops_one_level():
    only = LevelFilter(PROGRESS)
    without = LevelFilter(PROGRESS, exclude=True)
    assert only.filter(_record(PROGRESS))
    assert not only.filter(_record(logging.INFO))
    assert not without.filter(_record(PROGRESS))
    assert without.filter(_record(logging.WARNING))


def test_console_handler_writes_through_tqdm():
    out = io.StringIO()
    handler = TqdmConsoleHandler(out)
    handler.handle(_record(logging.WARNING, "disk almost full"))
    assert out.getvalue() == "WARNING  | disk almost full\n"


def test_console_shows_warnings_but_not_progress(monkeypatch):
    listener = setup_logging(queue.Queue(-1), console_level=logging.INFO)
    out = io.StringIO()
    console = next(h for h in listener.handlers if isinstance(h, TqdmConsoleHandler))
    monkeypatch.setattr(console, "stream", out)

    listener.start()
    try:
        log = logging.getLogger("dualocr")
        log.debug("hidden")
        log.info("batch started")
        log.progress("halfway", extra={"phase": "batch", "pct": 50.0})
    finally:
        _stop(listener)

    lines = out.getvalue().splitlines()
    assert lines == ["INFO     | batch started"]


def test_progress_records_go_to_jsonl(tmp_path):
    progress_file = tmp_path / "progress" / "run.jsonl"
    listener = setup_logging(queue.Queue(-1), console=False, level=logging.WARNING,
                             progress_path=progress_file)
    listener.start()
    try:
        log = logging.getLogger("dualocr")
        log.warning("not progress")
        log.progress("recognize progress", extra={"phase": "recognize", "current": 1, "total": 2,
                                                  "image_id": "a"})
        log.progress("Done", extra={"phase": "batch", "pct": 100.0, "batch_id": 3})
    finally:
        _stop(listener)

    events = [json.loads(line) for line in progress_file.read_text(encoding="utf-8").splitlines()]
    assert [e["msg"] for e in events] == ["recognize progress", "Done"]
    assert events[0]["phase"] == "recognize"
    assert events[0]["current"] == 1 and events[0]["total"] == 2
    assert events[0]["image_id"] == "a"
    assert events[0]["pct"] is None
    assert events[1]["batch_id"] == 3
    assert "ts" in events[1]


def test_file_handler_skips_progress(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    listener = setup_logging(queue.Queue(-1), console=False, file_path=log_file)
    listener.start()
    try:
        log = logging.getLogger("dualocr")
        log.warning("written")
        log.progress("not written", extra={"phase": "batch", "pct": 50})
    finally:
        _stop(listener)

    content = log_file.read_text(encoding="utf-8")
    assert "written" in content
    assert "not written" not in content


def test_worker_logging_without_queue_is_noop():
    log = logging.getLogger("dualocr")
    before = list(log.handlers)
    configure_worker_logging(None)
    assert log.handlers == before
