# tests/test_config.py
from pathlib import Path

import pytest

from dualocr.config import DEFAULT_BACKEND, DEFAULT_GEMINI_MODEL, DualOCRConfig


def test_defaults():
    cfg = DualOCRConfig()
    assert cfg.language == "kor"
    assert cfg.dual_path is False
    assert cfg.max_workers == 4
    assert cfg.worker_mode == "process"
    assert cfg.max_dimension == 2000
    assert cfg.ocr_backend == DEFAULT_BACKEND
    assert cfg.gemini_model == DEFAULT_GEMINI_MODEL


def test_from_dict_normalizes_paths_and_none():
    cfg = DualOCRConfig.from_dict({
        "output_path": "out/results.jsonl",
        "error_log_path": None,
        "language": None,
        "max_workers": 2,
        "export_txt": True,
    })
    assert cfg.output_path == Path("out/results.jsonl")
    assert cfg.error_log_path == Path("dualocr_error_log.jsonl")
    assert cfg.language == "kor"
    assert cfg.max_workers == 2
    assert cfg.export_dir == Path("out")


def test_from_dict_rejects_unknown_worker_mode():
    with pytest.raises(ValueError):
        DualOCRConfig.from_dict({"worker_mode": "gpu"})


def test_to_dict_stringifies_paths():
    d = DualOCRConfig(output_path=Path("a/b.jsonl")).to_dict()
    assert d["output_path"] == str(Path("a/b.jsonl"))
    assert DualOCRConfig.from_dict(d).output_path == Path("a/b.jsonl")
