# tests/test_cli.py
import asyncio
import json

import pytest

from dualocr import cli
from dualocr.config import DualOCRConfig
from dualocr.credentials import ENV_API_KEY
from dualocr.orchestrator import DualPathOrchestrator
from dualocr.pool import PrimaryRecognizerPool
from dualocr.utils import collect_image_paths, safe_fname

from tests.fakes import FakeEngine, FakeSecondary


def test_parse_backend_kwargs_syntaxes():
    assert cli._parse_backend_kwargs('{"oem": 1, "psm": 6}') == {"oem": 1, "psm": 6}
    assert cli._parse_backend_kwargs("{'gpu': False}") == {"gpu": False}
    assert cli._parse_backend_kwargs("oem=1;psm=6;languages=kor,eng;gpu=true") == {
        "oem": 1, "psm": 6, "languages": ["kor", "eng"], "gpu": True,
    }
    assert cli._parse_backend_kwargs("{}") == {}
    with pytest.raises(SystemExit):
        cli._parse_backend_kwargs("nonsense")


def test_normalize_common_backend_kwargs():
    assert cli._normalize_common_backend_kwargs({"Lang": "kor", "Tesseract-Cmd": "/bin/t"}) == {
        "languages": "kor", "tesseract_cmd": "/bin/t",
    }


def test_normalize_output_path(tmp_path):
    assert cli._normalize_output_path(tmp_path / "out" / "results") == tmp_path / "out" / "results.jsonl"
    in_dir = cli._normalize_output_path(tmp_path)
    assert in_dir.parent == tmp_path and in_dir.suffix == ".jsonl"


def test_collect_images_assigns_ids_in_input_order(tmp_path):
    (tmp_path / "scans" / "sub").mkdir(parents=True)
    (tmp_path / "scans" / "b.png").write_bytes(b"bee")
    (tmp_path / "scans" / "sub" / "a.JPG").write_bytes(b"ay")
    (tmp_path / "scans" / "notes.txt").write_text("skip me")
    single = tmp_path / "first.webp"
    single.write_bytes(b"first")

    images, sources = cli.collect_images([single, tmp_path / "scans", single, tmp_path / "missing"])

    assert [img.image_id for img in images] == ["0", "1", "2"]
    assert [img.filename for img in images] == ["first.webp", "b.png", "a.JPG"]
    assert sources["2"] == tmp_path / "scans" / "sub" / "a.JPG"
    assert len(collect_image_paths([tmp_path / "scans"])) == 2


def test_safe_fname():
    assert safe_fname("0001-Scan Page (1).txt") == "0001-scan-page-1.txt"
    assert safe_fname("") == "file"
    assert safe_fname("***") == "file"


def test_run_images_writes_results(tmp_path):
    out = tmp_path / "results.jsonl"
    errors = tmp_path / "errors.jsonl"
    txt_dir = tmp_path / "txt"
    config = DualOCRConfig.from_dict({
        "output_path": out,
        "error_log_path": errors,
        "export_txt": True,
        "export_dir": txt_dir,
        "dual_path": True,
        "worker_mode": "thread",
    })
    images, sources = [], {}
    for name, data in (("Page One.png", b"hello"), ("broken.png", b"FAIL")):
        path = tmp_path / name
        path.write_bytes(data)
        images.append(cli.BatchImage(image_id=str(len(images)), data=data, filename=name))
        sources[images[-1].image_id] = path

    pool = PrimaryRecognizerPool(FakeEngine, max_workers=1, worker_mode="thread")
    orch = DualPathOrchestrator(pool, FakeSecondary(fail_reads={b"FAIL"}))
    summary = asyncio.run(cli.run_images(config, images, sources, orchestrator=orch))

    records = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    assert sorted(r["id"] for r in records) == ["0", "1"]
    by_id = {r["id"]: r for r in records}
    assert by_id["0"]["text"] == "hello | vision hello"
    assert by_id["0"]["ai_status"] == "done"
    assert by_id["1"]["ai_status"] == "failed"
    assert by_id["1"]["source_path"] == str(tmp_path / "broken.png")

    error_lines = [json.loads(line) for line in errors.read_text(encoding="utf-8").splitlines()]
    assert [e["source_path"] for e in error_lines] == [str(tmp_path / "broken.png")]
    assert "RecognitionFailure" in error_lines[0]["error_reason"]

    assert (txt_dir / "0000-page-one.txt").read_text(encoding="utf-8") == "hello | vision hello"
    assert summary.count == 2


def test_key_commands(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv(ENV_API_KEY, raising=False)
    store = tmp_path / "creds.json"

    with pytest.raises(SystemExit) as info:
        cli.main(["key", "status", "--credential-path", str(store)])
    assert info.value.code == 0
    assert "No API key" in capsys.readouterr().out

    with pytest.raises(SystemExit):
        cli.main(["key", "set", "secret-1234", "--credential-path", str(store)])
    assert store.exists()

    with pytest.raises(SystemExit):
        cli.main(["key", "status", "--credential-path", str(store)])
    assert "...1234" in capsys.readouterr().out

    with pytest.raises(SystemExit):
        cli.main(["key", "clear", "--credential-path", str(store)])
    assert not store.exists()


def test_no_command_prints_usage(capsys):
    with pytest.raises(SystemExit) as info:
        cli.main([])
    assert info.value.code == 2
    assert "dualocr run" in capsys.readouterr().out


def test_run_logging_flags(tmp_path):
    args = cli._parse_args(["run", "-i", str(tmp_path), "-o", str(tmp_path / "out.jsonl"),
                            "-v", "--progress-log", str(tmp_path / "progress.jsonl")])
    assert args.verbose
    assert args.progress_log == tmp_path / "progress.jsonl"

    quiet = cli._parse_args(["run", "-i", str(tmp_path), "-o", str(tmp_path / "out.jsonl")])
    assert not quiet.verbose
    assert quiet.progress_log is None
