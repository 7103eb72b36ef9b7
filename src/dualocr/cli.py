# src/dualocr/cli.py
from __future__ import annotations

import argparse
import ast
import asyncio
import importlib
import json
import logging
import multiprocessing as mp
import queue
import re
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from tqdm import tqdm

from .cache import ResultCache
from .config import DEFAULT_BACKEND, DualOCRConfig
from .credentials import CredentialResolver
from .events import ImageEvent
from .logger import setup_logging
from .models import BatchImage, BatchSummary, ResultEntry
from .ocr_worker import normalize_backend_alias
from .orchestrator import DualPathOrchestrator
from .utils import collect_image_paths, log_error, safe_fname

__all__ = ["collect_images", "run_images", "main"]

logger = logging.getLogger("dualocr")

DEFAULT_CREDENTIAL_PATH = Path.home() / ".dualocr" / "credentials.json"

# Helper

def _parse_backend_kwargs(val) -> dict:
    """
    Accept several syntaxes for --ocr-backend-kwargs:
      1) JSON (double quotes)                      {"oem":1,"psm":6}
      2) Python-literal dict with single quotes    {'oem': 1, 'psm': 6}
      3) key=value pairs separated by ;            oem=1;psm=6;languages=kor,eng
    """
    if isinstance(val, dict):
        return dict(val)
    if not isinstance(val, str):
        return {}

    s = val.strip()
    if len(s) >= 2 and s[0] in ("'", '"') and s[-1] == s[0]:
        s = s[1:-1].strip()
    if not s:
        return {}

    try:
        parsed = json.loads(s)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    try:
        lit = ast.literal_eval(s)
        if isinstance(lit, dict):
            return lit
    except (ValueError, SyntaxError):
        pass

    out: dict = {}
    for part in re.split(r";\s*", s):
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        k = k.strip().strip('"\'')
        v = v.strip().strip('"\'')

        if "," in v:
            v = [x.strip() for x in v.split(",") if x.strip()]
        else:
            low = v.lower()
            if low in ("true", "false"):
                v = (low == "true")
            elif re.fullmatch(r"-?\d+", v):
                v = int(v)
            elif re.fullmatch(r"-?\d+\.\d*", v):
                v = float(v)
        out[k] = v

    if out:
        return out

    raise SystemExit(f"Invalid --ocr-backend-kwargs. Could not parse: {val!r}")


def _normalize_common_backend_kwargs(d: dict) -> dict:
    """hyphen-case -> snake_case, lowercase keys, 'lang' -> 'languages'."""
    out = {k.strip().lower().replace("-", "_"): v for k, v in (d or {}).items()}
    if "languages" not in out and "lang" in out:
        out["languages"] = out.pop("lang")
    return out


def _preflight_backend_import(dotted: str) -> None:
    """
    Import the backend class now, so a typo fails fast with a clear message
    instead of inside a worker process later.
    """
    try:
        module_path, cls_name = dotted.rsplit(".", 1)
    except ValueError:
        raise SystemExit(f"--ocr-backend must be 'module.Class' or an alias, got: {dotted!r}")

    try:
        mod = importlib.import_module(module_path)
    except ImportError as e:
        raise SystemExit(f"Cannot import backend module: {module_path!r} ({e})")

    if not hasattr(mod, cls_name):
        raise SystemExit(
            f"Backend class not found: {dotted}\n"
            f"- For Tesseract use: tesseract\n"
            f"- For EasyOCR use:   easyocr"
        )


def _normalize_output_path(arg: Path) -> Path:
    """
    Accept both files and directories for --output-path.
    An existing directory gets a timestamped JSONL inside it; a name without
    suffix gets .jsonl.
    """
    out = Path(arg)
    if out.exists() and out.is_dir():
        out = out / f"dualocr_{datetime.now():%Y%m%d_%H%M%S}.jsonl"
    elif out.suffix == "":
        out = out.with_suffix(".jsonl")

    out.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(out, "a", encoding="utf-8"):
            pass
    except OSError as e:
        raise SystemExit(f"--output-path is not writable: {out} ({e})")
    return out


def collect_images(inputs: List[Path]) -> tuple:
    """
    Read input images into BatchImages with ids assigned in input order.

    Returns (images, sources) where sources maps image id -> source path.
    Unreadable files are logged and skipped.
    """
    images: List[BatchImage] = []
    sources: Dict[str, Path] = {}
    for path in collect_image_paths(inputs):
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.error("Cannot read %s, %s", path, e)
            continue
        image_id = str(len(images))
        images.append(BatchImage(image_id=image_id, data=data, filename=path.name))
        sources[image_id] = path
    return images, sources


async def run_images(
    config: DualOCRConfig,
    images: List[BatchImage],
    sources: Dict[str, Path],
    credentials: Optional[CredentialResolver] = None,
    orchestrator: Optional[DualPathOrchestrator] = None,
) -> BatchSummary:
    """
    Run one batch and stream every terminal result to the output JSONL,
    the error log and (optionally) per-image text files.
    """
    if orchestrator is None:
        orchestrator = DualPathOrchestrator.from_config(config, ResultCache(), credentials)
    if config.export_txt and config.export_dir:
        config.export_dir.mkdir(parents=True, exist_ok=True)

    bar = tqdm(total=len(images), desc="Recognizing", unit="img")
    written = set()

    with open(config.output_path, "a", encoding="utf-8") as out:

        def on_event(event: ImageEvent) -> None:
            entry = event.payload
            if not isinstance(entry, ResultEntry) or not entry.is_terminal:
                return
            if entry.image_id in written:
                return
            written.add(entry.image_id)

            source = str(sources.get(entry.image_id, entry.filename))
            record = entry.to_dict()
            record["source_path"] = source
            record["batch_id"] = event.batch_id
            out.write(json.dumps(record, ensure_ascii=False) + "\n")
            out.flush()

            if entry.error:
                log_error(config.error_log_path, source, entry.error)
            if config.export_txt and config.export_dir:
                stem = Path(entry.filename).stem
                txt_path = config.export_dir / safe_fname(f"{int(entry.image_id):04d}-{stem}.txt")
                txt_path.write_text(entry.text or "", encoding="utf-8")
            bar.update(1)

        try:
            async with orchestrator:
                summary = await orchestrator.run_batch(
                    images, config.language, dual_path=config.dual_path, observer=on_event
                )
        finally:
            bar.close()

    return summary


# -------------------------------
# CLI parsing
# -------------------------------

def _build_run_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    p = subparsers.add_parser("run", help="Recognize a set of images")

    p.add_argument("-i", "--input", dest="inputs", type=Path, nargs="+", required=True,
                   help="Image files or directories (scanned recursively)")
    p.add_argument("-o", "--output-path", type=Path, required=True,
                   help="Output results path. Accepts a .jsonl file OR a directory.")
    p.add_argument("--error-log-path", type=Path, help="Path to save the error log JSONL file")

    p.add_argument("-l", "--language", default="kor",
                   help="Language profile, e.g. kor, eng, kor+eng")
    p.add_argument("--dual-path", action="store_true",
                   help="Also read each image with Gemini and merge both transcripts")
    p.add_argument("--max-dimension", type=int, help="Longest side fed to the OCR engine")
    p.add_argument("--export-txt", type=Path, metavar="DIR",
                   help="Also write one .txt per image into DIR")
    p.add_argument("--progress-log", type=Path, metavar="PATH",
                   help="Write progress records as JSONL to PATH")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Show INFO messages on the console")

    perf = p.add_argument_group("Workers")
    perf.add_argument("-w", "--workers", type=int, help="Maximum number of OCR workers")
    perf.add_argument("--worker-mode", choices=["process", "thread"], help="Executor kind for OCR workers")
    perf.add_argument("--ocr-backend", type=str, default=DEFAULT_BACKEND,
                      help="OCR backend alias (tesseract, easyocr) or dotted 'module.Class' path")
    perf.add_argument(
        "--ocr-backend-kwargs",
        type=str,
        default="{}",
        help=('Backend init kwargs as JSON or key=value pairs, e.g. '
              '\'{"oem":1,"psm":6}\'  or  oem=1;psm=6'),
    )

    key = p.add_argument_group("Gemini")
    key.add_argument("--gemini-model", help="Gemini model name")
    key.add_argument("--credential-path", type=Path, default=DEFAULT_CREDENTIAL_PATH,
                     help="Where the stored API key lives")
    return p


def _build_key_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    kp = subparsers.add_parser("key", help="Manage the stored Gemini API key")
    kp.add_argument("action", choices=["set", "clear", "status"])
    kp.add_argument("value", nargs="?", help="API key (for 'set')")
    kp.add_argument("--credential-path", type=Path, default=DEFAULT_CREDENTIAL_PATH,
                    help="Where the stored API key lives")
    return kp


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="dualocr, OCR with optional Gemini vision refinement")
    subparsers = parser.add_subparsers(dest="command")
    _build_run_parser(subparsers)
    _build_key_parser(subparsers)
    return parser.parse_args(argv)


# -------------------------------
# Entry points
# -------------------------------

def _key_from_cli(args: argparse.Namespace) -> int:
    resolver = CredentialResolver(store_path=args.credential_path)
    if args.action == "set":
        if not args.value:
            raise SystemExit("Usage: dualocr key set <API_KEY>")
        try:
            resolver.set_credential(args.value)
        except ValueError as e:
            raise SystemExit(str(e))
        print(f"API key saved to {args.credential_path}")
    elif args.action == "clear":
        resolver.clear_credential()
        print("Stored API key removed")
    else:
        key = resolver.get_credential()
        if key:
            print(f"API key configured (...{key[-4:]})")
        else:
            print("No API key configured; dual-path runs fall back to OCR only")
    return 0


def _run_from_cli(args: argparse.Namespace) -> int:
    output_path = _normalize_output_path(args.output_path)

    backend = normalize_backend_alias(args.ocr_backend)
    _preflight_backend_import(backend)

    worker_mode = args.worker_mode or "process"
    if worker_mode == "process":
        log_queue = mp.get_context("spawn").Manager().Queue(-1)
    else:
        log_queue = queue.Queue(-1)

    log_file = output_path.with_suffix(".log")
    listener = setup_logging(
        log_queue,
        console_level=logging.INFO if args.verbose else logging.WARNING,
        level=logging.INFO,
        file_path=log_file,
        progress_path=args.progress_log,
    )
    listener.start()

    try:
        backend_kwargs = _normalize_common_backend_kwargs(_parse_backend_kwargs(args.ocr_backend_kwargs))
        cfg_dict = {
            "language": args.language,
            "dual_path": args.dual_path,
            "max_workers": args.workers,
            "worker_mode": worker_mode,
            "max_dimension": args.max_dimension,
            "ocr_backend": backend,
            "ocr_backend_kwargs": backend_kwargs,
            "gemini_model": args.gemini_model,
            "credential_path": args.credential_path,
            "output_path": output_path,
            "error_log_path": args.error_log_path,
            "export_txt": args.export_txt is not None,
            "export_dir": args.export_txt,
            "log_queue": log_queue,
        }
        config = DualOCRConfig.from_dict({k: v for k, v in cfg_dict.items() if v is not None})

        logger.info("Starting dualocr")
        logger.info("Output file, %s", config.output_path)
        logger.info("Language, %s | dual path, %s | workers, %s (%s)",
                    config.language, config.dual_path, config.max_workers, config.worker_mode)

        images, sources = collect_images(args.inputs)
        if not images:
            logger.info("No images found in the given inputs")
            return 1

        started = time.perf_counter()
        summary = asyncio.run(run_images(config, images, sources))
        logger.info(
            "Processed %d image(s), %d characters, %d from cache, %d refined, %d failed, %.1fs",
            summary.count, summary.total_characters, summary.cache_hits,
            summary.refined, summary.recognition_failures, time.perf_counter() - started,
        )
        print(f"{summary.count} image(s), {summary.total_characters} characters -> {config.output_path}")
        return 0 if not summary.recognition_failures else 3
    finally:
        listener.stop()


def main(argv: Optional[List[str]] = None):
    args = _parse_args(argv)

    if args.command == "run":
        sys.exit(_run_from_cli(args))
    if args.command == "key":
        sys.exit(_key_from_cli(args))

    print("Usage:\n  dualocr run -i <images...> -o <results.jsonl> [options]\n  dualocr key set|clear|status [VALUE]")
    sys.exit(2)


if __name__ == "__main__":
    main()
