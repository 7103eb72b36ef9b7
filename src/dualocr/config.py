# dualocr/config.py
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Any, Optional


DEFAULT_BACKEND = "dualocr.ocr_backends.tesseract_backend.TesseractOCREngine"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


@dataclass
class DualOCRConfig:
    """Configuration for a dualocr session."""
    language: str = "kor"
    dual_path: bool = False

    max_workers: int = 4
    worker_mode: str = "process"          # "process" or "thread"
    max_dimension: int = 2000             # longest side fed to the primary engine

    ocr_backend: str = DEFAULT_BACKEND
    ocr_backend_kwargs: Dict[str, Any] = field(default_factory=dict)

    gemini_model: str = DEFAULT_GEMINI_MODEL
    credential_path: Optional[Path] = None

    output_path: Optional[Path] = None
    error_log_path: Path = Path("dualocr_error_log.jsonl")
    export_txt: bool = False
    export_dir: Optional[Path] = None

    log_queue: Optional[Any] = None

    def to_dict(self):
        """Converts config to a plain dictionary (paths as strings)."""
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, Path):
                d[key] = str(value)
        return d

    @classmethod
    def from_dict(cls, config_dict: dict):
        d = dict(config_dict)

        for key in ["credential_path", "output_path", "error_log_path", "export_dir"]:
            if key in d and isinstance(d[key], str):
                d[key] = Path(d[key])

        # explicit None means use default
        for key in ["language", "max_workers", "worker_mode", "max_dimension",
                    "ocr_backend", "gemini_model", "error_log_path"]:
            if d.get(key) is None:
                d.pop(key, None)

        cfg = cls(**d)

        if cfg.worker_mode not in ("process", "thread"):
            raise ValueError(f"worker_mode must be 'process' or 'thread', got {cfg.worker_mode!r}")

        # exporting without a directory writes next to the results file
        if cfg.export_txt and not cfg.export_dir and cfg.output_path:
            cfg.export_dir = Path(str(cfg.output_path)).parent

        return cfg
