# src/dualocr/credentials.py
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("dualocr")

ENV_API_KEY = "GEMINI_API_KEY"
PLACEHOLDER_KEY = "YOUR_API_KEY_HERE"
_STORE_FIELD = "gemini_api_key"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if not value or value == PLACEHOLDER_KEY:
        return None
    return value


class CredentialResolver:
    """
    Resolves the remote recognizer's API key.

    A user-provided key (set_credential, optionally persisted to ``store_path``)
    wins over the environment default. The placeholder value counts as absent.
    """

    def __init__(self, env_var: str = ENV_API_KEY, store_path: Optional[Union[str, Path]] = None):
        self.env_var = env_var
        self.store_path = Path(store_path) if store_path else None
        self._explicit: Optional[str] = self._load()

    def _load(self) -> Optional[str]:
        if not self.store_path or not self.store_path.exists():
            return None
        try:
            data = json.loads(self.store_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable credential store %s, %s", self.store_path, e)
            return None
        return _clean(data.get(_STORE_FIELD)) if isinstance(data, dict) else None

    def _save(self, value: Optional[str]) -> None:
        if not self.store_path:
            return
        if value is None:
            self.store_path.unlink(missing_ok=True)
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        self.store_path.write_text(json.dumps({_STORE_FIELD: value}), encoding="utf-8")
        try:
            os.chmod(self.store_path, 0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", self.store_path)

    def get_credential(self) -> Optional[str]:
        if self._explicit:
            return self._explicit
        return _clean(os.environ.get(self.env_var))

    def set_credential(self, value: str) -> None:
        cleaned = _clean(value)
        if cleaned is None:
            raise ValueError("API key must be a non-empty value")
        self._explicit = cleaned
        self._save(cleaned)

    def clear_credential(self) -> None:
        self._explicit = None
        self._save(None)
