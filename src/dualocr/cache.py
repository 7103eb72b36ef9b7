# src/dualocr/cache.py
from __future__ import annotations

import logging
from typing import Dict, Optional

from .models import CacheEntry, CacheKey, Mode

logger = logging.getLogger("dualocr")


class ResultCache:
    """
    Session-scoped memo of finished results keyed by
    (content fingerprint, language profile, mode).

    In memory only, no eviction: a session covers a bounded set of
    user-supplied images.
    """

    def __init__(self):
        self._entries: Dict[CacheKey, CacheEntry] = {}

    @staticmethod
    def key(fingerprint: str, language: str, mode: Mode) -> CacheKey:
        return CacheKey(fingerprint=fingerprint, language=language, mode=Mode(mode))

    def get(self, fingerprint: str, language: str, mode: Mode) -> Optional[CacheEntry]:
        return self._entries.get(self.key(fingerprint, language, mode))

    def put(self, fingerprint: str, language: str, mode: Mode, entry: CacheEntry) -> None:
        key = self.key(fingerprint, language, mode)
        if key in self._entries:
            logger.debug("Replacing cache entry %s", key)
        self._entries[key] = entry

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
