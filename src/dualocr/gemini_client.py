"""Gemini vision client for the secondary recognition path.

A pure protocol adapter: one call to read text from an image, one call to
reconcile two transcripts. No retries and no caching; the orchestrator owns
sequencing and fallback.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from google import genai
from google.genai import types

from .config import DEFAULT_GEMINI_MODEL
from .credentials import CredentialResolver
from .exceptions import RemoteError, ServiceUnavailable
from .image_utils import sniff_mime_type

logger = logging.getLogger("dualocr")

READ_PROMPT = """Read the text in this image exactly as written.

Rules:
- Extract only the text that is visible in the image
- Keep the original line breaks and paragraph structure as closely as possible
- Preserve tables, lists and similar structure
- Do not add explanations, commentary or interpretation
- Primary language: {language}

Output the text of the image verbatim:"""

MERGE_PROMPT = """You are an OCR proofreading expert. The same image was recognized in two different ways.

## OCR engine result (glyph-level precise recognition):
```
{primary}
```

## AI vision result (context-aware multimodal recognition):
```
{secondary}
```

## Merge rules:
1. Cross-check both results and produce the single most accurate final text
2. Where the OCR engine missed or misread characters, recover them from the vision result
3. Where the vision result guessed from context, verify it against the OCR engine's exact glyphs
4. Keep the original line breaks, paragraphs and structure
5. Primary language: {language}
6. Output only the merged text: no explanations, no notes, no markdown code fences

Merged final text:"""


def language_hint(language: str) -> str:
    lang = (language or "").lower()
    if "kor" in lang:
        return "Korean"
    if "jpn" in lang:
        return "Japanese"
    if "chi" in lang:
        return "Chinese"
    return "English"


class GeminiVisionClient:
    """Stateless adapter around google-genai for the secondary path."""

    def __init__(
        self,
        credentials: Optional[CredentialResolver] = None,
        model: str = DEFAULT_GEMINI_MODEL,
        temperature: float = 0.0,
        client_factory: Optional[Callable[[str], Any]] = None,
    ):
        self.credentials = credentials or CredentialResolver()
        self.model = model
        self.temperature = temperature
        self._client_factory = client_factory or (lambda key: genai.Client(api_key=key))
        self._client: Any = None
        self._client_key: Optional[str] = None

    def is_available(self) -> bool:
        return self.credentials.get_credential() is not None

    def set_api_key(self, key: str) -> None:
        self.credentials.set_credential(key)
        self._reset()

    def clear_api_key(self) -> None:
        self.credentials.clear_credential()
        self._reset()

    def _reset(self) -> None:
        self._client = None
        self._client_key = None

    def _get_client(self) -> Any:
        key = self.credentials.get_credential()
        if not key:
            raise ServiceUnavailable("Gemini API key is not configured")
        if key != self._client_key:
            self._client = self._client_factory(key)
            self._client_key = key
        return self._client

    async def _generate(self, parts: list) -> str:
        client = self._get_client()
        try:
            resp = await client.aio.models.generate_content(
                model=self.model,
                contents=[types.Content(role="user", parts=parts)],
                config=types.GenerateContentConfig(temperature=self.temperature),
            )
        except Exception as e:
            raise RemoteError(f"Gemini request failed: {e}") from e
        try:
            return (resp.text or "").strip()
        except (AttributeError, ValueError) as e:
            raise RemoteError(f"Unexpected Gemini response: {e}") from e

    async def read(self, image: bytes, language: str = "kor") -> str:
        """Transcribe the full-resolution image; empty string when nothing came back."""
        prompt = READ_PROMPT.format(language=language_hint(language))
        parts = [
            types.Part.from_text(text=prompt),
            types.Part.from_bytes(data=image, mime_type=sniff_mime_type(image)),
        ]
        text = await self._generate(parts)
        logger.debug("Gemini read returned %d characters", len(text))
        return text

    async def merge(self, primary_text: str, secondary_text: str, language: str = "kor") -> str:
        """Reconcile both transcripts; falls back to ``primary_text`` on an empty reply."""
        prompt = MERGE_PROMPT.format(
            primary=primary_text,
            secondary=secondary_text,
            language=language_hint(language),
        )
        text = await self._generate([types.Part.from_text(text=prompt)])
        return text or primary_text
