# tests/fakes.py
"""In-process stand-ins for the OCR engine and the Gemini client."""
import asyncio
import threading
import time

from dualocr.exceptions import RecognitionFailure, RemoteError
from dualocr.models import LineRecord, RecognitionResult
from dualocr.ocr_backends.base import BaseOCREngine

# images equal to b"BLOCK" wait on this until a test releases them
GATE = threading.Event()


def result_for(text: str) -> RecognitionResult:
    lines = tuple(
        LineRecord(text=l.strip(), confidence=90.0, bbox={"x0": 0, "y0": i * 10, "x1": 100, "y1": i * 10 + 9})
        for i, l in enumerate(text.splitlines()) if l.strip()
    )
    return RecognitionResult(
        text=text,
        confidence=90.0 if text else 0.0,
        lines=lines,
        words=len(text.split()),
        paragraphs=1 if text else 0,
    )


class FakeEngine(BaseOCREngine):
    """
    The "image" is its own transcript:

      b"FAIL..."          -> RecognitionFailure
      b"SLEEP:<s>:<text>" -> sleeps s seconds, then <text>
      b"BLOCK"            -> waits for GATE, then "released"
      b"LANG"             -> the language profile this engine was built for
      anything else       -> the decoded bytes
    """

    def __init__(self, **kwargs):
        self.languages = kwargs.get("languages", "")

    def recognize(self, image: bytes) -> RecognitionResult:
        if image.startswith(b"FAIL"):
            raise RecognitionFailure("unreadable page")
        if image.startswith(b"SLEEP:"):
            _, secs, rest = image.split(b":", 2)
            time.sleep(float(secs))
            return result_for(rest.decode("utf-8"))
        if image == b"BLOCK":
            GATE.wait(5)
            return result_for("released")
        if image == b"LANG":
            return result_for(str(self.languages))
        return result_for(image.decode("utf-8", "replace"))


class BrokenEngine(BaseOCREngine):
    def __init__(self, **kwargs):
        raise RuntimeError("language data missing")

    def recognize(self, image: bytes) -> RecognitionResult:
        raise AssertionError("never constructed")


class FakeSecondary:
    """
    Async stand-in for GeminiVisionClient.

    ``texts`` maps original image bytes to the vision transcript (default:
    "vision <decoded bytes>"); ``fail_reads`` lists images whose read raises
    RemoteError; ``delays`` maps images to a read delay in seconds. Every call
    is appended to ``log`` so tests can check ordering.
    """

    def __init__(self, texts=None, fail_reads=(), delays=None, merged=None,
                 fail_merge=False, available=True, log=None):
        self.texts = dict(texts or {})
        self.fail_reads = set(fail_reads)
        self.delays = dict(delays or {})
        self.merged = merged
        self.fail_merge = fail_merge
        self.available = available
        self.log = log if log is not None else []

    def is_available(self) -> bool:
        return self.available

    async def read(self, image: bytes, language: str = "kor") -> str:
        self.log.append(("read", image))
        delay = self.delays.get(image, 0)
        if delay:
            await asyncio.sleep(delay)
        if image in self.fail_reads:
            raise RemoteError("Gemini request failed: 503")
        if image in self.texts:
            return self.texts[image]
        return "vision " + image.decode("utf-8", "replace")

    async def merge(self, primary_text: str, secondary_text: str, language: str = "kor") -> str:
        self.log.append(("merge", primary_text, secondary_text))
        if self.fail_merge:
            raise RemoteError("Gemini request failed: 500")
        if self.merged is not None:
            return self.merged
        return f"{primary_text} | {secondary_text}"
