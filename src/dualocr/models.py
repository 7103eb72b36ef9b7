# dualocr/models.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Mode(str, Enum):
    PRIMARY_ONLY = "ocr"
    DUAL_PATH = "ai"


class RefineStatus(str, Enum):
    DISABLED = "disabled"
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


# disabled is terminal; pending moves forward exactly once
_STATUS_TRANSITIONS = {
    RefineStatus.DISABLED: frozenset(),
    RefineStatus.PENDING: frozenset({RefineStatus.DONE, RefineStatus.FAILED}),
    RefineStatus.DONE: frozenset(),
    RefineStatus.FAILED: frozenset(),
}


class Phase(str, Enum):
    QUEUED = "queued"
    CACHE_HIT = "cache_hit"
    RECOGNIZING = "recognizing"
    RECOGNIZED = "recognized"
    RECOGNITION_FAILED = "recognition_failed"
    REFINING = "refining"
    MERGED = "merged"
    REFINE_FAILED = "refine_failed"
    PROGRESS = "progress"
    BATCH_DONE = "batch_done"


@dataclass(frozen=True)
class BatchImage:
    """One caller-supplied image in a batch."""
    image_id: str
    data: bytes
    filename: str = "unknown"


@dataclass(frozen=True)
class ImageJob:
    """Represents a single image scheduled for recognition."""
    image_id: str
    image: bytes             # normalized copy fed to the primary engine
    original: bytes          # full-resolution bytes sent to the secondary path
    fingerprint: str
    language: str
    filename: str = "unknown"


@dataclass(frozen=True)
class LineRecord:
    text: str
    confidence: float
    bbox: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RecognitionResult:
    """Structured output of the primary engine for one image."""
    text: str
    confidence: float
    lines: Tuple[LineRecord, ...] = ()
    words: int = 0
    paragraphs: int = 0


@dataclass(frozen=True)
class BatchItemResult:
    """Per-job outcome of a pool batch; result is None when the job failed."""
    image_id: str
    result: Optional[RecognitionResult]
    error: Optional[str] = None

    @property
    def text(self) -> str:
        return self.result.text if self.result else ""

    @property
    def confidence(self) -> float:
        return self.result.confidence if self.result else 0.0


@dataclass(frozen=True)
class SecondaryResult:
    """Transcript from the remote path, or a failure marker when error is set."""
    text: str = ""
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def usable(self) -> bool:
        return not self.failed and bool(self.text)


@dataclass(frozen=True)
class MergeOutcome:
    current_text: str
    merged_text: Optional[str]
    status: RefineStatus
    reason: Optional[str] = None


@dataclass(frozen=True)
class CacheKey:
    fingerprint: str
    language: str
    mode: Mode

    def __str__(self) -> str:
        return f"{self.fingerprint}_{self.language}_{self.mode.value}"


@dataclass(frozen=True)
class CacheEntry:
    """Frozen copy of the fields needed to rebuild a ResultEntry."""
    text: str
    primary_text: str
    secondary_text: Optional[str]
    merged_text: Optional[str]
    confidence: float
    lines: Tuple[LineRecord, ...]
    words: int
    paragraphs: int
    refine_status: RefineStatus


@dataclass
class ResultEntry:
    """The user-visible, per-image result. Owned by the orchestrator for a batch."""
    image_id: str
    filename: str
    text: str
    primary_text: str
    secondary_text: Optional[str] = None
    merged_text: Optional[str] = None
    confidence: float = 0.0
    lines: Tuple[LineRecord, ...] = ()
    words: int = 0
    paragraphs: int = 0
    refine_status: RefineStatus = RefineStatus.DISABLED
    error: Optional[str] = None
    from_cache: bool = False

    @classmethod
    def from_recognition(cls, image_id: str, filename: str, item: BatchItemResult,
                         refine_status: RefineStatus) -> "ResultEntry":
        res = item.result
        return cls(
            image_id=image_id,
            filename=filename,
            text=item.text,
            primary_text=item.text,
            confidence=item.confidence,
            lines=res.lines if res else (),
            words=res.words if res else 0,
            paragraphs=res.paragraphs if res else 0,
            refine_status=refine_status,
            error=item.error,
        )

    @classmethod
    def from_cache_entry(cls, image_id: str, filename: str, cached: CacheEntry) -> "ResultEntry":
        return cls(
            image_id=image_id,
            filename=filename,
            text=cached.text,
            primary_text=cached.primary_text,
            secondary_text=cached.secondary_text,
            merged_text=cached.merged_text,
            confidence=cached.confidence,
            lines=cached.lines,
            words=cached.words,
            paragraphs=cached.paragraphs,
            refine_status=cached.refine_status,
            from_cache=True,
        )

    @property
    def is_terminal(self) -> bool:
        return self.refine_status is not RefineStatus.PENDING

    def advance(self, status: RefineStatus) -> None:
        if status not in _STATUS_TRANSITIONS[self.refine_status]:
            raise ValueError(
                f"Illegal refinement transition for {self.image_id}: "
                f"{self.refine_status.value} -> {status.value}"
            )
        self.refine_status = status

    def apply_merge(self, outcome: MergeOutcome, secondary_text: Optional[str]) -> None:
        self.secondary_text = secondary_text
        self.advance(outcome.status)
        if outcome.status is RefineStatus.DONE:
            self.merged_text = outcome.merged_text
            self.text = outcome.merged_text or ""
        else:
            self.text = self.primary_text

    def snapshot(self) -> "ResultEntry":
        return replace(self)

    def to_cache_entry(self) -> CacheEntry:
        return CacheEntry(
            text=self.text,
            primary_text=self.primary_text,
            secondary_text=self.secondary_text,
            merged_text=self.merged_text,
            confidence=self.confidence,
            lines=tuple(self.lines),
            words=self.words,
            paragraphs=self.paragraphs,
            refine_status=self.refine_status,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.image_id,
            "filename": self.filename,
            "text": self.text,
            "ocr_text": self.primary_text,
            "vision_text": self.secondary_text,
            "merged_text": self.merged_text,
            "confidence": round(float(self.confidence), 2),
            "lines": [
                {"text": l.text, "confidence": l.confidence, "bbox": dict(l.bbox)}
                for l in self.lines
            ],
            "words": self.words,
            "paragraphs": self.paragraphs,
            "ai_status": self.refine_status.value,
            "error": self.error,
            "cached": self.from_cache,
        }


@dataclass(frozen=True)
class BatchSummary:
    batch_id: int
    count: int
    total_characters: int
    cache_hits: int
    refined: int
    refine_failed: int
    recognition_failures: int
    mode: Mode
    entries: List[ResultEntry] = field(default_factory=list)
