# src/dualocr/orchestrator.py
"""
Dual-path recognition orchestrator.

Per image: cache probe -> primary recognition (pool) with the secondary read
already in flight -> provisional result -> merge -> final result -> cache.

All mutation of a batch's ResultEntries happens in one owner loop that
drains a per-batch message queue. Pool hooks and refinement tasks only post
messages to it.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from .cache import ResultCache
from .config import DualOCRConfig
from .credentials import CredentialResolver
from .events import EventChannel, ImageEvent, Observer, as_channel
from .gemini_client import GeminiVisionClient
from .image_utils import DEFAULT_MAX_DIMENSION, fingerprint, normalize
from .merge import reconcile
from .models import (
    BatchImage,
    BatchItemResult,
    BatchSummary,
    CacheKey,
    ImageJob,
    MergeOutcome,
    Mode,
    Phase,
    RefineStatus,
    ResultEntry,
    SecondaryResult,
)
from .pool import PrimaryRecognizerPool

logger = logging.getLogger("dualocr")

# overall progress bands: engine setup, preprocessing, recognition, refinement
_SETUP = (0.0, 0.10)
_PREPROCESS = (0.10, 0.15)
_RECOGNIZE = (0.15, 0.90)
_REFINE = (0.90, 1.0)


def _scale(band: tuple, fraction: float) -> float:
    lo, hi = band
    return lo + (hi - lo) * max(0.0, min(1.0, fraction))


@dataclass
class _Message:
    kind: str                               # start | complete | progress | refined | primary_done
    image_id: Optional[str] = None
    item: Optional[BatchItemResult] = None
    outcome: Optional[MergeOutcome] = None
    secondary: Optional[SecondaryResult] = None
    fraction: float = 0.0
    text: str = ""


@dataclass
class _Batch:
    batch_id: int
    language: str
    mode: Mode
    channel: EventChannel
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    entries: Dict[str, ResultEntry] = field(default_factory=dict)
    jobs: Dict[str, ImageJob] = field(default_factory=dict)
    written_keys: Set[CacheKey] = field(default_factory=set)
    secondary_tasks: Dict[str, asyncio.Task] = field(default_factory=dict)
    refine_tasks: Dict[str, asyncio.Task] = field(default_factory=dict)
    refines_settled: int = 0
    last_fraction: float = 0.0

    @property
    def dual(self) -> bool:
        return self.mode is Mode.DUAL_PATH

    def emit(self, image_id: Optional[str], phase: Phase, payload=None) -> None:
        self.channel.publish(ImageEvent(self.batch_id, image_id, phase, payload))

    def progress(self, fraction: float, message: str) -> None:
        # refinements settle while recognition is still reporting; never go backwards
        fraction = max(self.last_fraction, fraction)
        self.last_fraction = fraction
        self.emit(None, Phase.PROGRESS, {"fraction": round(fraction, 4), "message": message})
        logger.progress(message, extra={"phase": "batch", "pct": round(fraction * 100, 1),
                                        "batch_id": self.batch_id})


class DualPathOrchestrator:
    """
    Runs batches of images through the primary pool and, in dual-path mode,
    the secondary client, merging each image exactly once.

    The pool is owned by the orchestrator; the cache may be shared between
    orchestrators of one session.
    """

    def __init__(
        self,
        pool: PrimaryRecognizerPool,
        secondary: Optional[GeminiVisionClient] = None,
        cache: Optional[ResultCache] = None,
        *,
        max_dimension: int = DEFAULT_MAX_DIMENSION,
    ):
        self.pool = pool
        self.secondary = secondary
        self.cache = cache if cache is not None else ResultCache()
        self.max_dimension = max_dimension
        self._batch_ids = itertools.count(1)
        self.current_batch_id: Optional[int] = None

    @classmethod
    def from_config(cls, config: DualOCRConfig, cache: Optional[ResultCache] = None,
                    credentials: Optional[CredentialResolver] = None) -> "DualPathOrchestrator":
        pool = PrimaryRecognizerPool(
            config.ocr_backend,
            config.ocr_backend_kwargs,
            max_workers=config.max_workers,
            worker_mode=config.worker_mode,
            log_queue=config.log_queue if config.worker_mode == "process" else None,
        )
        credentials = credentials or CredentialResolver(store_path=config.credential_path)
        client = GeminiVisionClient(credentials, model=config.gemini_model)
        return cls(pool, client, cache, max_dimension=config.max_dimension)

    def dual_path_available(self) -> bool:
        return self.secondary is not None and self.secondary.is_available()

    # -----------------------------
    # Public entry point
    # -----------------------------
    async def run_batch(
        self,
        images: Sequence[BatchImage],
        language: str,
        dual_path: bool = False,
        observer: Observer = None,
    ) -> BatchSummary:
        ids = [img.image_id for img in images]
        if len(set(ids)) != len(ids):
            raise ValueError("image ids must be unique within a batch")

        mode = Mode.DUAL_PATH if dual_path and self.dual_path_available() else Mode.PRIMARY_ONLY
        if dual_path and mode is Mode.PRIMARY_ONLY:
            logger.info("Vision path unavailable (no API key), running OCR only")

        batch = _Batch(next(self._batch_ids), language, mode, as_channel(observer))
        self.current_batch_id = batch.batch_id
        started = time.perf_counter()
        logger.info("Batch %d started, %d image(s), language, %s, mode, %s",
                    batch.batch_id, len(images), language, mode.value)

        hits, misses = self._partition(batch, images)

        for image, entry in hits:
            batch.entries[image.image_id] = entry
            batch.emit(image.image_id, Phase.CACHE_HIT, entry.snapshot())
        if hits:
            logger.info("%d image(s) served from cache", len(hits))

        if misses:
            # the lease keeps the pool bound to this language until the batch settles
            await self.pool.acquire(
                language, lambda f, msg: batch.progress(_scale(_SETUP, f), msg)
            )
            try:
                await self._prepare(batch, misses)
                await self._drive(batch)
            finally:
                self.pool.release()

        entries = [batch.entries[i] for i in ids if i in batch.entries]
        summary = BatchSummary(
            batch_id=batch.batch_id,
            count=len(entries),
            total_characters=sum(len(e.text or "") for e in entries),
            cache_hits=len(hits),
            refined=sum(1 for e in entries if not e.from_cache and e.refine_status is RefineStatus.DONE),
            refine_failed=sum(1 for e in entries if not e.from_cache and e.refine_status is RefineStatus.FAILED),
            recognition_failures=sum(1 for e in entries if e.error),
            mode=mode,
            entries=[e.snapshot() for e in entries],
        )
        batch.progress(1.0, "Done")
        batch.emit(None, Phase.BATCH_DONE, summary)
        logger.info("Batch %d finished, %d image(s), %d characters, %.2fs",
                    batch.batch_id, summary.count, summary.total_characters, time.perf_counter() - started)
        return summary

    async def aclose(self) -> None:
        await self.pool.teardown()

    async def __aenter__(self) -> "DualPathOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # -----------------------------
    # Stage 1. Fingerprint and cache lookup
    # -----------------------------
    def _partition(self, batch: _Batch, images: Sequence[BatchImage]):
        hits: List[tuple] = []
        misses: List[tuple] = []
        for image in images:
            fp = fingerprint(image.data)
            cached = self.cache.get(fp, batch.language, batch.mode)
            if cached is not None:
                hits.append((image, ResultEntry.from_cache_entry(image.image_id, image.filename, cached)))
            else:
                misses.append((image, fp))
        return hits, misses

    async def _prepare(self, batch: _Batch, misses: List[tuple]) -> None:
        batch.progress(_PREPROCESS[0], "Preprocessing images...")
        loop = asyncio.get_running_loop()
        for image, fp in misses:
            scaled = await loop.run_in_executor(None, normalize, image.data, self.max_dimension)
            job = ImageJob(
                image_id=image.image_id,
                image=scaled,
                original=image.data,
                fingerprint=fp,
                language=batch.language,
                filename=image.filename,
            )
            batch.jobs[job.image_id] = job
            batch.emit(job.image_id, Phase.QUEUED, None)
        batch.progress(_PREPROCESS[1], f"{len(misses)} image(s) to recognize")

    # -----------------------------
    # Stage 2. Secondary fan-out, primary batch, owner loop
    # -----------------------------
    async def _drive(self, batch: _Batch) -> None:
        queue = batch.queue
        jobs = list(batch.jobs.values())

        # vision reads go out before the primary batch is awaited
        if batch.dual:
            for job in jobs:
                batch.secondary_tasks[job.image_id] = asyncio.create_task(
                    self._read_secondary(job), name=f"vision-{job.image_id}"
                )

        primary = asyncio.create_task(
            self.pool.recognize_batch(
                jobs,
                on_start=lambda image_id: queue.put_nowait(_Message("start", image_id)),
                on_complete=lambda image_id, item: queue.put_nowait(_Message("complete", image_id, item=item)),
                on_progress=lambda f, msg: queue.put_nowait(_Message("progress", fraction=f, text=msg)),
            ),
            name=f"primary-batch-{batch.batch_id}",
        )
        primary.add_done_callback(lambda _t: queue.put_nowait(_Message("primary_done")))

        pending = set(batch.jobs)
        primary_finished = False
        try:
            while pending or not primary_finished:
                msg = await queue.get()
                if msg.kind == "start":
                    batch.emit(msg.image_id, Phase.RECOGNIZING, None)
                elif msg.kind == "complete":
                    if self._on_recognized(batch, batch.jobs[msg.image_id], msg.item):
                        pending.discard(msg.image_id)
                elif msg.kind == "progress":
                    batch.progress(_scale(_RECOGNIZE, msg.fraction), msg.text)
                elif msg.kind == "refined":
                    self._on_refined(batch, batch.jobs[msg.image_id], msg.outcome, msg.secondary)
                    pending.discard(msg.image_id)
                elif msg.kind == "primary_done":
                    primary_finished = True
                    # re-raises a batch-level failure from the pool
                    primary.result()
        except BaseException:
            primary.cancel()
            for task in itertools.chain(batch.secondary_tasks.values(), batch.refine_tasks.values()):
                task.cancel()
            raise

    async def _read_secondary(self, job: ImageJob) -> SecondaryResult:
        try:
            text = await self.secondary.read(job.original, job.language)
        except Exception as e:
            logger.warning("Vision read failed for %s (%s): %s", job.image_id, job.filename, e)
            return SecondaryResult(error=f"{type(e).__name__}: {e}")
        return SecondaryResult(text=text or "")

    async def _refine(self, batch: _Batch, image_id: str, primary_text: str) -> None:
        secondary = await batch.secondary_tasks[image_id]
        try:
            outcome = await reconcile(primary_text, secondary, self.secondary, batch.language)
        except Exception as e:
            logger.exception("Refinement failed for %s", image_id)
            outcome = MergeOutcome(primary_text, None, RefineStatus.FAILED, reason=str(e))
        batch.queue.put_nowait(_Message("refined", image_id, outcome=outcome, secondary=secondary))

    # -----------------------------
    # Stage 3. Owner-side state changes
    # -----------------------------
    def _on_recognized(self, batch: _Batch, job: ImageJob, item: BatchItemResult) -> bool:
        """Create the provisional entry; returns True when it is already terminal."""
        status = RefineStatus.PENDING if batch.dual else RefineStatus.DISABLED
        entry = ResultEntry.from_recognition(job.image_id, job.filename, item, status)
        batch.entries[job.image_id] = entry

        phase = Phase.RECOGNIZED if item.result is not None else Phase.RECOGNITION_FAILED
        batch.emit(job.image_id, phase, entry.snapshot())

        if not batch.dual:
            self._write_through(batch, job, entry)
            return True

        batch.emit(job.image_id, Phase.REFINING, entry.snapshot())
        batch.refine_tasks[job.image_id] = asyncio.create_task(
            self._refine(batch, job.image_id, entry.primary_text), name=f"refine-{job.image_id}"
        )
        return False

    def _on_refined(self, batch: _Batch, job: ImageJob, outcome: MergeOutcome,
                    secondary: SecondaryResult) -> None:
        entry = batch.entries[job.image_id]
        entry.apply_merge(outcome, secondary.text)

        if outcome.status is RefineStatus.DONE:
            batch.emit(job.image_id, Phase.MERGED, entry.snapshot())
        else:
            logger.info("Keeping OCR text for %s: %s", job.image_id, outcome.reason)
            batch.emit(job.image_id, Phase.REFINE_FAILED, entry.snapshot())

        batch.refines_settled += 1
        total = len(batch.jobs)
        batch.progress(_scale(_REFINE, batch.refines_settled / total),
                       f"AI refinement {batch.refines_settled}/{total}")
        self._write_through(batch, job, entry)

    def _write_through(self, batch: _Batch, job: ImageJob, entry: ResultEntry) -> None:
        if entry.error and not entry.text:
            # nothing worth memoizing; let a later batch retry
            return
        key = self.cache.key(job.fingerprint, batch.language, batch.mode)
        if key in batch.written_keys:
            return
        self.cache.put(job.fingerprint, batch.language, batch.mode, entry.to_cache_entry())
        batch.written_keys.add(key)
