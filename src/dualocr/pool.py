# src/dualocr/pool.py
"""
Primary recognizer pool.

A fixed set of single-worker executors, each holding its own engine bound to
one language profile. Jobs are routed to whichever worker is idle, so batch
results complete in recognition-cost order rather than submission order.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import multiprocessing as mp
import os
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import DEFAULT_BACKEND
from .exceptions import EngineBusy, EngineInitError, EngineNotReady
from .models import BatchItemResult, ImageJob, RecognitionResult
from .ocr_worker import Backend, initialize_worker, recognize_image, worker_ready

logger = logging.getLogger("dualocr")

ProgressHook = Callable[[float, str], None]
StartHook = Callable[[str], None]
CompleteHook = Callable[[str, BatchItemResult], None]


def _noop(*args, **kwargs):
    pass


def is_multi_language(language: str) -> bool:
    return "+" in (language or "")


class PrimaryRecognizerPool:
    def __init__(
        self,
        backend: Backend = DEFAULT_BACKEND,
        backend_kwargs: Optional[Dict[str, Any]] = None,
        *,
        max_workers: int = 4,
        worker_mode: str = "process",
        log_queue: Any = None,
    ):
        if worker_mode not in ("process", "thread"):
            raise ValueError(f"worker_mode must be 'process' or 'thread', got {worker_mode!r}")
        self.backend = backend
        self.backend_kwargs = dict(backend_kwargs or {})
        self.max_workers = max(1, int(max_workers))
        self.worker_mode = worker_mode
        self.log_queue = log_queue

        self.language: Optional[str] = None
        self.is_ready = False
        self._workers: List[Executor] = []
        self._idle: Optional[asyncio.Queue] = None
        self._in_flight = 0
        self._leases = 0
        self._configure_lock = asyncio.Lock()

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    @property
    def busy(self) -> bool:
        return self._in_flight > 0 or self._leases > 0

    def planned_worker_count(self, language: str) -> int:
        # one worker for combined profiles to bound memory
        if is_multi_language(language):
            return 1
        return max(1, min(os.cpu_count() or 2, self.max_workers))

    def _make_executor(self, language: str, index: int) -> Executor:
        kwargs = dict(self.backend_kwargs)
        if "languages" not in kwargs and "lang" not in kwargs:
            kwargs["languages"] = language
        if self.worker_mode == "process":
            return ProcessPoolExecutor(
                max_workers=1,
                mp_context=mp.get_context("spawn"),
                initializer=initialize_worker,
                initargs=(self.log_queue, self.backend, kwargs),
            )
        # threads share the parent's logging setup
        return ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"dualocr-worker-{index}",
            initializer=initialize_worker,
            initargs=(None, self.backend, kwargs),
        )

    async def configure(self, language: str, on_progress: Optional[ProgressHook] = None) -> None:
        """(Re)allocate the worker pool for ``language``; a no-op when already bound to it."""
        async with self._configure_lock:
            await self._configure(language, on_progress)

    async def acquire(self, language: str, on_progress: Optional[ProgressHook] = None) -> None:
        """
        Configure for ``language`` and hold the binding until release().

        While any lease is held, configuring a different language raises
        EngineBusy, even when no job has reached a worker yet.
        """
        async with self._configure_lock:
            await self._configure(language, on_progress)
            self._leases += 1

    def release(self) -> None:
        if self._leases > 0:
            self._leases -= 1

    async def _configure(self, language: str, on_progress: Optional[ProgressHook]) -> None:
        on_progress = on_progress or _noop
        if self.is_ready and self.language == language:
            return
        if self.busy:
            raise EngineBusy(
                f"Cannot switch recognizer from {self.language!r} to {language!r} "
                f"with {self._leases} batch(es) and {self._in_flight} job(s) in flight"
            )

        await self.teardown()

        count = self.planned_worker_count(language)
        logger.info("Configuring recognizer pool, language, %s, workers, %d, mode, %s",
                    language, count, self.worker_mode)
        on_progress(0.0, "Initializing engine...")

        loop = asyncio.get_running_loop()
        workers: List[Executor] = []
        try:
            for i in range(count):
                on_progress((i + 1) / (count + 1), f"Loading language model ({i + 1}/{count})...")
                executor = self._make_executor(language, i)
                workers.append(executor)
                await loop.run_in_executor(executor, worker_ready)
        except Exception as e:
            for executor in workers:
                executor.shutdown(wait=False, cancel_futures=True)
            raise EngineInitError(f"Failed to start recognizer workers for {language!r}: {e}") from e

        idle: asyncio.Queue = asyncio.Queue()
        for executor in workers:
            idle.put_nowait(executor)

        self._workers = workers
        self._idle = idle
        self.language = language
        self.is_ready = True
        on_progress(1.0, "Engine ready")

    async def _run_job(self, image: bytes, on_acquire: Callable[[], None] = _noop) -> RecognitionResult:
        idle = self._idle
        if not self.is_ready or idle is None:
            raise EngineNotReady("Recognizer pool is not configured; call configure() first")

        self._in_flight += 1
        try:
            worker = await idle.get()
            try:
                on_acquire()
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(worker, recognize_image, image)
            finally:
                idle.put_nowait(worker)
        finally:
            self._in_flight -= 1

    async def recognize(self, image: bytes) -> RecognitionResult:
        """Recognize a single encoded image on the next idle worker."""
        return await self._run_job(image)

    async def recognize_batch(
        self,
        jobs: Sequence[ImageJob],
        on_start: Optional[StartHook] = None,
        on_complete: Optional[CompleteHook] = None,
        on_progress: Optional[ProgressHook] = None,
    ) -> Dict[str, BatchItemResult]:
        """
        Submit all jobs at once and collect results keyed by image id.

        Results are inserted in completion order. A failing job is recorded
        with an empty transcript and an error description; it never aborts
        the batch. on_complete receives the BatchItemResult, whose ``result``
        is None for a failed job.
        """
        if not self.is_ready:
            raise EngineNotReady("Recognizer pool is not configured; call configure() first")
        mismatched = sorted({job.language for job in jobs if job.language != self.language})
        if mismatched:
            raise EngineBusy(f"Recognizer pool is bound to {self.language!r}, jobs ask for {mismatched}")

        on_start = on_start or _noop
        on_complete = on_complete or _noop
        on_progress = on_progress or _noop

        total = len(jobs)
        results: Dict[str, BatchItemResult] = {}
        if not total:
            return results

        completed = 0
        on_progress(0.0, f"Processing {total} image(s)...")

        async def run_one(job: ImageJob) -> None:
            nonlocal completed
            try:
                res = await self._run_job(job.image, functools.partial(on_start, job.image_id))
                item = BatchItemResult(image_id=job.image_id, result=res)
            except Exception as e:
                logger.warning("Recognition failed for %s (%s): %s", job.image_id, job.filename, e)
                item = BatchItemResult(image_id=job.image_id, result=None, error=f"{type(e).__name__}: {e}")

            results[job.image_id] = item
            completed += 1
            on_complete(job.image_id, item)
            on_progress(completed / total, f"Image {completed}/{total} done")
            logger.progress(
                "recognize progress",
                extra={"phase": "recognize", "current": completed, "total": total, "image_id": job.image_id},
            )

        await asyncio.gather(*(run_one(job) for job in jobs))
        return results

    async def teardown(self) -> None:
        """Release all workers. Safe to call repeatedly or before configure()."""
        workers, self._workers = self._workers, []
        self._idle = None
        self.is_ready = False
        self.language = None
        if not workers:
            return
        loop = asyncio.get_running_loop()
        for executor in workers:
            await loop.run_in_executor(None, functools.partial(executor.shutdown, wait=True, cancel_futures=True))
        logger.info("Recognizer pool has been shut down.")

    async def __aenter__(self) -> "PrimaryRecognizerPool":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.teardown()
