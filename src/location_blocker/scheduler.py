# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""LookupScheduler — FIFO queue with a global concurrency cap and per-job timeout.

``submit`` never rejects: the queue is unbounded because requests arrive at
human scroll pace. An admission step runs after every enqueue and every
completion and starts queued jobs, in arrival order, while fewer than
``max_concurrent`` are active.

Each admitted job runs in its own task that races the worker against
``asyncio.timeout`` started at admission. Whatever finishes first completes
the job; the caller's future is resolved exactly once, the slot is released
and admission runs again. Failures are delivered as absent results::

    scheduler = LookupScheduler(worker, max_concurrent=2, timeout=15.0)
    result = await scheduler.resolve("alice")   # LookupResult(country="Germany")

All state is owned by this object and mutated only on the event loop thread.
Identical subjects are not coalesced: each submission is its own job.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field

from . import FailureKind, LookupResult
from .errors import LookupUnavailableError
from .logging_config import bind_lookup
from .worker import LookupWorker

logger = logging.getLogger(__name__)

# Defaults
DEFAULT_MAX_CONCURRENT = 2
DEFAULT_LOOKUP_TIMEOUT = 15.0


# ---------------------------------------------------------------------------
# Stats snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SchedulerStats:
    """Immutable snapshot of scheduler state for monitoring."""

    active: int
    queued: int
    max_concurrent: int
    submitted: int
    completed: int
    timeouts: int
    failures: int
    peak_active: int


# ---------------------------------------------------------------------------
# Internal: lookup job
# ---------------------------------------------------------------------------


@dataclass(slots=True, eq=False)
class LookupJob:
    """One submission. Queued until admitted, then owns a concurrency slot."""

    job_id: int
    subject_id: str
    future: asyncio.Future[LookupResult]
    created_at: float = field(default_factory=time.monotonic)
    admitted_at: float | None = None
    task: asyncio.Task | None = None
    completed: bool = False


# ---------------------------------------------------------------------------
# LookupScheduler
# ---------------------------------------------------------------------------


class LookupScheduler:
    """Bounded FIFO scheduler for subject lookups."""

    def __init__(
        self,
        worker: LookupWorker,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout: float = DEFAULT_LOOKUP_TIMEOUT,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._worker = worker
        self._max_concurrent = max_concurrent
        self._timeout = timeout

        self._queue: deque[LookupJob] = deque()
        self._active: dict[int, LookupJob] = {}
        self._job_ids = itertools.count(1)
        self._closed = False

        self._submitted = 0
        self._completed = 0
        self._timeouts = 0
        self._failures = 0
        self._peak_active = 0

    # ── Public API ───────────────────────────────────────────────────

    def submit(self, subject_id: str) -> asyncio.Future[LookupResult]:
        """Enqueue a lookup. The returned future always resolves to a LookupResult."""
        loop = asyncio.get_running_loop()
        job = LookupJob(job_id=next(self._job_ids), subject_id=subject_id, future=loop.create_future())
        self._submitted += 1
        if self._closed:
            self._resolve(job, LookupResult(error=FailureKind.LOOKUP_UNAVAILABLE))
            return job.future

        self._queue.append(job)
        logger.info(
            "Lookup requested for @%s (queued: %d, active: %d)",
            subject_id,
            len(self._queue),
            len(self._active),
        )
        self._admit()
        return job.future

    async def resolve(self, subject_id: str) -> LookupResult:
        """Submit and wait for the result."""
        return await self.submit(subject_id)

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def queued_subjects(self) -> list[str]:
        return [job.subject_id for job in self._queue]

    @property
    def active_subjects(self) -> list[str]:
        return [job.subject_id for job in self._active.values()]

    def stats(self) -> SchedulerStats:
        return SchedulerStats(
            active=len(self._active),
            queued=len(self._queue),
            max_concurrent=self._max_concurrent,
            submitted=self._submitted,
            completed=self._completed,
            timeouts=self._timeouts,
            failures=self._failures,
            peak_active=self._peak_active,
        )

    # ── Admission ────────────────────────────────────────────────────

    def _admit(self) -> None:
        """Start queued jobs in arrival order while capacity remains."""
        while self._queue and len(self._active) < self._max_concurrent:
            job = self._queue.popleft()
            if job.future.done():
                # Caller gave up while queued; no slot needed.
                logger.debug("Skipping abandoned lookup for @%s", job.subject_id)
                continue
            job.admitted_at = time.monotonic()
            self._active[job.job_id] = job
            self._peak_active = max(self._peak_active, len(self._active))
            logger.info(
                "Processing queue: @%s (active: %d, queued: %d)",
                job.subject_id,
                len(self._active),
                len(self._queue),
            )
            job.task = asyncio.get_running_loop().create_task(
                self._run(job), name=f"location-blocker-lookup-{job.job_id}"
            )
            job.task.add_done_callback(self._handle_job_crash)

    async def _run(self, job: LookupJob) -> None:
        """Race the worker against the admission-time timeout, then complete."""
        bind_lookup(job.subject_id, job.job_id)
        try:
            async with asyncio.timeout(self._timeout):
                country = await self._worker.execute(job.subject_id)
            result = LookupResult(country=(country or "").strip() or None)
        except TimeoutError:
            self._timeouts += 1
            logger.warning("Timeout waiting for location of @%s after %.1fs", job.subject_id, self._timeout)
            result = LookupResult(error=FailureKind.TIMEOUT)
        except LookupUnavailableError as exc:
            self._failures += 1
            logger.warning("Inspection page unavailable for @%s: %s", job.subject_id, exc)
            result = LookupResult(error=FailureKind.LOOKUP_UNAVAILABLE)
        except asyncio.CancelledError:
            # Shutdown: the caller still gets exactly one (absent) result.
            self._complete(job, LookupResult(error=FailureKind.LOOKUP_UNAVAILABLE))
            raise
        except Exception:
            self._failures += 1
            logger.exception("Lookup for @%s failed unexpectedly", job.subject_id)
            result = LookupResult(error=FailureKind.LOOKUP_UNAVAILABLE)
        self._complete(job, result)

    def _complete(self, job: LookupJob, result: LookupResult) -> None:
        """Release the slot, resolve the caller, advance the queue. Idempotent."""
        if job.completed:
            return
        job.completed = True
        self._active.pop(job.job_id, None)
        self._completed += 1
        elapsed = time.monotonic() - (job.admitted_at or job.created_at)
        logger.info(
            "Lookup done for @%s: country=%r error=%s (%.2fs, active: %d, queued: %d)",
            job.subject_id,
            result.country,
            result.error.value if result.error else None,
            elapsed,
            len(self._active),
            len(self._queue),
        )
        self._resolve(job, result)
        if not self._closed:
            self._admit()

    @staticmethod
    def _resolve(job: LookupJob, result: LookupResult) -> None:
        if not job.future.done():
            job.future.set_result(result)

    def _handle_job_crash(self, task: asyncio.Task) -> None:
        """Last-resort guard: a job task must never leave its slot occupied."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        for job in list(self._active.values()):
            if job.task is task:
                logger.error("Lookup task crashed for @%s: %s", job.subject_id, exc, exc_info=exc)
                self._complete(job, LookupResult(error=FailureKind.LOOKUP_UNAVAILABLE))

    # ── Shutdown ─────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Stop admitting, cancel in-flight lookups and resolve every caller."""
        self._closed = True
        while self._queue:
            job = self._queue.popleft()
            job.completed = True
            self._resolve(job, LookupResult(error=FailureKind.LOOKUP_UNAVAILABLE))

        tasks = [job.task for job in self._active.values() if job.task is not None and not job.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Lookup scheduler shut down (completed=%d, timeouts=%d)", self._completed, self._timeouts)
