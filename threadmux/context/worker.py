"""
Background compaction worker.

Moves compaction off the message path: callers submit a context id and
get back a future that resolves to the committed MemorySnapshot (or None
when nothing was compacted). Job state is kept per context for polling.

Design:
- asyncio.Queue feeds a small pool of long-running worker coroutines
- Submitting a context that already has a queued job returns that job's
  future instead of enqueueing a duplicate
- The trigger condition is re-evaluated when the job runs, so a job that
  became unnecessary while queued is a no-op
- Graceful shutdown drains the queue; a hard stop cancels pending futures
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from threadmux.telemetry import bind_context_id
from threadmux.types import Clock, MemorySnapshot, utc_now

if TYPE_CHECKING:
    from threadmux.context.compactor import ContextCompactor

log = structlog.get_logger(__name__)


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class CompactionJob:
    """One queued compaction request and its outcome."""

    context_id: str
    future: asyncio.Future[MemorySnapshot | None]
    submitted_at: datetime
    status: JobStatus = JobStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    snapshot_id: str | None = None
    error: str | None = None
    force: bool = False

    @property
    def done(self) -> bool:
        return self.status not in (JobStatus.PENDING, JobStatus.RUNNING)


@dataclass
class _Counters:
    completed: int = 0
    skipped: int = 0
    failed: int = 0


class CompactionWorker:
    """
    Asyncio background processor for context compaction.

    Example usage:
        worker = CompactionWorker(compactor)
        await worker.start()

        future = worker.submit(context_id)
        snapshot = await future            # or: await worker.wait_for(context_id)

        await worker.stop()
    """

    def __init__(
        self,
        compactor: ContextCompactor,
        *,
        max_workers: int = 1,
        clock: Clock = utc_now,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._compactor = compactor
        self._max_workers = max_workers
        self._clock = clock
        self._queue: asyncio.Queue[CompactionJob] = asyncio.Queue()
        self._jobs: dict[str, CompactionJob] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._shutdown_event = asyncio.Event()
        self._running = False
        self._counters = _Counters()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start worker coroutines."""
        if self._running:
            log.warning("compaction_worker.already_running")
            return

        self._running = True
        self._shutdown_event.clear()
        for i in range(self._max_workers):
            self._workers.append(asyncio.create_task(self._worker_loop(worker_id=i)))

        log.info("compaction_worker.started", worker_count=self._max_workers)

    async def stop(self, *, drain: bool = True) -> None:
        """
        Stop the worker pool.

        Args:
            drain: If True, finish every queued job first.
                   If False, cancel queued jobs and stop immediately.
        """
        if not self._running:
            return

        log.info("compaction_worker.stopping", drain=drain, queued=self._queue.qsize())
        if drain:
            await self._queue.join()

        self._running = False
        self._shutdown_event.set()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        for job in self._jobs.values():
            if not job.done:
                self._finish(job, JobStatus.CANCELLED)
                job.future.cancel()

        log.info(
            "compaction_worker.stopped",
            completed=self._counters.completed,
            skipped=self._counters.skipped,
            failed=self._counters.failed,
        )

    def submit(self, context_id: str, *, force: bool = False) -> asyncio.Future[MemorySnapshot | None]:
        """
        Queue a compaction for ``context_id``.

        Args:
            context_id: Context to compact
            force: Compact even if the utilization trigger is not reached

        Returns:
            Future resolving to the snapshot, or None when nothing was compacted
        """
        existing = self._jobs.get(context_id)
        if existing is not None and existing.status == JobStatus.PENDING:
            existing.force = existing.force or force
            return existing.future

        job = CompactionJob(
            context_id=context_id,
            future=asyncio.get_running_loop().create_future(),
            submitted_at=self._clock(),
            force=force,
        )
        self._jobs[context_id] = job
        self._queue.put_nowait(job)
        log.debug(
            "compaction_worker.submitted",
            context_id=context_id,
            force=force,
            queue_size=self._queue.qsize(),
        )
        return job.future

    async def wait_for(self, context_id: str, timeout: float | None = None) -> MemorySnapshot | None:
        """
        Wait for the latest job of ``context_id`` to finish.

        Returns None immediately when the context has never been submitted.

        Raises:
            TimeoutError: If the job is still running after ``timeout`` seconds
        """
        job = self._jobs.get(context_id)
        if job is None:
            return None
        return await asyncio.wait_for(asyncio.shield(job.future), timeout=timeout)

    def get_job(self, context_id: str) -> CompactionJob | None:
        """Latest job for a context, for polling. None if never submitted."""
        return self._jobs.get(context_id)

    def stats(self) -> dict[str, int]:
        return {
            "queued": self._queue.qsize(),
            "completed": self._counters.completed,
            "skipped": self._counters.skipped,
            "failed": self._counters.failed,
        }

    async def _worker_loop(self, worker_id: int) -> None:
        log.debug("compaction_worker.loop_started", worker_id=worker_id)

        while not self._shutdown_event.is_set():
            try:
                # Time out periodically to observe shutdown
                job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue

            try:
                await self._execute(job, worker_id=worker_id)
            finally:
                self._queue.task_done()

        log.debug("compaction_worker.loop_stopped", worker_id=worker_id)

    async def _execute(self, job: CompactionJob, *, worker_id: int) -> None:
        if job.done:
            return
        job.status = JobStatus.RUNNING
        job.started_at = self._clock()
        bind_context_id(job.context_id)

        try:
            if job.force:
                snapshot = await self._compactor.compact(job.context_id)
            else:
                snapshot = await self._compactor.maybe_compact(job.context_id)
        except Exception as exc:
            job.error = str(exc)
            self._finish(job, JobStatus.FAILED)
            self._counters.failed += 1
            log.error(
                "compaction_worker.job_failed",
                worker_id=worker_id,
                context_id=job.context_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            if not job.future.done():
                job.future.set_result(None)
            return

        if snapshot is None:
            self._finish(job, JobStatus.SKIPPED)
            self._counters.skipped += 1
        else:
            job.snapshot_id = snapshot.id
            self._finish(job, JobStatus.COMPLETED)
            self._counters.completed += 1
        if not job.future.done():
            job.future.set_result(snapshot)

    def _finish(self, job: CompactionJob, status: JobStatus) -> None:
        job.status = status
        job.completed_at = self._clock()
