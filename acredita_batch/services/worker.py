"""
JobWorker -- In-process polling worker for the ``queued_jobs`` table.

Contract:
    Claims due ``queued`` jobs, runs the registered ``JobHandler`` inside a
    SAVEPOINT, and records the outcome.  A handler exception rolls back only
    that job's work; the job is re-queued with a delay until
    ``max_attempts`` is reached, then marked ``failed``.

Architecture: acredita_batch/services.  Uses the JobRegistry for dispatch
    and a context factory (wired by the orchestrator) for session-bound
    kernel services.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Each job commits on its own; one failing job never undoes another.
    - Graceful shutdown: the stop signal is checked between jobs and the
      current job always completes.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from acredita_batch.domain.types import JobRunResult, JobStatus
from acredita_batch.models.job import QueuedJobModel
from acredita_batch.tasks.base import JobRegistry
from acredita_kernel.domain.clock import Clock, SystemClock
from acredita_kernel.exceptions import JobTypeNotRegisteredError
from acredita_kernel.logging_config import LogContext, get_logger

if TYPE_CHECKING:
    from acredita_batch.services.context import ServiceContext

logger = get_logger("batch.worker")

_ERROR_MAX = 1000


class JobWorker:
    """Polling worker for queued background jobs.

    Contract:
        - ``tick()`` processes up to ``jobs_per_tick`` due jobs.
        - ``start()`` / ``stop()`` for background thread operation.
        - ``run_until_idle()`` drains the queue (tests, ``--once``).

    Non-goals:
        - NOT a distributed queue (no leases beyond row locks).
        - Does NOT time out a running handler.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: JobRegistry,
        context_factory: Callable[[Session], ServiceContext],
        clock: Clock | None = None,
        tick_interval_seconds: float = 5,
        jobs_per_tick: int = 10,
        retry_delay_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._context_factory = context_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._jobs_per_tick = jobs_per_tick
        self._retry_delay = (
            retry_delay_seconds if retry_delay_seconds is not None else tick_interval_seconds
        )
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> JobRunResult:
        """Process one round of due jobs (public for testing and cron)."""
        processed = succeeded = failed = requeued = 0
        for _ in range(self._jobs_per_tick):
            if self._stop_event.is_set():
                break
            outcome = self._process_next()
            if outcome is None:
                break
            processed += 1
            if outcome == JobStatus.SUCCEEDED:
                succeeded += 1
            elif outcome == JobStatus.FAILED:
                failed += 1
            else:
                requeued += 1

        if processed:
            logger.info(
                "worker_tick_completed",
                extra={
                    "processed": processed,
                    "succeeded": succeeded,
                    "failed": failed,
                    "requeued": requeued,
                },
            )
        return JobRunResult(
            processed=processed, succeeded=succeeded, failed=failed, requeued=requeued,
        )

    def run_until_idle(self, max_ticks: int = 100) -> JobRunResult:
        """Tick until no due job is left.  Returns the summed counters."""
        total = JobRunResult()
        for _ in range(max_ticks):
            result = self.tick()
            total = JobRunResult(
                processed=total.processed + result.processed,
                succeeded=total.succeeded + result.succeeded,
                failed=total.failed + result.failed,
                requeued=total.requeued + result.requeued,
            )
            if result.processed == 0:
                break
        return total

    def start(self) -> None:
        """Start the worker in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="job-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info("worker_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current job to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("worker_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _process_next(self) -> JobStatus | None:
        session = self._session_factory()
        try:
            outcome = self._claim_and_run(session)
            session.commit()
            return outcome
        except Exception:
            session.rollback()
            logger.exception("worker_job_processing_failed")
            return None
        finally:
            session.close()

    def _claim_and_run(self, session: Session) -> JobStatus | None:
        now = self._clock.now()
        job = session.execute(
            select(QueuedJobModel)
            .where(
                QueuedJobModel.status == JobStatus.QUEUED.value,
                QueuedJobModel.available_at <= now,
            )
            .order_by(QueuedJobModel.available_at, QueuedJobModel.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        ).scalar_one_or_none()
        if job is None:
            return None

        job.status = JobStatus.RUNNING.value
        job.attempts += 1
        job.started_at = now
        session.flush()

        with LogContext.bind(job_id=str(job.id)):
            return self._run(session, job)

    def _run(self, session: Session, job: QueuedJobModel) -> JobStatus:
        start = time.monotonic()
        try:
            handler = self._registry.get(job.job_type)
        except KeyError:
            exc = JobTypeNotRegisteredError(job.job_type, self._registry.list_job_types())
            self._finish(job, JobStatus.FAILED, str(exc))
            logger.error(
                "job_type_not_registered",
                extra={"job_type": job.job_type},
            )
            return JobStatus.FAILED

        savepoint = session.begin_nested()
        try:
            result = handler.handle(dict(job.payload or {}), self._context_factory(session))
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            message = (str(exc) or type(exc).__name__)[:_ERROR_MAX]
            logger.exception(
                "job_failed",
                extra={
                    "job_type": job.job_type,
                    "attempts": job.attempts,
                    "max_attempts": job.max_attempts,
                },
            )
            if job.attempts < job.max_attempts:
                job.status = JobStatus.QUEUED.value
                job.error_message = message
                job.available_at = self._clock.now() + timedelta(
                    seconds=self._retry_delay * job.attempts,
                )
                session.flush()
                return JobStatus.QUEUED
            self._finish(job, JobStatus.FAILED, message)
            return JobStatus.FAILED

        self._finish(job, JobStatus.SUCCEEDED, None)
        logger.info(
            "job_succeeded",
            extra={
                "job_type": job.job_type,
                "duration_ms": int((time.monotonic() - start) * 1000),
                "result": result,
            },
        )
        return JobStatus.SUCCEEDED

    def _finish(self, job: QueuedJobModel, status: JobStatus, error: str | None) -> None:
        job.status = status.value
        job.completed_at = self._clock.now()
        job.error_message = error
