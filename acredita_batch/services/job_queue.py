"""
DatabaseJobQueue -- ``JobDispatcher`` backed by the ``queued_jobs`` table.

Contract:
    ``schedule()`` inserts a ``queued`` row in the caller's session.  The
    job becomes visible to workers only when the caller commits, so a job is
    never run for a request whose approval was rolled back.

Architecture: acredita_batch/services.  Implements the kernel's
    ``JobDispatcher`` protocol; the kernel never imports this module.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from acredita_batch.domain.types import JobStatus, QueuedJob
from acredita_batch.models.job import QueuedJobModel
from acredita_kernel.domain.clock import Clock, SystemClock
from acredita_kernel.logging_config import get_logger

logger = get_logger("batch.job_queue")


class DatabaseJobQueue:
    """Fire-and-forget dispatcher writing rows to ``queued_jobs``."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        max_attempts: int = 3,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    def schedule(self, job_type: str, payload: dict[str, Any]) -> None:
        now = self._clock.now()
        job = QueuedJobModel(
            job_type=job_type,
            payload=dict(payload),
            status=JobStatus.QUEUED.value,
            attempts=0,
            max_attempts=self._max_attempts,
            available_at=now,
            created_at=now,
        )
        self._session.add(job)
        self._session.flush()
        logger.info(
            "job_scheduled",
            extra={"job_id": str(job.id), "job_type": job_type},
        )

    def get(self, job_id: UUID) -> QueuedJob | None:
        model = self._session.get(QueuedJobModel, job_id)
        return model.to_dto() if model is not None else None

    def list_jobs(
        self,
        job_type: str | None = None,
        status: JobStatus | None = None,
    ) -> list[QueuedJob]:
        stmt = select(QueuedJobModel).order_by(
            QueuedJobModel.created_at, QueuedJobModel.id,
        )
        if job_type is not None:
            stmt = stmt.where(QueuedJobModel.job_type == job_type)
        if status is not None:
            stmt = stmt.where(QueuedJobModel.status == status.value)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]
