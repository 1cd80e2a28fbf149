"""
ORM model for the database-backed job queue.

Contract:
    One row per scheduled job.  ``DatabaseJobQueue`` inserts rows;
    ``JobWorker`` claims them (``FOR UPDATE`` on PostgreSQL), runs the
    registered handler and records the outcome.  ``to_dto()`` returns the
    frozen ``QueuedJob``.

Architecture: acredita_batch/models.  Imports from acredita_kernel.db.base only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from acredita_batch.domain.types import JobStatus
from acredita_kernel.db.base import Base

if TYPE_CHECKING:
    from acredita_batch.domain.types import QueuedJob

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in JobStatus)


class QueuedJobModel(Base):
    """Persistent job queue row."""

    __tablename__ = "queued_jobs"

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_queued_job_status"),
        Index("ix_queued_jobs_status_available", "status", "available_at"),
        Index("ix_queued_jobs_job_type", "job_type"),
    )

    job_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.QUEUED.value, nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    available_at: Mapped[datetime] = mapped_column(nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False,
    )

    def to_dto(self) -> QueuedJob:
        from acredita_batch.domain.types import QueuedJob

        return QueuedJob(
            job_id=self.id,
            job_type=self.job_type,
            status=JobStatus(self.status),
            payload=dict(self.payload or {}),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            available_at=self.available_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error_message=self.error_message,
            created_at=self.created_at,
        )
