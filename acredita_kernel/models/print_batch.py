"""
ORM model for print batches.

Contract:
    A print batch is a frozen snapshot: ``filters_snapshot`` and the ordered
    ``credential_ids`` are written once at queue time and never rewritten,
    including on retry.  Rendering progress and the artifact path are the
    only mutable parts.

Invariants enforced:
    - CHECK on ``status`` values.
    - ``file_path`` is set only while the batch is ``ready`` and cleared on
      archive.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from acredita_kernel.db.base import TrackedBase, UUIDString
from acredita_kernel.domain.lifecycle import PrintBatchStatus

if TYPE_CHECKING:
    from acredita_kernel.domain.values import PrintBatchDTO

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in PrintBatchStatus)


class PrintBatch(TrackedBase):
    __tablename__ = "print_batches"

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_print_batch_status"),
        Index("ix_print_batches_status_created", "status", "created_at"),
    )

    uuid: Mapped[UUID] = mapped_column(
        UUIDString(), default=uuid4, unique=True, nullable=False,
    )
    event_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("events.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=PrintBatchStatus.QUEUED.value, nullable=False,
    )
    filters_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    credential_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    total_credentials: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_credentials: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def generated_by(self) -> UUID:
        return self.created_by_id

    @property
    def current_status(self) -> PrintBatchStatus:
        return PrintBatchStatus(self.status)

    def snapshot_ids(self) -> tuple[UUID, ...]:
        return tuple(UUID(c) for c in self.credential_ids or ())

    @property
    def progress_percentage(self) -> float:
        if not self.total_credentials:
            return 0.0
        return round(self.processed_credentials / self.total_credentials * 100, 2)

    def to_dto(self) -> PrintBatchDTO:
        from acredita_kernel.domain.values import PrintBatchDTO, PrintFilters

        return PrintBatchDTO(
            id=self.id,
            uuid=self.uuid,
            status=PrintBatchStatus(self.status),
            filters=PrintFilters.from_snapshot(self.filters_snapshot),
            credential_ids=self.snapshot_ids(),
            file_path=self.file_path,
            generated_by=self.created_by_id,
            created_at=self.created_at,
            total_credentials=self.total_credentials,
            processed_credentials=self.processed_credentials,
            started_at=self.started_at,
            finished_at=self.finished_at,
            error_message=self.error_message,
            retry_count=self.retry_count,
        )
