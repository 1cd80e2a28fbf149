"""
ORM model for generated credentials.

Contract:
    One credential per accreditation request, created on approval.  The
    generator owns ``status``/``retry_count``/``error_message`` and the
    artifact paths; the print aggregator owns ``print_batch_id``.

Invariants enforced:
    - UNIQUE ``request_id`` (1:1 with the request).
    - CHECK: a credential cannot be ``ready`` without ``image_path``.
    - ``print_batch_id`` is only ever written by the conditional stamp in
      ``PrintBatchService`` (``WHERE print_batch_id IS NULL``).
    - Snapshots are written by ``capture_snapshots`` only and describe the
      employee, event, zones and template as of the last (re)schedule.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from acredita_kernel.db.base import TrackedBase, UUIDString
from acredita_kernel.domain.lifecycle import CredentialStatus

if TYPE_CHECKING:
    from acredita_kernel.domain.values import CredentialDTO
    from acredita_kernel.models.accreditation import AccreditationRequest
    from acredita_kernel.models.print_batch import PrintBatch

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in CredentialStatus)


class Credential(TrackedBase):
    __tablename__ = "credentials"

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_credential_status"),
        CheckConstraint(
            "status <> 'ready' OR image_path IS NOT NULL",
            name="ck_credential_ready_has_image",
        ),
        Index("ix_credentials_status", "status"),
        Index("ix_credentials_print_batch", "print_batch_id"),
    )

    uuid: Mapped[UUID] = mapped_column(
        UUIDString(), default=uuid4, unique=True, nullable=False,
    )
    request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accreditation_requests.id", ondelete="CASCADE"),
        unique=True,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=CredentialStatus.PENDING.value, nullable=False,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    generated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    qr_code: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    image_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    pdf_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    print_batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("print_batches.id"), nullable=True,
    )
    printed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Clock time of the last generation attempt; drives failed-credential retention.
    last_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    revoked_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    employee_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    event_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    zones_snapshot: Mapped[list | None] = mapped_column(JSON, nullable=True)
    template_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    request: Mapped[Optional["AccreditationRequest"]] = relationship(
        "AccreditationRequest", back_populates="credential",
    )
    print_batch: Mapped[Optional["PrintBatch"]] = relationship("PrintBatch")

    @property
    def current_status(self) -> CredentialStatus:
        return CredentialStatus(self.status)

    @property
    def is_ready(self) -> bool:
        return self.status == CredentialStatus.READY.value

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dto(self) -> CredentialDTO:
        from acredita_kernel.domain.values import CredentialDTO

        return CredentialDTO(
            id=self.id,
            uuid=self.uuid,
            request_id=self.request_id,
            status=CredentialStatus(self.status),
            retry_count=self.retry_count,
            error_message=self.error_message,
            generated_at=self.generated_at,
            image_path=self.image_path,
            pdf_path=self.pdf_path,
            qr_code=self.qr_code,
            print_batch_id=self.print_batch_id,
            printed_at=self.printed_at,
            expires_at=self.expires_at,
            is_active=self.is_active,
            revoked_reason=self.revoked_reason,
        )
