"""
ORM models for accreditation requests and their transition records.

Contract:
    ``AccreditationRequest`` holds the current status and zone selection;
    ``RequestTransition`` rows are the append-only transition list.  The
    per-transition actor/timestamp pairs are never stored as columns; they
    are derived by ``timeline`` (a fold over the records).

Invariants enforced:
    - ``status`` is constrained to the ``RequestStatus`` values.
    - ``uuid`` is the external identifier and is UNIQUE.
    - At most one credential per request (UNIQUE ``credentials.request_id``).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from acredita_kernel.db.base import Base, TrackedBase, UUIDString
from acredita_kernel.domain.lifecycle import (
    RequestStatus,
    RequestTimeline,
    TransitionKind,
    TransitionRecord,
    fold_timeline,
)

if TYPE_CHECKING:
    from acredita_kernel.domain.values import AccreditationRequestDTO
    from acredita_kernel.models.credential import Credential
    from acredita_kernel.models.reference import Employee, Event, Zone

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RequestStatus)

request_zones = Table(
    "request_zones",
    Base.metadata,
    Column(
        "request_id",
        UUIDString(),
        ForeignKey("accreditation_requests.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("zone_id", UUIDString(), ForeignKey("zones.id"), primary_key=True),
)


class AccreditationRequest(TrackedBase):
    """One employee's request for access to an event's zones."""

    __tablename__ = "accreditation_requests"

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_request_status"),
        Index("ix_requests_event_status", "event_id", "status"),
        Index("ix_requests_employee_event", "employee_id", "event_id"),
    )

    uuid: Mapped[UUID] = mapped_column(
        UUIDString(), default=uuid4, unique=True, nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("employees.id"), nullable=False,
    )
    event_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("events.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(30), default=RequestStatus.DRAFT.value, nullable=False,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    employee: Mapped["Employee"] = relationship("Employee")
    event: Mapped["Event"] = relationship("Event")
    zones: Mapped[list["Zone"]] = relationship(
        "Zone", secondary=request_zones, order_by="Zone.code",
    )
    transitions: Mapped[list["RequestTransition"]] = relationship(
        "RequestTransition",
        back_populates="request",
        order_by="RequestTransition.sequence",
        cascade="all, delete-orphan",
    )
    credential: Mapped[Optional["Credential"]] = relationship(
        "Credential",
        back_populates="request",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def current_status(self) -> RequestStatus:
        return RequestStatus(self.status)

    def transition_records(self) -> tuple[TransitionRecord, ...]:
        return tuple(t.to_record() for t in self.transitions)

    @property
    def timeline(self) -> RequestTimeline:
        return fold_timeline(self.transition_records())

    def to_dto(self) -> AccreditationRequestDTO:
        from acredita_kernel.domain.values import AccreditationRequestDTO

        records = self.transition_records()
        return AccreditationRequestDTO(
            id=self.id,
            uuid=self.uuid,
            employee_id=self.employee_id,
            event_id=self.event_id,
            status=RequestStatus(self.status),
            zone_ids=tuple(z.id for z in self.zones),
            comments=self.comments,
            review_comments=self.review_comments,
            created_by=self.created_by_id,
            created_at=self.created_at,
            timeline=fold_timeline(records),
            transitions=records,
            credential_id=self.credential.id if self.credential is not None else None,
        )


class RequestTransition(Base):
    """Append-only record of one applied transition."""

    __tablename__ = "request_transitions"

    __table_args__ = (
        Index("ix_request_transitions_request_seq", "request_id", "sequence", unique=True),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accreditation_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped["AccreditationRequest"] = relationship(
        "AccreditationRequest", back_populates="transitions",
    )

    def to_record(self) -> TransitionRecord:
        return TransitionRecord(
            kind=TransitionKind(self.kind),
            from_status=RequestStatus(self.from_status) if self.from_status else None,
            to_status=RequestStatus(self.to_status),
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            reason=self.reason,
        )
