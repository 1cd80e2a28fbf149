"""
Value objects for the accreditation kernel (``acredita_kernel.domain.values``).

Frozen dataclasses passed between services, selectors, jobs and the CLI.
ZERO I/O.  Collections are tuples so instances stay hashable and immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from acredita_kernel.domain.lifecycle import (
    CredentialStatus,
    PrintBatchStatus,
    RequestStatus,
    RequestTimeline,
    TransitionRecord,
)


class ProviderType(str, Enum):
    """Internal providers skip the external review queue on submit."""

    INTERNAL = "internal"
    EXTERNAL = "external"


# =========================================================================
# Request creation
# =========================================================================


@dataclass(frozen=True)
class DraftRequestBuilder:
    """Serializable, step-by-step description of a request to create.

    Callers (forms, imports, the CLI) accumulate choices here and hand the
    finished builder to ``RequestWorkflowService.create_request``.  It holds
    no session or process state and round-trips through ``to_dict``.
    """

    employee_id: UUID | None = None
    event_id: UUID | None = None
    zone_ids: tuple[UUID, ...] = ()
    comments: str | None = None

    def for_employee(self, employee_id: UUID) -> DraftRequestBuilder:
        return replace(self, employee_id=employee_id)

    def for_event(self, event_id: UUID) -> DraftRequestBuilder:
        # Zones belong to an event; changing the event drops the selection.
        if event_id != self.event_id:
            return replace(self, event_id=event_id, zone_ids=())
        return self

    def with_zones(self, *zone_ids: UUID) -> DraftRequestBuilder:
        unique = tuple(dict.fromkeys(zone_ids))
        return replace(self, zone_ids=unique)

    def with_comments(self, comments: str | None) -> DraftRequestBuilder:
        return replace(self, comments=comments)

    def missing_fields(self) -> tuple[str, ...]:
        missing = []
        if self.employee_id is None:
            missing.append("employee_id")
        if self.event_id is None:
            missing.append("event_id")
        return tuple(missing)

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id) if self.employee_id else None,
            "event_id": str(self.event_id) if self.event_id else None,
            "zone_ids": [str(z) for z in self.zone_ids],
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DraftRequestBuilder:
        employee_id = data.get("employee_id")
        event_id = data.get("event_id")
        return cls(
            employee_id=UUID(employee_id) if employee_id else None,
            event_id=UUID(event_id) if event_id else None,
            zone_ids=tuple(UUID(z) for z in data.get("zone_ids") or ()),
            comments=data.get("comments"),
        )


# =========================================================================
# Entity DTOs
# =========================================================================


@dataclass(frozen=True)
class AccreditationRequestDTO:
    """Immutable snapshot of an accreditation request."""

    id: UUID
    uuid: UUID
    employee_id: UUID
    event_id: UUID
    status: RequestStatus
    zone_ids: tuple[UUID, ...]
    comments: str | None
    review_comments: str | None
    created_by: UUID
    created_at: datetime | None
    timeline: RequestTimeline
    transitions: tuple[TransitionRecord, ...] = ()
    credential_id: UUID | None = None


@dataclass(frozen=True)
class CredentialDTO:
    """Immutable snapshot of a credential."""

    id: UUID
    uuid: UUID
    request_id: UUID | None
    status: CredentialStatus
    retry_count: int
    error_message: str | None
    generated_at: datetime | None
    image_path: str | None
    pdf_path: str | None
    qr_code: str | None
    print_batch_id: UUID | None
    printed_at: datetime | None
    expires_at: datetime | None
    is_active: bool
    revoked_reason: str | None

    @property
    def is_ready(self) -> bool:
        return self.status == CredentialStatus.READY


@dataclass(frozen=True)
class PrintBatchDTO:
    """Immutable snapshot of a print batch."""

    id: UUID
    uuid: UUID
    status: PrintBatchStatus
    filters: PrintFilters
    credential_ids: tuple[UUID, ...]
    file_path: str | None
    generated_by: UUID
    created_at: datetime | None
    total_credentials: int
    processed_credentials: int
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None
    retry_count: int = 0

    @property
    def progress_percentage(self) -> float:
        if self.total_credentials == 0:
            return 0.0
        return round(self.processed_credentials / self.total_credentials * 100, 2)


# =========================================================================
# Print selection
# =========================================================================


@dataclass(frozen=True)
class PrintFilters:
    """Normalized print-batch filters; stored verbatim as the batch snapshot."""

    event_id: UUID
    area_ids: tuple[UUID, ...] = ()
    provider_ids: tuple[UUID, ...] = ()
    only_unprinted: bool = True

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "area_ids": [str(a) for a in self.area_ids],
            "provider_ids": [str(p) for p in self.provider_ids],
            "only_unprinted": self.only_unprinted,
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> PrintFilters:
        return cls(
            event_id=UUID(data["event_id"]),
            area_ids=tuple(UUID(a) for a in data.get("area_ids") or ()),
            provider_ids=tuple(UUID(p) for p in data.get("provider_ids") or ()),
            only_unprinted=bool(data.get("only_unprinted", True)),
        )


@dataclass(frozen=True)
class PrintCandidate:
    """One credential selected for printing, with its sort keys."""

    credential_id: UUID
    request_id: UUID
    print_batch_id: UUID | None
    area_name: str | None
    provider_name: str
    employee_last_name: str
    employee_first_name: str


@dataclass(frozen=True)
class BatchEntry:
    """One slot of a batch snapshot; ``missing`` when the credential is gone."""

    position: int
    credential_id: UUID
    missing: bool = False
    employee_name: str | None = None
    provider_name: str | None = None
    image_path: str | None = None


@dataclass(frozen=True)
class BatchCleanupResult:
    cleaned_files: int = 0
    archived_batches: int = 0
    total_processed: int = 0


@dataclass(frozen=True)
class BatchProgress:
    """Polling view of a queued or processing batch."""

    batch_id: UUID
    uuid: UUID
    status: PrintBatchStatus
    total_credentials: int
    processed_credentials: int
    progress_percentage: float
    created_at: datetime | None
    started_at: datetime | None


# =========================================================================
# Credentials: verification and operator reports
# =========================================================================


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a QR lookup.  ``reason`` is set whenever ``valid`` is False."""

    valid: bool
    reason: str | None = None
    message: str | None = None
    credential_id: UUID | None = None
    credential_status: CredentialStatus | None = None
    request_status: RequestStatus | None = None
    employee: dict[str, Any] | None = None
    event: dict[str, Any] | None = None
    zones: tuple[dict[str, Any], ...] = ()
    issued_at: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def not_found(cls) -> VerificationResult:
        return cls(valid=False, reason="not_found", message="Credential not found")


@dataclass(frozen=True)
class FailedCredentialSummary:
    credential_id: UUID
    request_uuid: UUID
    retry_count: int
    error_message: str | None


@dataclass(frozen=True)
class CredentialStatusReport:
    """Aggregated counts by status for the operator status view."""

    counts: dict[CredentialStatus, int] = field(default_factory=dict)
    repeatedly_failed: tuple[FailedCredentialSummary, ...] = ()

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count(self, status: CredentialStatus) -> int:
        return self.counts.get(status, 0)


@dataclass(frozen=True)
class CredentialCleanupResult:
    orphaned_deleted: int = 0
    failed_deleted: int = 0

    @property
    def total(self) -> int:
        return self.orphaned_deleted + self.failed_deleted
