"""
Lifecycle domain types (``acredita_kernel.domain.lifecycle``).

Responsibility
--------------
Closed status enums and transition tables for the three stateful entities:
accreditation requests, credentials and print batches.  Also defines the
``TransitionRecord`` audit list of a request and the fold that derives the
per-transition actor/timestamp view from it.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``REQUEST_TRANSITIONS`` is the only source of legal request edges; a
  transition kind not listed for the current status is illegal.
* ``returned_to_draft`` is a transition kind, not a status: it re-enters
  ``draft`` and the fold clears submission and review metadata.
* Credential and print-batch edges are closed the same way
  (``CREDENTIAL_TRANSITIONS``, ``PRINT_BATCH_TRANSITIONS``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable
from uuid import UUID


# =========================================================================
# Accreditation request
# =========================================================================


class RequestStatus(str, Enum):
    """Accreditation request lifecycle states."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class TransitionKind(str, Enum):
    """Kinds of recorded request transitions."""

    CREATED = "created"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED_TO_DRAFT = "returned_to_draft"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TransitionRule:
    """Legal source states and the resulting state of one transition kind."""

    sources: frozenset[RequestStatus]
    target: RequestStatus
    requires_reason: bool = False


REQUEST_TRANSITIONS: dict[TransitionKind, TransitionRule] = {
    TransitionKind.SUBMITTED: TransitionRule(
        sources=frozenset({RequestStatus.DRAFT}),
        target=RequestStatus.SUBMITTED,
    ),
    TransitionKind.REVIEWED: TransitionRule(
        sources=frozenset({RequestStatus.SUBMITTED}),
        target=RequestStatus.UNDER_REVIEW,
    ),
    TransitionKind.APPROVED: TransitionRule(
        sources=frozenset({RequestStatus.SUBMITTED, RequestStatus.UNDER_REVIEW}),
        target=RequestStatus.APPROVED,
    ),
    TransitionKind.REJECTED: TransitionRule(
        sources=frozenset({RequestStatus.SUBMITTED, RequestStatus.UNDER_REVIEW}),
        target=RequestStatus.REJECTED,
        requires_reason=True,
    ),
    TransitionKind.RETURNED_TO_DRAFT: TransitionRule(
        sources=frozenset({RequestStatus.SUBMITTED, RequestStatus.UNDER_REVIEW}),
        target=RequestStatus.DRAFT,
        requires_reason=True,
    ),
    TransitionKind.SUSPENDED: TransitionRule(
        sources=frozenset({RequestStatus.APPROVED}),
        target=RequestStatus.SUSPENDED,
        requires_reason=True,
    ),
    TransitionKind.CANCELLED: TransitionRule(
        sources=frozenset({
            RequestStatus.DRAFT,
            RequestStatus.SUBMITTED,
            RequestStatus.UNDER_REVIEW,
        }),
        target=RequestStatus.CANCELLED,
    ),
}

# Statuses that block a second request for the same employee and event.
ACTIVE_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.DRAFT,
    RequestStatus.SUBMITTED,
    RequestStatus.UNDER_REVIEW,
    RequestStatus.APPROVED,
    RequestStatus.SUSPENDED,
})

# Statuses the bulk orchestrator still has work to do on.
ELIGIBLE_FOR_BULK_APPROVAL: frozenset[RequestStatus] = frozenset({
    RequestStatus.DRAFT,
    RequestStatus.SUBMITTED,
    RequestStatus.UNDER_REVIEW,
})

APPROVABLE_STATUSES: frozenset[RequestStatus] = (
    REQUEST_TRANSITIONS[TransitionKind.APPROVED].sources
)


def allowed_transitions(status: RequestStatus) -> frozenset[TransitionKind]:
    """Transition kinds that may be applied from ``status``."""
    return frozenset(
        kind for kind, rule in REQUEST_TRANSITIONS.items() if status in rule.sources
    )


def can_transition(kind: TransitionKind, status: RequestStatus) -> bool:
    rule = REQUEST_TRANSITIONS.get(kind)
    return rule is not None and status in rule.sources


# =========================================================================
# Transition records and timeline fold
# =========================================================================


@dataclass(frozen=True)
class TransitionRecord:
    """One entry in a request's transition list."""

    kind: TransitionKind
    from_status: RequestStatus | None
    to_status: RequestStatus
    actor_id: UUID
    occurred_at: datetime
    reason: str | None = None


@dataclass(frozen=True)
class RequestTimeline:
    """Per-transition actor/timestamp view derived from the record list."""

    created_by: UUID | None = None
    created_at: datetime | None = None
    submitted_by: UUID | None = None
    submitted_at: datetime | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    review_comment: str | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    returned_by: UUID | None = None
    returned_at: datetime | None = None
    return_reason: str | None = None
    suspended_by: UUID | None = None
    suspended_at: datetime | None = None
    suspension_reason: str | None = None
    cancelled_by: UUID | None = None
    cancelled_at: datetime | None = None


def fold_timeline(records: Iterable[TransitionRecord]) -> RequestTimeline:
    """Fold an ordered transition list into a ``RequestTimeline``.

    A return to draft wipes the submission and review metadata collected so
    far; the request starts its review cycle over.
    """
    state: dict[str, object] = {}
    for record in records:
        who, when = record.actor_id, record.occurred_at
        kind = record.kind
        if kind == TransitionKind.CREATED:
            state.update(created_by=who, created_at=when)
        elif kind == TransitionKind.SUBMITTED:
            state.update(submitted_by=who, submitted_at=when)
        elif kind == TransitionKind.REVIEWED:
            state.update(reviewed_by=who, reviewed_at=when, review_comment=record.reason)
        elif kind == TransitionKind.APPROVED:
            state.update(approved_by=who, approved_at=when)
        elif kind == TransitionKind.REJECTED:
            state.update(rejected_by=who, rejected_at=when, rejection_reason=record.reason)
        elif kind == TransitionKind.RETURNED_TO_DRAFT:
            for key in (
                "submitted_by", "submitted_at",
                "reviewed_by", "reviewed_at", "review_comment",
            ):
                state.pop(key, None)
            state.update(returned_by=who, returned_at=when, return_reason=record.reason)
        elif kind == TransitionKind.SUSPENDED:
            state.update(suspended_by=who, suspended_at=when, suspension_reason=record.reason)
        elif kind == TransitionKind.CANCELLED:
            state.update(cancelled_by=who, cancelled_at=when)
    return RequestTimeline(**state)


# =========================================================================
# Credential
# =========================================================================


class CredentialStatus(str, Enum):
    """Credential generation states."""

    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


CREDENTIAL_TRANSITIONS: dict[CredentialStatus, frozenset[CredentialStatus]] = {
    CredentialStatus.PENDING: frozenset({CredentialStatus.GENERATING}),
    CredentialStatus.GENERATING: frozenset({
        CredentialStatus.READY,
        CredentialStatus.FAILED,
    }),
    # Only through explicit regenerate.
    CredentialStatus.READY: frozenset({CredentialStatus.PENDING}),
    CredentialStatus.FAILED: frozenset({CredentialStatus.PENDING}),
}


# =========================================================================
# Print batch
# =========================================================================


class PrintBatchStatus(str, Enum):
    """Print batch rendering states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    ARCHIVED = "archived"


PRINT_BATCH_TRANSITIONS: dict[PrintBatchStatus, frozenset[PrintBatchStatus]] = {
    PrintBatchStatus.QUEUED: frozenset({PrintBatchStatus.PROCESSING}),
    PrintBatchStatus.PROCESSING: frozenset({
        PrintBatchStatus.READY,
        PrintBatchStatus.FAILED,
    }),
    PrintBatchStatus.READY: frozenset({PrintBatchStatus.ARCHIVED}),
    PrintBatchStatus.FAILED: frozenset({
        PrintBatchStatus.QUEUED,
        PrintBatchStatus.ARCHIVED,
    }),
    PrintBatchStatus.ARCHIVED: frozenset(),
}

IN_FLIGHT_BATCH_STATUSES: frozenset[PrintBatchStatus] = frozenset({
    PrintBatchStatus.QUEUED,
    PrintBatchStatus.PROCESSING,
})
