"""
acredita_batch.domain.types -- Pure frozen dataclasses for jobs and bulk runs.

ZERO I/O.  Status fields are ``str`` enums; collections are tuples.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable).
    - ``RunSummary.exit_code`` is 1 when the run was aborted, or when a unit
      failed and errors were not being skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Job queue
# =============================================================================


class JobStatus(str, Enum):
    """Lifecycle of one queued job row."""

    QUEUED = "queued"  # Waiting for a worker
    RUNNING = "running"  # Claimed by a worker
    SUCCEEDED = "succeeded"
    FAILED = "failed"  # Handler raised on the last allowed attempt


@dataclass(frozen=True)
class QueuedJob:
    """Immutable snapshot of a queued job."""

    job_id: UUID
    job_type: str  # Registered handler key (e.g., "credential.generate")
    status: JobStatus
    payload: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    available_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class JobRunResult:
    """Outcome of one worker tick."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    requeued: int = 0


# =============================================================================
# Bulk approval
# =============================================================================


@dataclass(frozen=True)
class BulkRunOptions:
    """Operator options for one bulk approval run."""

    area_id: UUID
    batch_size: int = 100
    wait_time_seconds: float = 10.0
    wait_credentials: bool = True
    max_wait_seconds: float = 300.0
    poll_interval_seconds: float = 5.0
    dry_run: bool = False
    skip_errors: bool = False
    provider_ids: tuple[UUID, ...] = ()

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be greater than zero")
        if self.wait_time_seconds < 0 or self.max_wait_seconds < 0:
            raise ValueError("wait times must not be negative")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be greater than zero")


@dataclass(frozen=True)
class UnitError:
    """One failure inside a unit, attributed to a request when known."""

    unit_id: UUID
    unit_name: str
    stage: str  # "submit", "approve", "wait", "print"
    message: str
    request_id: UUID | None = None


@dataclass(frozen=True)
class QueuedPrintBatch:
    batch_id: UUID | None  # None on dry runs
    event_id: UUID
    credential_count: int


@dataclass(frozen=True)
class UnitResult:
    """Per-provider counters of one bulk run."""

    unit_id: UUID
    unit_name: str
    total: int = 0
    submitted: int = 0
    approved: int = 0
    skipped: bool = False
    resumed: bool = False  # Jumped straight to print batching
    chunks: tuple[int, ...] = ()
    credentials_ready: int = 0
    credentials_expected: int = 0
    wait_timed_out: bool = False
    print_batches: tuple[QueuedPrintBatch, ...] = ()
    errors: tuple[UnitError, ...] = ()

    @property
    def failed(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class RunSummary:
    """Run-wide aggregation returned by ``BulkApprovalRunner.run``."""

    area_id: UUID
    dry_run: bool
    skip_errors: bool
    units: tuple[UnitResult, ...] = ()
    aborted: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def total_requests(self) -> int:
        return sum(u.total for u in self.units)

    @property
    def total_submitted(self) -> int:
        return sum(u.submitted for u in self.units)

    @property
    def total_approved(self) -> int:
        return sum(u.approved for u in self.units)

    @property
    def units_skipped(self) -> int:
        return sum(1 for u in self.units if u.skipped)

    @property
    def credentials_ready(self) -> int:
        return sum(u.credentials_ready for u in self.units)

    @property
    def batches_created(self) -> int:
        return sum(len(u.print_batches) for u in self.units)

    @property
    def errors(self) -> tuple[UnitError, ...]:
        return tuple(e for u in self.units for e in u.errors)

    @property
    def exit_code(self) -> int:
        if self.aborted or (self.errors and not self.skip_errors):
            return 1
        return 0
