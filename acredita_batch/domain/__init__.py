"""
acredita_batch.domain -- Pure types and planning for jobs and bulk runs.
"""

from acredita_batch.domain.chunking import plan_chunks, split
from acredita_batch.domain.types import (
    BulkRunOptions,
    JobRunResult,
    JobStatus,
    QueuedJob,
    QueuedPrintBatch,
    RunSummary,
    UnitError,
    UnitResult,
)

__all__ = [
    "BulkRunOptions",
    "JobRunResult",
    "JobStatus",
    "QueuedJob",
    "QueuedPrintBatch",
    "RunSummary",
    "UnitError",
    "UnitResult",
    "plan_chunks",
    "split",
]
