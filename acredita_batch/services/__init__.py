"""
acredita_batch.services -- Job queue, worker, pacing and bulk approval.
"""

from acredita_batch.services.bulk_approval import BulkApprovalRunner
from acredita_batch.services.context import ServiceContext
from acredita_batch.services.job_queue import DatabaseJobQueue
from acredita_batch.services.pacing import Pacer
from acredita_batch.services.worker import JobWorker

__all__ = [
    "BulkApprovalRunner",
    "DatabaseJobQueue",
    "JobWorker",
    "Pacer",
    "ServiceContext",
]
