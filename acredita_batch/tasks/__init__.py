"""
Job handlers and the JobRegistry.
"""

from acredita_batch.tasks.base import JobHandler, JobRegistry, default_job_registry
from acredita_batch.tasks.credential_tasks import (
    ExpireEventCredentialsJob,
    GenerateCredentialJob,
    RegenerateEventCredentialsJob,
)
from acredita_batch.tasks.print_batch_tasks import RenderPrintBatchJob

__all__ = [
    "ExpireEventCredentialsJob",
    "GenerateCredentialJob",
    "JobHandler",
    "JobRegistry",
    "RegenerateEventCredentialsJob",
    "RenderPrintBatchJob",
    "default_job_registry",
]
