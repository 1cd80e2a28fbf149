"""
ServiceContext -- kernel services bound to one session.

Built by ``AccreditationOrchestrator.build_context`` and handed to job
handlers and the bulk approval runner, which never construct services
themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from acredita_batch.services.job_queue import DatabaseJobQueue
from acredita_kernel.selectors.credential_selector import CredentialSelector
from acredita_kernel.selectors.request_selector import RequestSelector
from acredita_kernel.services.credential_service import CredentialService
from acredita_kernel.services.print_batch_service import PrintBatchService
from acredita_kernel.services.request_workflow import RequestWorkflowService


@dataclass(frozen=True)
class ServiceContext:
    session: Session
    workflow: RequestWorkflowService
    credentials: CredentialService
    print_batches: PrintBatchService
    dispatcher: DatabaseJobQueue
    requests: RequestSelector
    credential_selector: CredentialSelector
    as_of: datetime
