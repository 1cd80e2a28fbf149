"""Kernel services: request workflow, credential generation, print batches."""

from acredita_kernel.services.credential_service import CredentialService
from acredita_kernel.services.print_batch_service import PrintBatchService
from acredita_kernel.services.request_workflow import RequestWorkflowService

__all__ = [
    "CredentialService",
    "PrintBatchService",
    "RequestWorkflowService",
]
