"""
Job handler: print batch rendering (wraps PrintBatchService.render).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from acredita_kernel.services.print_batch_service import RENDER_JOB

if TYPE_CHECKING:
    from acredita_batch.services.context import ServiceContext


class RenderPrintBatchJob:
    """Combines a batch's credential images into one printable PDF."""

    @property
    def job_type(self) -> str:
        return RENDER_JOB

    @property
    def description(self) -> str:
        return "Render print batch document"

    def handle(self, payload: dict[str, Any], context: ServiceContext) -> dict[str, Any]:
        batch = context.print_batches.render(UUID(payload["batch_id"]))
        return {
            "batch_id": str(batch.id),
            "status": batch.status.value,
            "processed": batch.processed_credentials,
        }
