"""
Job handlers: credential generation, event expiry and event regeneration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from acredita_kernel.services.credential_service import (
    EXPIRE_EVENT_JOB,
    GENERATE_JOB,
    REGENERATE_EVENT_JOB,
)

if TYPE_CHECKING:
    from acredita_batch.services.context import ServiceContext


class GenerateCredentialJob:
    """Renders one credential (image, PDF, QR) scheduled by approval."""

    @property
    def job_type(self) -> str:
        return GENERATE_JOB

    @property
    def description(self) -> str:
        return "Render credential image and PDF"

    def handle(self, payload: dict[str, Any], context: ServiceContext) -> dict[str, Any]:
        credential = context.credentials.generate(UUID(payload["credential_id"]))
        # Render failures are recorded on the credential; the job itself succeeded.
        return {
            "credential_id": str(credential.id),
            "status": credential.status.value,
            "retry_count": credential.retry_count,
        }


class ExpireEventCredentialsJob:
    """Deactivates every credential of a finished event.

    Payload: ``event_id`` and the ``actor_id`` checked by the gate.
    """

    @property
    def job_type(self) -> str:
        return EXPIRE_EVENT_JOB

    @property
    def description(self) -> str:
        return "Expire all credentials of an event"

    def handle(self, payload: dict[str, Any], context: ServiceContext) -> dict[str, Any]:
        count = context.credentials.expire_event_credentials(
            UUID(payload["event_id"]), UUID(payload["actor_id"]),
        )
        return {"event_id": payload["event_id"], "expired": count}


class RegenerateEventCredentialsJob:
    """Re-renders an event's credentials after its default template changed.

    Payload: ``event_id`` and the ``actor_id`` that requested it.  Each
    credential gets its own ``credential.generate`` job.
    """

    @property
    def job_type(self) -> str:
        return REGENERATE_EVENT_JOB

    @property
    def description(self) -> str:
        return "Regenerate all credentials of an event with its current template"

    def handle(self, payload: dict[str, Any], context: ServiceContext) -> dict[str, Any]:
        outcome = context.credentials.regenerate_event_credentials(
            UUID(payload["event_id"]), UUID(payload["actor_id"]),
        )
        return {"event_id": payload["event_id"], **outcome}
