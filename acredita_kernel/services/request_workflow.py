"""
acredita_kernel.services.request_workflow -- Accreditation request state machine.

Responsibility:
    Applies lifecycle transitions to accreditation requests: create (from a
    ``DraftRequestBuilder``), submit, review, approve, reject, return to
    draft, suspend, cancel and delete.  Approval hands off to the credential
    generator.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - ``REQUEST_TRANSITIONS`` is checked before every mutation; an illegal
      transition raises and leaves the status untouched.
    - The authorization gate is consulted before every transition.
    - Every applied transition appends exactly one ``RequestTransition``.
    - Approval creates at most one credential per request.
    - One active request per employee and event.

Failure modes:
    - RequestNotFoundError for an unknown id.
    - InvalidStateError / InvalidTransitionError for illegal transitions.
    - ValidationError for bad zones, missing builder fields or empty reasons.
    - UnauthorizedActionError when the gate denies.
    - DuplicateActiveRequestError on create.

Does NOT call ``session.commit()``; the caller owns the transaction.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from acredita_kernel.domain.clock import Clock, SystemClock
from acredita_kernel.domain.collaborators import AllowAllGate, AuthorizationGate
from acredita_kernel.domain.lifecycle import (
    ACTIVE_REQUEST_STATUSES,
    REQUEST_TRANSITIONS,
    RequestStatus,
    TransitionKind,
    TransitionRecord,
)
from acredita_kernel.domain.values import AccreditationRequestDTO, DraftRequestBuilder
from acredita_kernel.exceptions import (
    DuplicateActiveRequestError,
    InvalidStateError,
    InvalidTransitionError,
    RequestNotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from acredita_kernel.logging_config import get_logger
from acredita_kernel.models.accreditation import AccreditationRequest, RequestTransition
from acredita_kernel.models.reference import Employee, Event, Zone
from acredita_kernel.services.credential_service import CredentialService

logger = get_logger("services.request_workflow")

INTERNAL_REVIEW_COMMENT = "Automatic review: internal provider"


class RequestWorkflowService:
    """Lifecycle transitions for accreditation requests."""

    def __init__(
        self,
        session: Session,
        credential_service: CredentialService,
        gate: AuthorizationGate | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._credentials = credential_service
        self._gate = gate or AllowAllGate()
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_request(
        self,
        builder: DraftRequestBuilder,
        actor_id: UUID,
    ) -> AccreditationRequestDTO:
        """Create a ``draft`` request from a completed builder."""
        self._authorize(actor_id, "request.create", None)

        missing = builder.missing_fields()
        if missing:
            raise ValidationError({name: ["is required"] for name in missing})

        errors: dict[str, list[str]] = {}
        employee = self._session.get(Employee, builder.employee_id)
        if employee is None:
            errors["employee_id"] = [f"unknown employee {builder.employee_id}"]
        event = self._session.get(Event, builder.event_id)
        if event is None:
            errors["event_id"] = [f"unknown event {builder.event_id}"]
        if errors:
            raise ValidationError(errors)

        zones = self._resolve_zones(event, builder.zone_ids)

        existing = self._session.execute(
            select(AccreditationRequest.id).where(
                AccreditationRequest.employee_id == employee.id,
                AccreditationRequest.event_id == event.id,
                AccreditationRequest.status.in_([s.value for s in ACTIVE_REQUEST_STATUSES]),
            )
        ).scalars().first()
        if existing is not None:
            raise DuplicateActiveRequestError(str(employee.id), str(event.id), str(existing))

        now = self._clock.now()
        model = AccreditationRequest(
            employee_id=employee.id,
            event_id=event.id,
            status=RequestStatus.DRAFT.value,
            comments=builder.comments,
            created_by_id=actor_id,
        )
        model.created_at = now
        model.zones = zones
        self._session.add(model)
        self._record(model, TransitionKind.CREATED, None, RequestStatus.DRAFT, actor_id)
        self._session.flush()

        logger.info(
            "request_created",
            extra={
                "request_id": str(model.id),
                "request_uuid": str(model.uuid),
                "employee_id": str(employee.id),
                "event_id": str(event.id),
                "zone_count": len(zones),
            },
        )
        return model.to_dto()

    def update_zones(
        self,
        request_id: UUID,
        zone_ids: tuple[UUID, ...],
        actor_id: UUID,
    ) -> AccreditationRequestDTO:
        """Replace the zone selection of a draft request."""
        model = self._load(request_id)
        self._authorize(actor_id, "request.update", model)
        if model.current_status != RequestStatus.DRAFT:
            raise InvalidStateError(str(model.id), model.status, "update zones of")
        model.zones = self._resolve_zones(model.event, zone_ids)
        model.updated_by_id = actor_id
        self._session.flush()
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def submit(self, request_id: UUID, actor_id: UUID) -> AccreditationRequestDTO:
        """draft -> submitted (internal providers continue to under_review)."""
        model = self._load(request_id)
        self._authorize(actor_id, "request.submit", model)

        if model.current_status != RequestStatus.DRAFT:
            raise InvalidStateError(str(model.id), model.status, "submit")

        if not model.zones:
            raise ValidationError.single("zones", "at least one zone must be selected")
        allowed = {z.id for z in model.event.zones}
        invalid = sorted(str(z.id) for z in model.zones if z.id not in allowed)
        if invalid:
            raise ValidationError.single(
                "zones", f"zones not valid for event: {', '.join(invalid)}",
            )

        self._apply(model, TransitionKind.SUBMITTED, actor_id)

        if model.employee.provider.is_internal:
            self._apply(model, TransitionKind.REVIEWED, actor_id, INTERNAL_REVIEW_COMMENT)
            model.review_comments = INTERNAL_REVIEW_COMMENT

        self._session.flush()
        return model.to_dto()

    def review(
        self,
        request_id: UUID,
        actor_id: UUID,
        comment: str | None = None,
    ) -> AccreditationRequestDTO:
        """submitted -> under_review.  Already under review is a no-op."""
        model = self._load(request_id)
        self._authorize(actor_id, "request.review", model)

        if model.current_status == RequestStatus.UNDER_REVIEW:
            logger.debug("request_review_noop", extra={"request_id": str(model.id)})
            return model.to_dto()

        self._apply(model, TransitionKind.REVIEWED, actor_id, comment)
        model.review_comments = comment
        self._session.flush()
        return model.to_dto()

    def approve(self, request_id: UUID, actor_id: UUID) -> AccreditationRequestDTO:
        """submitted|under_review -> approved; creates and schedules the credential."""
        model = self._load(request_id)
        self._authorize(actor_id, "request.approve", model)

        self._apply(model, TransitionKind.APPROVED, actor_id)
        self._session.flush()

        credential = self._credentials.create_credential_for_request(model, actor_id)
        self._credentials.schedule_generation(credential)
        self._session.flush()
        return model.to_dto()

    def reject(self, request_id: UUID, actor_id: UUID, reason: str) -> AccreditationRequestDTO:
        model = self._load(request_id)
        self._authorize(actor_id, "request.reject", model)
        self._apply(model, TransitionKind.REJECTED, actor_id, reason)
        self._session.flush()
        return model.to_dto()

    def return_to_draft(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> AccreditationRequestDTO:
        """submitted|under_review -> draft; clears review metadata."""
        model = self._load(request_id)
        self._authorize(actor_id, "request.return_to_draft", model)
        self._apply(model, TransitionKind.RETURNED_TO_DRAFT, actor_id, reason)
        model.review_comments = None
        self._session.flush()
        return model.to_dto()

    def suspend(self, request_id: UUID, actor_id: UUID, reason: str) -> AccreditationRequestDTO:
        """approved -> suspended.  The credential stays on disk but is revoked."""
        model = self._load(request_id)
        self._authorize(actor_id, "request.suspend", model)
        self._apply(model, TransitionKind.SUSPENDED, actor_id, reason)
        if model.credential is not None:
            self._credentials.revoke(model.credential, reason="suspended", actor_id=actor_id)
        self._session.flush()
        return model.to_dto()

    def cancel(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> AccreditationRequestDTO:
        model = self._load(request_id)
        self._authorize(actor_id, "request.cancel", model)
        self._apply(model, TransitionKind.CANCELLED, actor_id, reason)
        self._session.flush()
        return model.to_dto()

    def delete(self, request_id: UUID, actor_id: UUID) -> None:
        """Hard-delete a request in any state (privileged).

        The credential and its artifacts go with it.  Print batches that
        snapshotted the credential keep the id and report it as missing.
        """
        model = self._load(request_id)
        self._authorize(actor_id, "request.delete", model)

        credential = model.credential
        credential_id = credential.id if credential is not None else None
        if credential is not None:
            self._credentials.purge_artifacts(credential)

        status = model.status
        self._session.delete(model)
        self._session.flush()

        logger.warning(
            "request_deleted",
            extra={
                "request_id": str(request_id),
                "status": status,
                "credential_id": str(credential_id) if credential_id else None,
                "actor_id": str(actor_id),
            },
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> AccreditationRequestDTO:
        return self._load(request_id).to_dto()

    def get_timeline(self, request_id: UUID) -> tuple[TransitionRecord, ...]:
        return self._load(request_id).transition_records()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _load(self, request_id: UUID) -> AccreditationRequest:
        model = self._session.get(AccreditationRequest, request_id)
        if model is None:
            model = self._session.execute(
                select(AccreditationRequest).where(AccreditationRequest.uuid == request_id)
            ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def _authorize(self, actor_id: UUID, action: str, entity: Any) -> None:
        if not self._gate.can_perform(actor_id, action, entity):
            ref = str(entity.id) if entity is not None else "requests"
            logger.warning(
                "action_denied",
                extra={"actor_id": str(actor_id), "action": action, "entity": ref},
            )
            raise UnauthorizedActionError(str(actor_id), action, ref)

    def _resolve_zones(self, event: Event, zone_ids: tuple[UUID, ...]) -> list[Zone]:
        if not zone_ids:
            return []
        allowed = {z.id: z for z in event.zones}
        invalid = [str(z) for z in zone_ids if z not in allowed]
        if invalid:
            raise ValidationError.single(
                "zones", f"zones not valid for event: {', '.join(sorted(invalid))}",
            )
        return [allowed[z] for z in dict.fromkeys(zone_ids)]

    def _apply(
        self,
        model: AccreditationRequest,
        kind: TransitionKind,
        actor_id: UUID,
        reason: str | None = None,
    ) -> None:
        rule = REQUEST_TRANSITIONS[kind]
        current = model.current_status
        if current not in rule.sources:
            raise InvalidTransitionError(
                str(model.id), current.value, rule.target.value, kind.value,
            )
        if rule.requires_reason and not (reason or "").strip():
            raise ValidationError.single("reason", f"a reason is required to {kind.value}")

        model.status = rule.target.value
        model.updated_by_id = actor_id
        self._record(model, kind, current, rule.target, actor_id, reason)

        logger.info(
            "request_transitioned",
            extra={
                "request_id": str(model.id),
                "transition": kind.value,
                "from_status": current.value,
                "to_status": rule.target.value,
                "actor_id": str(actor_id),
            },
        )

    def _record(
        self,
        model: AccreditationRequest,
        kind: TransitionKind,
        from_status: RequestStatus | None,
        to_status: RequestStatus,
        actor_id: UUID,
        reason: str | None = None,
    ) -> None:
        model.transitions.append(
            RequestTransition(
                sequence=len(model.transitions) + 1,
                kind=kind.value,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                reason=reason.strip() if reason else None,
            )
        )
