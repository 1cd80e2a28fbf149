"""
acredita_kernel.services.credential_service -- Credential generation pipeline.

Responsibility:
    Creates the credential of an approved request, snapshots what it will
    render, and runs generation when the ``credential.generate`` job fires.
    Also owns regenerate (single and event-wide), revocation, QR
    verification, event expiry, the operator status report and the retention
    cleanup.

Architecture position:
    Kernel > Services.  Dispatches jobs only through ``JobDispatcher``.

Invariants enforced:
    - pending -> generating -> ready | failed; failed/ready -> pending only
      through regenerate (single, retry-failed or event-wide).
    - ``retry_count`` increments only on failure and survives regenerate.
    - A failure never reschedules itself and never propagates to the caller
      of ``generate`` (the approval that scheduled it is long committed).
    - ``verify_credential_by_qr`` never raises.

Failure modes:
    - CredentialNotFoundError for unknown ids.
    - RetryLimitExceededError when regenerating a failed credential at the cap.
    - InvalidStateError when regenerating for a request that is not approved.
    - UnauthorizedActionError when the gate denies an operator action
      (regenerate, retry-failed, event expiry, event regeneration, cleanup).

Does NOT call ``session.commit()``; the caller owns the transaction.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from acredita_kernel.domain.clock import Clock, SystemClock
from acredita_kernel.domain.collaborators import (
    AllowAllGate,
    AuthorizationGate,
    BlobStore,
    JobDispatcher,
)
from acredita_kernel.domain.lifecycle import CredentialStatus, RequestStatus
from acredita_kernel.domain.values import (
    CredentialCleanupResult,
    CredentialDTO,
    CredentialStatusReport,
    VerificationResult,
)
from acredita_kernel.exceptions import (
    CredentialNotFoundError,
    GenerationFailure,
    InvalidStateError,
    RetryLimitExceededError,
    UnauthorizedActionError,
)
from acredita_kernel.logging_config import get_logger
from acredita_kernel.models.accreditation import AccreditationRequest
from acredita_kernel.models.credential import Credential
from acredita_kernel.models.reference import Template
from acredita_kernel.rendering.credential_renderer import CredentialRenderer
from acredita_kernel.selectors.credential_selector import CredentialSelector

logger = get_logger("services.credential")

GENERATE_JOB = "credential.generate"
EXPIRE_EVENT_JOB = "credential.expire_event"
REGENERATE_EVENT_JOB = "credential.regenerate_event"

_QR_ALPHABET = string.ascii_uppercase + string.digits


class CredentialService:
    """Credential lifecycle: create, snapshot, generate, regenerate, verify."""

    def __init__(
        self,
        session: Session,
        blob_store: BlobStore,
        dispatcher: JobDispatcher,
        renderer: CredentialRenderer | None = None,
        clock: Clock | None = None,
        gate: AuthorizationGate | None = None,
        *,
        max_retries: int = 3,
        error_message_max_length: int = 500,
        failed_retention_days: int = 30,
        qr_code_prefix: str = "CRD",
        qr_code_attempts: int = 10,
        verify_base_url: str | None = None,
        images_path: str = "credentials/images",
        pdf_path: str = "credentials/pdf",
    ) -> None:
        self._session = session
        self._blobs = blob_store
        self._dispatcher = dispatcher
        self._renderer = renderer
        self._clock = clock or SystemClock()
        self._gate = gate or AllowAllGate()
        self._max_retries = max_retries
        self._error_max = error_message_max_length
        self._failed_retention_days = failed_retention_days
        self._qr_prefix = qr_code_prefix
        self._qr_attempts = qr_code_attempts
        self._verify_base_url = verify_base_url.rstrip("/") if verify_base_url else None
        self._images_path = images_path.strip("/")
        self._pdf_path = pdf_path.strip("/")
        self._selector = CredentialSelector(session)

    @property
    def max_retries(self) -> int:
        return self._max_retries

    # -------------------------------------------------------------------------
    # Creation and scheduling
    # -------------------------------------------------------------------------

    def create_credential_for_request(
        self,
        request: AccreditationRequest,
        actor_id: UUID,
    ) -> Credential:
        """Return the request's credential, creating a ``pending`` one if absent."""
        if request.credential is not None:
            return request.credential

        credential = Credential(
            request_id=request.id,
            status=CredentialStatus.PENDING.value,
            retry_count=0,
            is_active=True,
            created_by_id=actor_id,
        )
        credential.created_at = self._clock.now()
        request.credential = credential
        self._session.add(credential)
        self._session.flush()

        logger.info(
            "credential_created",
            extra={"credential_id": str(credential.id), "request_id": str(request.id)},
        )
        return credential

    def capture_snapshots(self, credential: Credential) -> None:
        """Freeze employee, event, zones and the current default template."""
        request = credential.request
        employee = request.employee
        provider = employee.provider
        event = request.event

        credential.employee_snapshot = {
            "id": str(employee.id),
            "first_name": employee.first_name,
            "last_name": employee.last_name,
            "document_type": employee.document_type,
            "document_number": employee.document_number,
            "function": employee.function,
            "photo_path": employee.photo_path,
            "provider_id": str(provider.id),
            "provider_name": provider.name,
            "area_id": str(provider.area_id) if provider.area_id else None,
            "area_name": provider.area.name if provider.area is not None else None,
        }
        credential.event_snapshot = {
            "id": str(event.id),
            "name": event.name,
            "location": event.location,
            "start_date": event.start_date.isoformat() if event.start_date else None,
            "end_date": event.end_date.isoformat() if event.end_date else None,
        }
        credential.zones_snapshot = [
            {"id": str(z.id), "code": z.code, "name": z.name, "color": z.color}
            for z in request.zones
        ]

        template = self._session.execute(
            select(Template)
            .where(Template.event_id == event.id, Template.is_default.is_(True))
            .order_by(Template.version.desc())
        ).scalars().first()
        credential.template_snapshot = (
            {
                "id": str(template.id),
                "name": template.name,
                "version": template.version,
                "layout_meta": dict(template.layout_meta or {}),
                "file_path": template.file_path,
                "captured_at": self._clock.now().isoformat(),
            }
            if template is not None
            else None
        )
        if event.end_date is not None:
            credential.expires_at = datetime.combine(
                event.end_date, time(23, 59, 59), tzinfo=timezone.utc,
            )

    def schedule_generation(self, credential: Credential) -> None:
        """Snapshot the template and hand the credential to the job queue."""
        self.capture_snapshots(credential)
        self._session.flush()
        self._dispatcher.schedule(GENERATE_JOB, {"credential_id": str(credential.id)})
        logger.info(
            "credential_generation_scheduled",
            extra={
                "credential_id": str(credential.id),
                "template_version": (credential.template_snapshot or {}).get("version"),
            },
        )

    # -------------------------------------------------------------------------
    # Generation (job side)
    # -------------------------------------------------------------------------

    def generate(self, credential_id: UUID) -> CredentialDTO:
        """Run one generation attempt.  Failures are recorded, not raised."""
        credential = self.start_generation(credential_id)
        if credential is None:
            return self._load(credential_id).to_dto()
        return self.finish_generation(credential).to_dto()

    def start_generation(self, credential_id: UUID) -> Credential | None:
        """pending -> generating.  Returns None when there is nothing to do."""
        credential = self._load(credential_id, for_update=True)
        status = credential.current_status
        if status not in (CredentialStatus.PENDING, CredentialStatus.GENERATING):
            logger.info(
                "credential_generation_skipped",
                extra={"credential_id": str(credential.id), "status": status.value},
            )
            return None
        if status == CredentialStatus.GENERATING:
            # A worker died mid-render; the attempt is resumed.
            logger.warning(
                "credential_generation_resumed", extra={"credential_id": str(credential.id)},
            )
        credential.status = CredentialStatus.GENERATING.value
        credential.last_attempt_at = self._clock.now()
        self._session.flush()
        return credential

    def finish_generation(self, credential: Credential) -> Credential:
        """Render and store artifacts; ``ready`` on success, ``failed`` otherwise."""
        written: list[str] = []
        try:
            if self._renderer is None:
                raise GenerationFailure(str(credential.id), "no credential renderer configured")
            if credential.employee_snapshot is None or credential.event_snapshot is None:
                raise GenerationFailure(str(credential.id), "snapshots were not captured")

            if credential.qr_code is None:
                credential.qr_code = self._new_qr_code(credential)

            rendered = self._renderer.render(
                qr_payload=self._qr_payload(credential.qr_code),
                employee=credential.employee_snapshot,
                event=credential.event_snapshot,
                zones=list(credential.zones_snapshot or []),
                template=credential.template_snapshot,
            )
            image_path = self._blobs.put(
                f"{self._images_path}/{credential.uuid}.png", rendered.png,
            )
            written.append(image_path)
            pdf_path = self._blobs.put(f"{self._pdf_path}/{credential.uuid}.pdf", rendered.pdf)
            written.append(pdf_path)

            credential.image_path = image_path
            credential.pdf_path = pdf_path
            credential.generated_at = self._clock.now()
            credential.error_message = None
            credential.status = CredentialStatus.READY.value
            self._session.flush()
        except Exception as exc:
            for path in written:
                self._blobs.delete(path)
            self._record_failure(credential, exc)
            return credential

        logger.info(
            "credential_generated",
            extra={
                "credential_id": str(credential.id),
                "image_path": credential.image_path,
                "retry_count": credential.retry_count,
            },
        )
        return credential

    def _record_failure(self, credential: Credential, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        credential.status = CredentialStatus.FAILED.value
        credential.error_message = message[: self._error_max]
        credential.retry_count = (credential.retry_count or 0) + 1
        credential.image_path = None
        credential.pdf_path = None
        self._session.flush()
        logger.error(
            "credential_generation_failed",
            exc_info=exc,
            extra={
                "credential_id": str(credential.id),
                "retry_count": credential.retry_count,
            },
        )

    # -------------------------------------------------------------------------
    # Regenerate / revoke
    # -------------------------------------------------------------------------

    def regenerate_credential(
        self,
        credential_id: UUID,
        actor_id: UUID,
        force: bool = False,
    ) -> CredentialDTO:
        """Reset to ``pending`` keeping ``retry_count``, re-snapshot, reschedule."""
        credential = self._load(credential_id, for_update=True)
        self._authorize(actor_id, "credential.regenerate", credential)
        return self._regenerate(credential, actor_id, force=force).to_dto()

    def regenerate_for_request(
        self,
        request_ref: UUID,
        actor_id: UUID,
        force: bool = False,
    ) -> CredentialDTO:
        """Regenerate by request id or uuid; creates the credential if missing."""
        request = self._session.get(AccreditationRequest, request_ref)
        if request is None:
            request = self._session.execute(
                select(AccreditationRequest).where(AccreditationRequest.uuid == request_ref)
            ).scalar_one_or_none()
        if request is None:
            raise CredentialNotFoundError(f"request {request_ref}")
        self._authorize(actor_id, "credential.regenerate", request)
        if request.credential is None:
            if request.current_status != RequestStatus.APPROVED:
                raise InvalidStateError(str(request.id), request.status, "generate a credential for")
            credential = self.create_credential_for_request(request, actor_id)
            self.schedule_generation(credential)
            return credential.to_dto()
        credential = self._load(request.credential.id, for_update=True)
        return self._regenerate(credential, actor_id, force=force).to_dto()

    def retry_failed(self, actor_id: UUID, force: bool = False) -> dict[str, int]:
        """Regenerate every failed credential; the cap skips, it does not abort."""
        self._authorize(actor_id, "credential.regenerate", None)
        scheduled = 0
        skipped = 0
        for credential_id in self._selector.failed_credential_ids():
            try:
                self._regenerate(self._load(credential_id, for_update=True), actor_id, force=force)
                scheduled += 1
            except (RetryLimitExceededError, InvalidStateError) as exc:
                skipped += 1
                logger.warning(
                    "credential_retry_skipped",
                    extra={"credential_id": str(credential_id), "reason": exc.code},
                )
        return {"scheduled": scheduled, "skipped": skipped}

    def regenerate_event_credentials(self, event_id: UUID, actor_id: UUID) -> dict[str, int]:
        """Re-render every active credential of an event's approved requests.

        Used after a template edit: each credential is reset to ``pending``
        and rescheduled, so generation snapshots the event's current default
        template.  QR codes are kept and the retry cap does not apply.  A
        credential that is being rendered right now is skipped.
        """
        self._authorize(actor_id, "credential.regenerate_event", None)
        credentials = self._session.execute(
            select(Credential)
            .join(AccreditationRequest, Credential.request_id == AccreditationRequest.id)
            .where(
                AccreditationRequest.event_id == event_id,
                AccreditationRequest.status == RequestStatus.APPROVED.value,
                Credential.is_active.is_(True),
            )
            .order_by(Credential.id)
            .with_for_update()
        ).scalars().all()

        scheduled = 0
        skipped = 0
        for credential in credentials:
            if credential.current_status == CredentialStatus.GENERATING:
                skipped += 1
                continue
            self._regenerate(credential, actor_id, force=True, keep_qr=True)
            scheduled += 1

        logger.info(
            "event_credentials_regenerate_requested",
            extra={"event_id": str(event_id), "scheduled": scheduled, "skipped": skipped},
        )
        return {"scheduled": scheduled, "skipped": skipped}

    def _regenerate(
        self,
        credential: Credential,
        actor_id: UUID,
        force: bool = False,
        keep_qr: bool = False,
    ) -> Credential:
        request = credential.request
        if request is None or request.current_status != RequestStatus.APPROVED:
            raise InvalidStateError(
                str(credential.request_id),
                request.status if request is not None else "missing",
                "regenerate the credential of",
            )
        if (
            credential.current_status == CredentialStatus.FAILED
            and credential.retry_count >= self._max_retries
            and not force
        ):
            raise RetryLimitExceededError(
                str(credential.id), credential.retry_count, self._max_retries,
            )

        previous = credential.status
        self.purge_artifacts(credential)
        credential.status = CredentialStatus.PENDING.value
        credential.error_message = None
        credential.image_path = None
        credential.pdf_path = None
        if not keep_qr:
            credential.qr_code = None
        credential.generated_at = None
        credential.updated_by_id = actor_id
        self._session.flush()

        self.schedule_generation(credential)
        logger.info(
            "credential_regenerate_requested",
            extra={
                "credential_id": str(credential.id),
                "previous_status": previous,
                "retry_count": credential.retry_count,
                "forced": force,
            },
        )
        return credential

    def revoke(self, credential: Credential, reason: str, actor_id: UUID) -> None:
        credential.is_active = False
        credential.revoked_reason = reason
        credential.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "credential_revoked",
            extra={"credential_id": str(credential.id), "reason": reason},
        )

    def purge_artifacts(self, credential: Credential) -> int:
        removed = 0
        for path in (credential.image_path, credential.pdf_path):
            if path and self._blobs.delete(path):
                removed += 1
        return removed

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify_credential_by_qr(self, code: str | None) -> VerificationResult:
        """Validity of a scanned code.  Unknown codes are a result, not an error."""
        if not code or not code.strip():
            return VerificationResult.not_found()
        try:
            credential = self._selector.find_by_qr_code(code.strip())
            if credential is None or credential.request is None:
                return VerificationResult.not_found()
            return self._verification_for(credential)
        except Exception:
            logger.exception("credential_verification_error", extra={"qr_code": code})
            return VerificationResult(
                valid=False, reason="error", message="Verification unavailable",
            )

    def _verification_for(self, credential: Credential) -> VerificationResult:
        request = credential.request
        request_status = RequestStatus(request.status)
        now = self._clock.now()

        if request_status == RequestStatus.SUSPENDED or credential.revoked_reason == "suspended":
            reason, message = "suspended", "Accreditation suspended"
        elif credential.is_expired(now):
            reason, message = "expired", "Credential expired"
        elif not credential.is_active:
            reason, message = "inactive", "Credential inactive"
        elif request_status != RequestStatus.APPROVED:
            reason, message = "not_approved", "Request is not approved"
        elif not credential.is_ready:
            reason, message = "not_ready", "Credential not generated yet"
        else:
            reason, message = None, "Credential valid"

        employee = credential.employee_snapshot or {}
        event = credential.event_snapshot or {}
        return VerificationResult(
            valid=reason is None,
            reason=reason,
            message=message,
            credential_id=credential.id,
            credential_status=CredentialStatus(credential.status),
            request_status=request_status,
            employee={
                "name": f"{employee.get('first_name', '')} {employee.get('last_name', '')}".strip(),
                "document_number": employee.get("document_number"),
                "function": employee.get("function"),
                "provider": employee.get("provider_name"),
            },
            event={"name": event.get("name"), "location": event.get("location")},
            zones=tuple(
                {"code": z.get("code"), "name": z.get("name"), "color": z.get("color")}
                for z in credential.zones_snapshot or []
            ),
            issued_at=credential.generated_at,
            expires_at=credential.expires_at,
        )

    # -------------------------------------------------------------------------
    # Operator actions
    # -------------------------------------------------------------------------

    def expire_event_credentials(self, event_id: UUID, actor_id: UUID) -> int:
        """Deactivate every active credential of an event; returns the count."""
        self._authorize(actor_id, "credential.expire_event", None)
        now = self._clock.now()
        credentials = self._session.execute(
            select(Credential)
            .join(AccreditationRequest, Credential.request_id == AccreditationRequest.id)
            .where(
                AccreditationRequest.event_id == event_id,
                Credential.is_active.is_(True),
            )
        ).scalars().all()
        for credential in credentials:
            credential.is_active = False
            if credential.expires_at is None or credential.expires_at > now:
                credential.expires_at = now
        self._session.flush()
        logger.info(
            "event_credentials_expired",
            extra={"event_id": str(event_id), "count": len(credentials)},
        )
        return len(credentials)

    def get_status_report(self) -> CredentialStatusReport:
        return self._selector.status_report()

    def cleanup(
        self,
        actor_id: UUID,
        retention_days: int | None = None,
    ) -> CredentialCleanupResult:
        """Delete orphaned credentials and failed ones past the retention window."""
        self._authorize(actor_id, "credential.cleanup", None)
        days = retention_days if retention_days is not None else self._failed_retention_days
        cutoff = self._clock.now() - timedelta(days=days)

        orphans = self._session.execute(
            select(Credential).where(
                or_(
                    Credential.request_id.is_(None),
                    ~exists().where(AccreditationRequest.id == Credential.request_id),
                )
            )
        ).scalars().all()
        for credential in orphans:
            self.purge_artifacts(credential)
            self._session.delete(credential)
        self._session.flush()

        stale_failed = self._session.execute(
            select(Credential).where(
                Credential.status == CredentialStatus.FAILED.value,
                or_(
                    Credential.last_attempt_at < cutoff,
                    Credential.last_attempt_at.is_(None) & (Credential.created_at < cutoff),
                ),
            )
        ).scalars().all()
        for credential in stale_failed:
            if credential.request is not None:
                credential.request.credential = None
            self._session.delete(credential)
        self._session.flush()

        result = CredentialCleanupResult(
            orphaned_deleted=len(orphans), failed_deleted=len(stale_failed),
        )
        logger.info(
            "credential_cleanup_completed",
            extra={
                "orphaned_deleted": result.orphaned_deleted,
                "failed_deleted": result.failed_deleted,
                "retention_days": days,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _authorize(self, actor_id: UUID, action: str, entity: Any) -> None:
        if not self._gate.can_perform(actor_id, action, entity):
            ref = str(entity.id) if entity is not None else "credentials"
            logger.warning(
                "action_denied",
                extra={"actor_id": str(actor_id), "action": action, "entity": ref},
            )
            raise UnauthorizedActionError(str(actor_id), action, ref)

    def _load(self, credential_id: UUID, for_update: bool = False) -> Credential:
        stmt = select(Credential).where(Credential.id == credential_id)
        if for_update:
            stmt = stmt.with_for_update()
        credential = self._session.execute(stmt).scalar_one_or_none()
        if credential is None:
            raise CredentialNotFoundError(str(credential_id))
        return credential

    def _new_qr_code(self, credential: Credential) -> str:
        suffix = str(credential.uuid).split("-")[0].upper()
        for _ in range(self._qr_attempts):
            token = "".join(secrets.choice(_QR_ALPHABET) for _ in range(12))
            code = f"{self._qr_prefix}_{token}_{suffix}"
            taken = self._session.execute(
                select(Credential.id).where(Credential.qr_code == code)
            ).first()
            if taken is None:
                return code
        raise GenerationFailure(str(credential.id), "could not allocate a unique QR code")

    def _qr_payload(self, qr_code: str) -> str:
        if self._verify_base_url:
            return f"{self._verify_base_url}/{qr_code}"
        return qr_code
