"""
Module: acredita_kernel.selectors.credential_selector
Responsibility: Read-only credential queries: status aggregation for the
    operator report, readiness counts for the orchestrator's poll, and
    lookups by QR code.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select

from acredita_kernel.domain.lifecycle import CredentialStatus
from acredita_kernel.domain.values import (
    CredentialDTO,
    CredentialStatusReport,
    FailedCredentialSummary,
)
from acredita_kernel.models.accreditation import AccreditationRequest
from acredita_kernel.models.credential import Credential
from acredita_kernel.selectors.base import BaseSelector


class CredentialSelector(BaseSelector):

    def get(self, credential_id: UUID) -> CredentialDTO | None:
        model = self.session.get(Credential, credential_id)
        return model.to_dto() if model is not None else None

    def get_for_request(self, request_id: UUID) -> CredentialDTO | None:
        model = self.session.execute(
            select(Credential).where(Credential.request_id == request_id)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def find_by_qr_code(self, qr_code: str) -> Credential | None:
        """ORM lookup used by verification (needs the request relationship)."""
        return self.session.execute(
            select(Credential).where(Credential.qr_code == qr_code)
        ).scalar_one_or_none()

    def status_counts(self) -> dict[CredentialStatus, int]:
        rows = self.session.execute(
            select(Credential.status, func.count()).group_by(Credential.status)
        ).all()
        counts = {status: 0 for status in CredentialStatus}
        for status, count in rows:
            counts[CredentialStatus(status)] = count
        return counts

    def repeatedly_failed(self, min_retries: int = 2) -> tuple[FailedCredentialSummary, ...]:
        """Failed credentials that have failed at least ``min_retries`` times."""
        rows = self.session.execute(
            select(
                Credential.id,
                AccreditationRequest.uuid,
                Credential.retry_count,
                Credential.error_message,
            )
            .join(AccreditationRequest, Credential.request_id == AccreditationRequest.id)
            .where(
                Credential.status == CredentialStatus.FAILED.value,
                Credential.retry_count >= min_retries,
            )
            .order_by(Credential.retry_count.desc(), Credential.id)
        ).all()
        return tuple(
            FailedCredentialSummary(
                credential_id=row[0],
                request_uuid=row[1],
                retry_count=row[2],
                error_message=row[3],
            )
            for row in rows
        )

    def status_report(self) -> CredentialStatusReport:
        return CredentialStatusReport(
            counts=self.status_counts(),
            repeatedly_failed=self.repeatedly_failed(),
        )

    def count_ready_for_requests(self, request_ids: Sequence[UUID]) -> int:
        if not request_ids:
            return 0
        return self.session.execute(
            select(func.count(Credential.id)).where(
                Credential.request_id.in_(list(request_ids)),
                Credential.status == CredentialStatus.READY.value,
            )
        ).scalar_one()

    def failed_credential_ids(self) -> list[UUID]:
        return list(
            self.session.execute(
                select(Credential.id)
                .where(Credential.status == CredentialStatus.FAILED.value)
                .order_by(Credential.id)
            ).scalars().all()
        )
