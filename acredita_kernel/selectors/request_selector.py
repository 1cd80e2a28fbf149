"""
Module: acredita_kernel.selectors.request_selector
Responsibility: Read-only request queries used by the bulk orchestrator and
    the operator CLIs.  Dry runs and real runs go through the same methods.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import distinct, func, select

from acredita_kernel.domain.lifecycle import CredentialStatus, RequestStatus
from acredita_kernel.domain.values import AccreditationRequestDTO
from acredita_kernel.models.accreditation import AccreditationRequest
from acredita_kernel.models.credential import Credential
from acredita_kernel.models.reference import Employee, Provider
from acredita_kernel.selectors.base import BaseSelector


class RequestSelector(BaseSelector):
    """Queries over accreditation requests scoped by provider or area."""

    def get(self, request_id: UUID) -> AccreditationRequestDTO | None:
        model = self.session.get(AccreditationRequest, request_id)
        return model.to_dto() if model is not None else None

    def get_by_uuid(self, request_uuid: UUID) -> AccreditationRequestDTO | None:
        model = self.session.execute(
            select(AccreditationRequest).where(AccreditationRequest.uuid == request_uuid)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def active_providers_in_area(self, area_id: UUID) -> list[tuple[UUID, str]]:
        """Active providers of an area as ``(id, name)``, ordered by name."""
        rows = self.session.execute(
            select(Provider.id, Provider.name)
            .where(Provider.area_id == area_id, Provider.active.is_(True))
            .order_by(Provider.name, Provider.id)
        ).all()
        return [(row[0], row[1]) for row in rows]

    def request_ids_for_provider(
        self,
        provider_id: UUID,
        statuses: Iterable[RequestStatus],
    ) -> list[UUID]:
        """Ids of the provider's requests in ``statuses``, oldest first."""
        values = [s.value for s in statuses]
        rows = self.session.execute(
            select(AccreditationRequest.id)
            .join(Employee, AccreditationRequest.employee_id == Employee.id)
            .where(
                Employee.provider_id == provider_id,
                AccreditationRequest.status.in_(values),
            )
            .order_by(AccreditationRequest.created_at, AccreditationRequest.id)
        ).scalars().all()
        return list(rows)

    def count_by_status_for_provider(self, provider_id: UUID) -> dict[RequestStatus, int]:
        rows = self.session.execute(
            select(AccreditationRequest.status, func.count())
            .join(Employee, AccreditationRequest.employee_id == Employee.id)
            .where(Employee.provider_id == provider_id)
            .group_by(AccreditationRequest.status)
        ).all()
        return {RequestStatus(status): count for status, count in rows}

    def count_ready_unprinted_for_provider(self, provider_id: UUID) -> int:
        """Approved requests of the provider whose credential awaits a batch."""
        return self.session.execute(
            select(func.count(Credential.id))
            .join(AccreditationRequest, Credential.request_id == AccreditationRequest.id)
            .join(Employee, AccreditationRequest.employee_id == Employee.id)
            .where(
                Employee.provider_id == provider_id,
                AccreditationRequest.status == RequestStatus.APPROVED.value,
                Credential.status == CredentialStatus.READY.value,
                Credential.is_active.is_(True),
                Credential.print_batch_id.is_(None),
            )
        ).scalar_one()

    def event_ids_for_provider(
        self,
        provider_id: UUID,
        statuses: Iterable[RequestStatus] = (RequestStatus.APPROVED,),
    ) -> list[UUID]:
        values = [s.value for s in statuses]
        rows = self.session.execute(
            select(distinct(AccreditationRequest.event_id))
            .join(Employee, AccreditationRequest.employee_id == Employee.id)
            .where(
                Employee.provider_id == provider_id,
                AccreditationRequest.status.in_(values),
            )
        ).scalars().all()
        return sorted(rows, key=str)
