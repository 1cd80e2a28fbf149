"""
Module: acredita_kernel.selectors.print_selector
Responsibility: Deterministic selection of credentials for a print batch.
    Used unchanged for previews (count only), CSV-style exports and actual
    batch creation.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Pure: no side effects; two calls with the same filters and no
      intervening mutation return the same credentials in the same order.
    - Order: area name, provider name, employee last name, employee first
      name, request id.
    - Only ``ready`` and active credentials are selectable.
"""

from __future__ import annotations

from sqlalchemy import Select, func, select

from acredita_kernel.domain.lifecycle import CredentialStatus
from acredita_kernel.domain.values import PrintCandidate, PrintFilters
from acredita_kernel.models.accreditation import AccreditationRequest
from acredita_kernel.models.credential import Credential
from acredita_kernel.models.reference import Area, Employee, Provider
from acredita_kernel.selectors.base import BaseSelector


class PrintSelector(BaseSelector):
    """Read-only credential selection for printing."""

    def _base_query(self, filters: PrintFilters) -> Select:
        stmt = (
            select(
                Credential.id,
                AccreditationRequest.id,
                Credential.print_batch_id,
                Area.name,
                Provider.name,
                Employee.last_name,
                Employee.first_name,
            )
            .join(AccreditationRequest, Credential.request_id == AccreditationRequest.id)
            .join(Employee, AccreditationRequest.employee_id == Employee.id)
            .join(Provider, Employee.provider_id == Provider.id)
            .outerjoin(Area, Provider.area_id == Area.id)
            .where(
                Credential.status == CredentialStatus.READY.value,
                Credential.is_active.is_(True),
                AccreditationRequest.event_id == filters.event_id,
            )
        )
        if filters.only_unprinted:
            stmt = stmt.where(Credential.print_batch_id.is_(None))
        if filters.area_ids:
            stmt = stmt.where(Provider.area_id.in_(filters.area_ids))
        if filters.provider_ids:
            stmt = stmt.where(Employee.provider_id.in_(filters.provider_ids))
        return stmt

    def get_credentials_for_printing(self, filters: PrintFilters) -> tuple[PrintCandidate, ...]:
        stmt = self._base_query(filters).order_by(
            Area.name,
            Provider.name,
            Employee.last_name,
            Employee.first_name,
            AccreditationRequest.id,
        )
        rows = self.session.execute(stmt).all()
        return tuple(
            PrintCandidate(
                credential_id=row[0],
                request_id=row[1],
                print_batch_id=row[2],
                area_name=row[3],
                provider_name=row[4],
                employee_last_name=row[5],
                employee_first_name=row[6],
            )
            for row in rows
        )

    def count_credentials_for_printing(self, filters: PrintFilters) -> int:
        subquery = self._base_query(filters).subquery()
        return self.session.execute(
            select(func.count()).select_from(subquery)
        ).scalar_one()
