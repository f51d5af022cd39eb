"""SqlLeaseStore -- SQLAlchemy implementation of ``LeaseStore``."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_kernel.domain.dtos import Lease
from billing_kernel.models.lease import LeaseModel
from billing_kernel.stores.base import BaseStore


class SqlLeaseStore(BaseStore):
    """Lease persistence over the caller's session."""

    def get_lease(self, lease_id: UUID) -> Lease | None:
        model = self.session.get(LeaseModel, lease_id)
        return model.to_dto() if model is not None else None

    def create_lease(
        self,
        tenant_id: UUID,
        property_id: UUID,
        monthly_rent: Decimal,
        start_date: date,
        end_date: date | None = None,
        currency: str = "USD",
    ) -> Lease:
        model = LeaseModel(
            tenant_id=tenant_id,
            property_id=property_id,
            monthly_rent=monthly_rent,
            currency=currency,
            start_date=start_date,
            end_date=end_date,
        )
        self.session.add(model)
        self.session.flush()
        return model.to_dto()
