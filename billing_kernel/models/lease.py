"""Lease ORM model: the tenant/property context payments resolve against."""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.dtos import Lease
from billing_kernel.domain.values import quantize_amount


class LeaseModel(TrackedBase):
    """ORM model for leases."""

    __tablename__ = "leases"

    __table_args__ = (
        Index("idx_leases_tenant_id", "tenant_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    property_id: Mapped[UUID] = mapped_column(nullable=False)
    monthly_rent: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date | None] = mapped_column(nullable=True)

    def to_dto(self) -> Lease:
        """Convert ORM model to frozen dataclass."""
        return Lease(
            id=self.id,
            tenant_id=self.tenant_id,
            property_id=self.property_id,
            monthly_rent=quantize_amount(self.monthly_rent, self.currency),
            start_date=self.start_date,
            end_date=self.end_date,
            currency=self.currency,
        )

    @classmethod
    def from_dto(cls, dto: Lease) -> "LeaseModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            property_id=dto.property_id,
            monthly_rent=dto.monthly_rent,
            currency=dto.currency,
            start_date=dto.start_date,
            end_date=dto.end_date,
        )
