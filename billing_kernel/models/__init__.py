"""ORM models.  Importing this package registers every table on ``Base.metadata``."""

from billing_kernel.models.invoice import InvoiceModel, InvoicePaymentLinkModel
from billing_kernel.models.lease import LeaseModel
from billing_kernel.models.payment import (
    PaymentAllocationModel,
    PaymentAuditEntryModel,
    PaymentModel,
)

__all__ = [
    "InvoiceModel",
    "InvoicePaymentLinkModel",
    "LeaseModel",
    "PaymentAllocationModel",
    "PaymentAuditEntryModel",
    "PaymentModel",
]
