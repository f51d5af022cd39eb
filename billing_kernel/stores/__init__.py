"""Persistence contracts and their SQLAlchemy implementations."""

from billing_kernel.stores.base import (
    BaseStore,
    FeeConfigProvider,
    InvoiceStore,
    LeaseStore,
    PaymentStore,
)
from billing_kernel.stores.invoice_store import SqlInvoiceStore
from billing_kernel.stores.lease_store import SqlLeaseStore
from billing_kernel.stores.payment_store import SqlPaymentStore

__all__ = [
    "BaseStore",
    "FeeConfigProvider",
    "InvoiceStore",
    "LeaseStore",
    "PaymentStore",
    "SqlInvoiceStore",
    "SqlLeaseStore",
    "SqlPaymentStore",
]
