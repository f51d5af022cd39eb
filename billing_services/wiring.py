"""
Service wiring.

``build_billing_services`` assembles the stores, ledger, state machine,
linking orchestrator and payment facade around one caller-owned session.
Build a fresh set per transaction; nothing here holds global state.

Usage:
    with session_scope() as session:
        services = build_billing_services(session, gateway=gateway)
        services.linking.apply_payment_to_invoices(payment_id, tenant_id, amount)
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from billing_config import ConfiguredFeeConfigProvider, get_active_config
from billing_config.schema import BillingConfiguration
from billing_kernel.db.unit_of_work import UnitOfWork
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.stores.base import FeeConfigProvider
from billing_kernel.stores.invoice_store import SqlInvoiceStore
from billing_kernel.stores.lease_store import SqlLeaseStore
from billing_kernel.stores.payment_store import SqlPaymentStore
from billing_services.gateway import PaymentGateway
from billing_services.invoice_ledger import InvoiceLedger
from billing_services.notifications import Notifier
from billing_services.payment_linking import PaymentLinkingService
from billing_services.payment_service import CorePaymentService
from billing_services.payment_state_machine import PaymentStateMachine


@dataclass(frozen=True)
class BillingServices:
    invoice_store: SqlInvoiceStore
    payment_store: SqlPaymentStore
    lease_store: SqlLeaseStore
    ledger: InvoiceLedger
    state_machine: PaymentStateMachine
    linking: PaymentLinkingService
    payments: CorePaymentService


def build_billing_services(
    session: Session,
    *,
    clock: Clock | None = None,
    gateway: PaymentGateway | None = None,
    notifier: Notifier | None = None,
    fee_config_provider: FeeConfigProvider | None = None,
    configuration: BillingConfiguration | None = None,
) -> BillingServices:
    """Wire every billing service onto ``session``."""
    clock = clock or SystemClock()
    configuration = configuration or get_active_config()
    fee_config_provider = fee_config_provider or ConfiguredFeeConfigProvider(configuration)

    invoice_store = SqlInvoiceStore(session)
    payment_store = SqlPaymentStore(session)
    lease_store = SqlLeaseStore(session)

    ledger = InvoiceLedger(invoice_store)
    state_machine = PaymentStateMachine(payment_store, clock=clock)
    linking = PaymentLinkingService(
        invoice_store=invoice_store,
        payment_store=payment_store,
        lease_store=lease_store,
        ledger=ledger,
        state_machine=state_machine,
        unit_of_work=UnitOfWork(session),
        clock=clock,
    )
    payments = CorePaymentService(
        payment_store=payment_store,
        invoice_store=invoice_store,
        state_machine=state_machine,
        fee_config_provider=fee_config_provider,
        gateway=gateway,
        notifier=notifier,
        linking=linking,
        clock=clock,
        auto_apply_on_success=configuration.settings.auto_apply_on_success,
        max_payment_retries=configuration.settings.max_payment_retries,
    )
    return BillingServices(
        invoice_store=invoice_store,
        payment_store=payment_store,
        lease_store=lease_store,
        ledger=ledger,
        state_machine=state_machine,
        linking=linking,
        payments=payments,
    )
