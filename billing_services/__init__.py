"""
billing_services -- the imperative shell of the billing system.

Services take a caller-owned SQLAlchemy session (through the stores),
flush, and never commit.  ``build_billing_services`` wires a full set.
"""

from billing_services.gateway import (
    ChargeOutcome,
    ChargeResult,
    GatewayErrorInfo,
    PaymentGateway,
    classify_gateway_error,
    requires_immediate_attention,
    should_retry_payment,
)
from billing_services.invoice_ledger import InvoiceLedger, LedgerApplication
from billing_services.notifications import LoggingNotifier, Notifier, SafeNotifier
from billing_services.payment_linking import (
    AllocationFailure,
    LinkingOutcome,
    ManualPaymentRequest,
    OutstandingBalanceReport,
    OutstandingInvoice,
    PaymentApplication,
    PaymentLinkingResult,
    PaymentLinkingService,
    ReversalResult,
)
from billing_services.payment_service import CorePaymentService, PaymentProcessingResult
from billing_services.payment_state_machine import PaymentStateMachine
from billing_services.wiring import BillingServices, build_billing_services

__all__ = [
    "AllocationFailure",
    "BillingServices",
    "ChargeOutcome",
    "ChargeResult",
    "CorePaymentService",
    "GatewayErrorInfo",
    "InvoiceLedger",
    "LedgerApplication",
    "LinkingOutcome",
    "LoggingNotifier",
    "ManualPaymentRequest",
    "Notifier",
    "OutstandingBalanceReport",
    "OutstandingInvoice",
    "PaymentApplication",
    "PaymentGateway",
    "PaymentLinkingResult",
    "PaymentLinkingService",
    "PaymentProcessingResult",
    "PaymentStateMachine",
    "ReversalResult",
    "SafeNotifier",
    "build_billing_services",
    "classify_gateway_error",
    "requires_immediate_attention",
    "should_retry_payment",
]
