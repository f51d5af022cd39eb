"""
Pytest fixtures for the billing kernel test suite.

Provides:
- In-memory SQLite sessions (one fresh database per test)
- Deterministic clock, fake gateway and recording notifier
- Factories for leases, invoices and payments

Every test gets its own engine, so nothing leaks between tests.  The
SQLite engine runs with SAVEPOINT support, which the per-invoice
allocation steps rely on.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from billing_config import parse_configuration
from billing_config.schema import BillingConfiguration
from billing_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.dtos import (
    Invoice,
    InvoiceStatus,
    Lease,
    Payment,
    PaymentDraft,
    PaymentStatus,
)
from billing_kernel.exceptions import GatewayError
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_services.gateway import ChargeOutcome, ChargeResult
from billing_services.wiring import BillingServices, build_billing_services


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, services):
            services.linking.apply_payment_to_invoices(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_allocation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@contextmanager
def fresh_session() -> Iterator[Session]:
    """Brand-new in-memory database and a session on it."""
    init_engine_from_url("sqlite://")
    create_tables()
    session = get_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        reset_engine()


@pytest.fixture
def session() -> Iterator[Session]:
    with fresh_session() as s:
        yield s


@pytest.fixture
def session_maker():
    """
    The ``fresh_session`` context manager itself.

    Hypothesis tests open one database per generated example, since a
    function-scoped session would be shared across examples.
    """
    return fresh_session


# =============================================================================
# Clock, configuration, collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


TEST_CONFIG = {
    "config_id": "test",
    "version": 1,
    "settings": {
        "database_url": "sqlite://",
        "currency": "USD",
        "auto_apply_on_success": True,
        "max_payment_retries": 3,
    },
    "late_fees": {
        "default": {
            "enabled": True,
            "grace_period_days": 5,
            "fee_structure": {"type": "fixed", "amount": "25.00"},
        },
    },
}


@pytest.fixture
def billing_configuration() -> BillingConfiguration:
    return parse_configuration(TEST_CONFIG)


class FakeGateway:
    """Scripted gateway: returns queued results, or raises queued errors."""

    def __init__(self):
        self.responses: list[ChargeResult | GatewayError] = []
        self.charges: list[dict] = []

    def succeed(self, reference: str = "ch_test_1") -> None:
        self.responses.append(ChargeResult(ChargeOutcome.SUCCEEDED, reference=reference))

    def decline(self, message: str = "Card declined") -> None:
        self.responses.append(ChargeResult(ChargeOutcome.FAILED, failure_message=message))

    def require_action(self, reference: str = "pi_test_1") -> None:
        self.responses.append(ChargeResult(ChargeOutcome.REQUIRES_ACTION, reference=reference))

    def fail_with(self, error: GatewayError) -> None:
        self.responses.append(error)

    def charge(self, payment_id, payment_method_id, amount, currency) -> ChargeResult:
        self.charges.append({
            "payment_id": payment_id,
            "payment_method_id": payment_method_id,
            "amount": amount,
            "currency": currency,
        })
        response = self.responses.pop(0)
        if isinstance(response, GatewayError):
            raise response
        return response


class RecordingNotifier:
    """Keeps every notification for assertions."""

    def __init__(self):
        self.sent: list[tuple] = []

    def notify_late_fee(self, payment_id, amount) -> None:
        self.sent.append(("late_fee", payment_id, amount))

    def notify_payment_failure(self, payment_id, reason) -> None:
        self.sent.append(("payment_failure", payment_id, reason))

    def notify_payment_confirmation(self, payment_id) -> None:
        self.sent.append(("payment_confirmation", payment_id))

    def kinds(self) -> list[str]:
        return [n[0] for n in self.sent]


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(
    session, deterministic_clock, fake_gateway, notifier, billing_configuration,
) -> BillingServices:
    return build_billing_services(
        session,
        clock=deterministic_clock,
        gateway=fake_gateway,
        notifier=notifier,
        configuration=billing_configuration,
    )


# =============================================================================
# Test data factories
# =============================================================================


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def property_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_lease(services, tenant_id, property_id):
    def _make(
        monthly_rent: str = "1500.00",
        start_date: date = date(2024, 1, 1),
        tenant: UUID | None = None,
    ) -> Lease:
        return services.lease_store.create_lease(
            tenant_id=tenant or tenant_id,
            property_id=property_id,
            monthly_rent=Decimal(monthly_rent),
            start_date=start_date,
        )
    return _make


@pytest.fixture
def make_invoice(services, tenant_id, property_id):
    counter = iter(range(1, 10_000))

    def _make(
        total: str = "100.00",
        due_date: date = date(2024, 1, 1),
        invoice_number: str | None = None,
        tenant: UUID | None = None,
        lease_id: UUID | None = None,
        status: InvoiceStatus = InvoiceStatus.ISSUED,
    ) -> Invoice:
        return services.invoice_store.create_invoice(
            tenant_id=tenant or tenant_id,
            property_id=property_id,
            invoice_number=invoice_number or f"INV-{next(counter):04d}",
            due_date=due_date,
            total_amount=Decimal(total),
            lease_id=lease_id,
            status=status,
        )
    return _make


@pytest.fixture
def make_payment(services, tenant_id, property_id):
    """Create a payment, optionally walking it to ``status`` through the workflow."""
    paths = {
        PaymentStatus.PENDING: (),
        PaymentStatus.PROCESSING: (PaymentStatus.PROCESSING,),
        PaymentStatus.PAID: (PaymentStatus.PROCESSING, PaymentStatus.PAID),
        PaymentStatus.FAILED: (PaymentStatus.PROCESSING, PaymentStatus.FAILED),
        PaymentStatus.CANCELLED: (PaymentStatus.CANCELLED,),
        PaymentStatus.OVERDUE: (PaymentStatus.OVERDUE,),
    }

    def _make(
        amount: str = "100.00",
        status: PaymentStatus = PaymentStatus.PAID,
        due_date: date = date(2024, 1, 1),
        tenant: UUID | None = None,
        lease_id: UUID | None = None,
    ) -> Payment:
        payment = services.payment_store.create_payment(PaymentDraft(
            tenant_id=tenant or tenant_id,
            property_id=property_id,
            lease_id=lease_id,
            amount=Decimal(amount),
            payment_method="card",
            due_date=due_date,
        ))
        for step in paths[status]:
            payment = services.state_machine.transition(payment.id, step, "test setup")
        return payment
    return _make
