"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingError:

    BillingError (base)
    |
    +-- ValidationError
    |   +-- PropertyResolutionError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- LeaseNotFoundError
    |
    +-- InvalidTransitionError
    |
    +-- AllocationError
    |   +-- InsufficientInvoiceBalanceError
    |
    +-- ConcurrencyError
    |   +-- AllocationConflictError
    |   +-- PaymentConflictError
    |
    +-- GatewayError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Kind               | Code                          | Retryable | When Raised
-------------------|-------------------------------|-----------|------------------------------
validation         | VALIDATION_ERROR              | no        | Malformed input
resolution         | PROPERTY_RESOLUTION_FAILED    | no        | No property/lease context
not_found          | INVOICE_NOT_FOUND             | no        | Invoice id doesn't exist
                   | PAYMENT_NOT_FOUND             | no        | Payment id doesn't exist
                   | LEASE_NOT_FOUND               | no        | Lease id doesn't exist
invalid_transition | INVALID_PAYMENT_TRANSITION    | no        | Status pair not in workflow
allocation         | ALLOCATION_ERROR              | no        | Amount exceeds invoice balance
                   | INSUFFICIENT_INVOICE_BALANCE  | no        | Direct single-invoice overflow
conflict           | ALLOCATION_CONFLICT           | yes       | Invoice changed under us
                   | PAYMENT_CONFLICT              | yes       | Payment status changed under us
gateway            | GATEWAY_ERROR                 | varies    | Classified gateway failure

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Per-invoice failures inside a multi-invoice allocation are caught as
   BillingError, recorded on the result and the loop continues.

2. ConcurrencyError subclasses are retryable: re-read and try again.

    try:
        linking.apply_payment_to_single_invoice(payment_id, invoice_id, amount)
    except AllocationConflictError as e:
        retry_with_fresh_data(e.invoice_id)

3. Everything else surfaces immediately to the caller.
"""

from decimal import Decimal
from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of error categories exposed to callers."""

    VALIDATION = "validation"
    RESOLUTION = "resolution"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    ALLOCATION = "allocation"
    CONFLICT = "conflict"
    GATEWAY = "gateway"


class BillingError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification, an ``kind`` from ErrorKind and a ``retryable`` flag.
    """

    code: str = "BILLING_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False


# Validation


class ValidationError(BillingError):
    """Malformed input (non-positive amount, missing required id)."""

    code: str = "VALIDATION_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class PropertyResolutionError(ValidationError):
    """No property (or lease) context could be derived for a payment."""

    code: str = "PROPERTY_RESOLUTION_FAILED"
    kind: ErrorKind = ErrorKind.RESOLUTION

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(
            "property_id",
            "could not be resolved. Provide lease_id or specific_invoice_id.",
        )


# Lookups


class NotFoundError(BillingError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"
    kind: ErrorKind = ErrorKind.NOT_FOUND


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class PaymentNotFoundError(NotFoundError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class LeaseNotFoundError(NotFoundError):
    """Lease with given ID was not found."""

    code: str = "LEASE_NOT_FOUND"

    def __init__(self, lease_id: str):
        self.lease_id = lease_id
        super().__init__(f"Lease not found: {lease_id}")


# Payment status


class InvalidTransitionError(BillingError):
    """Payment status transition is not in the payment workflow."""

    code: str = "INVALID_PAYMENT_TRANSITION"
    kind: ErrorKind = ErrorKind.INVALID_TRANSITION

    def __init__(self, payment_id: str, from_status: str, to_status: str):
        self.payment_id = payment_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid status transition from {from_status} to {to_status} "
            f"for payment {payment_id}"
        )


# Allocation


class AllocationError(BillingError):
    """An invoice cannot accept the requested amount."""

    code: str = "ALLOCATION_ERROR"
    kind: ErrorKind = ErrorKind.ALLOCATION

    def __init__(self, invoice_id: str, reason: str, amount: Decimal | None = None):
        self.invoice_id = invoice_id
        self.reason = reason
        self.amount = amount
        super().__init__(f"Cannot allocate to invoice {invoice_id}: {reason}")


class InsufficientInvoiceBalanceError(AllocationError):
    """Direct allocation exceeds the invoice's remaining balance."""

    code: str = "INSUFFICIENT_INVOICE_BALANCE"

    def __init__(self, invoice_id: str, amount: Decimal, balance_remaining: Decimal):
        self.balance_remaining = balance_remaining
        super().__init__(
            invoice_id,
            f"payment amount {amount} exceeds invoice balance {balance_remaining}",
            amount=amount,
        )


# Concurrency


class ConcurrencyError(BillingError):
    """Base exception for concurrent-modification races."""

    code: str = "CONCURRENCY_ERROR"
    kind: ErrorKind = ErrorKind.CONFLICT
    retryable: bool = True


class AllocationConflictError(ConcurrencyError):
    """Invoice balance changed between read and compare-and-set."""

    code: str = "ALLOCATION_CONFLICT"

    def __init__(self, invoice_id: str, expected_version: int):
        self.invoice_id = invoice_id
        self.expected_version = expected_version
        super().__init__(
            f"Allocation conflict on invoice {invoice_id}: "
            f"version {expected_version} was modified by another transaction"
        )


class PaymentConflictError(ConcurrencyError):
    """Payment status changed between read and compare-and-set."""

    code: str = "PAYMENT_CONFLICT"

    def __init__(self, payment_id: str, expected_status: str):
        self.payment_id = payment_id
        self.expected_status = expected_status
        super().__init__(
            f"Payment {payment_id} is no longer {expected_status}: "
            "status was modified by another transaction"
        )


# Gateway


class GatewayError(BillingError):
    """
    A charge attempt failed inside the payment gateway adapter.

    ``error_type`` and ``error_code`` are gateway-neutral strings
    (``card_error`` / ``incorrect_cvc`` ...) that the classifier in
    ``billing_services.gateway`` maps to severity and retryability.
    """

    code: str = "GATEWAY_ERROR"
    kind: ErrorKind = ErrorKind.GATEWAY

    def __init__(self, error_type: str, message: str, error_code: str | None = None):
        self.error_type = error_type
        self.error_code = error_code
        self.message = message
        super().__init__(f"Gateway {error_type}: {message}")
