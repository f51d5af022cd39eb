"""
Payment gateway adapter contract and failure classification.

Responsibility:
    Defines the narrow contract a card/ACH gateway adapter implements
    (``PaymentGateway.charge``) and the tri-state ``ChargeOutcome`` the
    payment state machine consumes.  Adapter failures arrive as
    ``GatewayError`` and are mapped here to a bounded severity and
    retryability classification.

Architecture position:
    Services -- adapter boundary.  No gateway SDK is imported; concrete
    adapters live outside this package and translate their SDK's errors
    into ``GatewayError(error_type, message, error_code)``.

Invariants enforced:
    - Card errors are non-retryable except CVC/number/zip mismatches,
      processing errors and card rate limits.
    - Authentication errors are critical and never retried.
    - ``should_retry_payment`` never retries a card error and stops at
      ``max_retries`` attempts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol, runtime_checkable
from uuid import UUID

from billing_kernel.exceptions import GatewayError
from billing_kernel.logging_config import get_logger

logger = get_logger("services.gateway")

MAX_PAYMENT_RETRIES = 3


class ChargeOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"


@dataclass(frozen=True)
class ChargeResult:
    """What the adapter reports for one charge attempt."""

    outcome: ChargeOutcome
    reference: str | None = None
    failure_message: str | None = None


@runtime_checkable
class PaymentGateway(Protocol):
    """Charges a stored payment method.  Raises ``GatewayError`` on adapter failure."""

    def charge(
        self,
        payment_id: UUID,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
    ) -> ChargeResult: ...


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class GatewayErrorInfo:
    """Classified gateway failure."""

    code: str
    message: str
    user_message: str
    error_type: str
    retryable: bool
    severity: ErrorSeverity


# code -> (message, user_message, retryable)
_CARD_ERRORS: dict[str, tuple[str, str, bool]] = {
    "card_declined": (
        "Your card was declined",
        "Your card was declined. Please try a different payment method or contact your bank.",
        False,
    ),
    "insufficient_funds": (
        "Your card has insufficient funds",
        "Your card has insufficient funds. Please try a different payment method.",
        False,
    ),
    "expired_card": (
        "Your card has expired",
        "Your card has expired. Please use a different payment method.",
        False,
    ),
    "incorrect_cvc": (
        "Your card's security code is incorrect",
        "Your card's security code (CVC) is incorrect. Please check and try again.",
        True,
    ),
    "incorrect_number": (
        "Your card number is incorrect",
        "Your card number is incorrect. Please check and try again.",
        True,
    ),
    "incorrect_zip": (
        "Your card's zip code failed validation",
        "Your billing zip code is incorrect. Please check and try again.",
        True,
    ),
}


def _classify_card_error(error: GatewayError) -> GatewayErrorInfo:
    match error.error_code:
        case "processing_error":
            return GatewayErrorInfo(
                code="processing_error",
                message="An error occurred while processing your card",
                user_message=(
                    "We couldn't process your payment. Please try again or use "
                    "a different payment method."
                ),
                error_type="card_error",
                retryable=True,
                severity=ErrorSeverity.MEDIUM,
            )
        case "rate_limit":
            return GatewayErrorInfo(
                code="rate_limit",
                message="You have exceeded the rate limit",
                user_message="Too many payment attempts. Please wait a moment and try again.",
                error_type="rate_limit_error",
                retryable=True,
                severity=ErrorSeverity.LOW,
            )
        case code if code in _CARD_ERRORS:
            message, user_message, retryable = _CARD_ERRORS[code]
            return GatewayErrorInfo(
                code=code,
                message=message,
                user_message=user_message,
                error_type="card_error",
                retryable=retryable,
                severity=ErrorSeverity.LOW,
            )
        case _:
            return GatewayErrorInfo(
                code=error.error_code or "card_error",
                message=error.message,
                user_message=(
                    "There was an issue with your payment method. Please try again "
                    "or use a different card."
                ),
                error_type="card_error",
                retryable=False,
                severity=ErrorSeverity.LOW,
            )


def classify_gateway_error(error: GatewayError) -> GatewayErrorInfo:
    """Map an adapter failure to code, user message, retryability and severity."""
    match error.error_type:
        case "card_error":
            return _classify_card_error(error)
        case "rate_limit_error":
            return GatewayErrorInfo(
                code="rate_limit_exceeded",
                message="Too many requests made to the API too quickly",
                user_message="We're experiencing high traffic. Please wait a moment and try again.",
                error_type="rate_limit_error",
                retryable=True,
                severity=ErrorSeverity.MEDIUM,
            )
        case "invalid_request_error":
            return GatewayErrorInfo(
                code="invalid_request",
                message=error.message,
                user_message=(
                    "There was an issue with your payment information. "
                    "Please check and try again."
                ),
                error_type="validation_error",
                retryable=False,
                severity=ErrorSeverity.LOW,
            )
        case "api_error":
            return GatewayErrorInfo(
                code="api_error",
                message="An error occurred with our payment processor",
                user_message="We're experiencing technical difficulties. Please try again later.",
                error_type="api_error",
                retryable=True,
                severity=ErrorSeverity.HIGH,
            )
        case "connection_error" | "network_error":
            return GatewayErrorInfo(
                code=error.error_type,
                message="Network communication with the payment processor failed",
                user_message=(
                    "Connection issue detected. Please check your internet "
                    "connection and try again."
                ),
                error_type="api_error",
                retryable=True,
                severity=ErrorSeverity.MEDIUM,
            )
        case "authentication_error":
            return GatewayErrorInfo(
                code="authentication_error",
                message="Authentication with the payment processor failed",
                user_message="Payment processing is temporarily unavailable. Please contact support.",
                error_type="authentication_error",
                retryable=False,
                severity=ErrorSeverity.CRITICAL,
            )
        case "validation_error":
            return GatewayErrorInfo(
                code="validation_error",
                message=error.message,
                user_message="Please check your payment information and try again.",
                error_type="validation_error",
                retryable=False,
                severity=ErrorSeverity.LOW,
            )
        case _:
            return GatewayErrorInfo(
                code=error.error_code or "gateway_error",
                message=error.message,
                user_message="Payment processing failed. Please try again or contact support.",
                error_type="unknown",
                retryable=False,
                severity=ErrorSeverity.MEDIUM,
            )


_SEVERITY_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


def log_gateway_error(info: GatewayErrorInfo, payment_id: UUID | None = None) -> None:
    logger.log(
        _SEVERITY_LEVELS[info.severity],
        "gateway_error_classified",
        extra={
            "payment_id": str(payment_id) if payment_id else None,
            "error_code": info.code,
            "error_type": info.error_type,
            "severity": info.severity.value,
            "retryable": info.retryable,
        },
    )


def should_retry_payment(
    info: GatewayErrorInfo,
    attempt_count: int,
    max_retries: int = MAX_PAYMENT_RETRIES,
) -> bool:
    """Retry only retryable non-card failures, at most ``max_retries`` attempts."""
    if attempt_count >= max_retries:
        return False
    return info.retryable and info.error_type != "card_error"


def requires_immediate_attention(info: GatewayErrorInfo) -> bool:
    return (
        info.severity == ErrorSeverity.CRITICAL
        or info.error_type == "authentication_error"
    )
