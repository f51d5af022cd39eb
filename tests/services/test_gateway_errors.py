"""Tests for gateway error classification and retry policy."""

import pytest

from billing_kernel.exceptions import GatewayError
from billing_services.gateway import (
    ErrorSeverity,
    classify_gateway_error,
    requires_immediate_attention,
    should_retry_payment,
)


class TestCardErrors:

    @pytest.mark.parametrize("code", ["card_declined", "insufficient_funds", "expired_card"])
    def test_terminal_card_errors(self, code):
        info = classify_gateway_error(GatewayError("card_error", "x", error_code=code))
        assert info.code == code
        assert info.error_type == "card_error"
        assert not info.retryable
        assert info.severity == ErrorSeverity.LOW

    @pytest.mark.parametrize("code", ["incorrect_cvc", "incorrect_number", "incorrect_zip"])
    def test_correctable_card_errors(self, code):
        info = classify_gateway_error(GatewayError("card_error", "x", error_code=code))
        assert info.retryable

    def test_processing_error(self):
        info = classify_gateway_error(
            GatewayError("card_error", "x", error_code="processing_error")
        )
        assert info.retryable
        assert info.severity == ErrorSeverity.MEDIUM

    def test_unknown_card_code_keeps_gateway_message(self):
        info = classify_gateway_error(
            GatewayError("card_error", "Card velocity exceeded", error_code="card_velocity_exceeded")
        )
        assert info.code == "card_velocity_exceeded"
        assert info.message == "Card velocity exceeded"
        assert not info.retryable


class TestOtherErrors:

    @pytest.mark.parametrize("error_type,code,retryable,severity", [
        ("rate_limit_error", "rate_limit_exceeded", True, ErrorSeverity.MEDIUM),
        ("invalid_request_error", "invalid_request", False, ErrorSeverity.LOW),
        ("api_error", "api_error", True, ErrorSeverity.HIGH),
        ("connection_error", "connection_error", True, ErrorSeverity.MEDIUM),
        ("network_error", "network_error", True, ErrorSeverity.MEDIUM),
        ("authentication_error", "authentication_error", False, ErrorSeverity.CRITICAL),
        ("validation_error", "validation_error", False, ErrorSeverity.LOW),
    ])
    def test_classification(self, error_type, code, retryable, severity):
        info = classify_gateway_error(GatewayError(error_type, "boom"))
        assert info.code == code
        assert info.retryable is retryable
        assert info.severity == severity

    def test_unknown_type(self):
        info = classify_gateway_error(GatewayError("mystery", "boom", error_code="E42"))
        assert info.code == "E42"
        assert info.error_type == "unknown"
        assert not info.retryable


class TestRetryPolicy:

    def test_card_errors_never_retried(self):
        info = classify_gateway_error(
            GatewayError("card_error", "x", error_code="incorrect_cvc")
        )
        assert not should_retry_payment(info, attempt_count=1)

    def test_transient_errors_retried_until_limit(self):
        info = classify_gateway_error(GatewayError("api_error", "x"))
        assert should_retry_payment(info, attempt_count=2)
        assert not should_retry_payment(info, attempt_count=3)
        assert should_retry_payment(info, attempt_count=3, max_retries=5)

    def test_authentication_needs_attention(self):
        auth = classify_gateway_error(GatewayError("authentication_error", "bad key"))
        api = classify_gateway_error(GatewayError("api_error", "x"))
        assert requires_immediate_attention(auth)
        assert not requires_immediate_attention(api)
