"""
Notifier contract and adapters.

Notifications are fire-and-forget: a notifier that raises must never fail
the billing operation that triggered it.  Services hold a ``SafeNotifier``
that logs and drops delivery errors.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from billing_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@runtime_checkable
class Notifier(Protocol):
    """Outbound tenant notifications."""

    def notify_late_fee(self, payment_id: UUID, amount: Decimal) -> None: ...

    def notify_payment_failure(self, payment_id: UUID, reason: str) -> None: ...

    def notify_payment_confirmation(self, payment_id: UUID) -> None: ...


class LoggingNotifier:
    """Records notifications in the structured log instead of sending them."""

    def notify_late_fee(self, payment_id: UUID, amount: Decimal) -> None:
        logger.info("notification_late_fee", extra={
            "payment_id": str(payment_id), "amount": str(amount),
        })

    def notify_payment_failure(self, payment_id: UUID, reason: str) -> None:
        logger.info("notification_payment_failure", extra={
            "payment_id": str(payment_id), "reason": reason,
        })

    def notify_payment_confirmation(self, payment_id: UUID) -> None:
        logger.info("notification_payment_confirmation", extra={
            "payment_id": str(payment_id),
        })


class SafeNotifier:
    """Wraps a ``Notifier`` so delivery errors are logged, never raised."""

    def __init__(self, inner: Notifier):
        self._inner = inner

    def notify_late_fee(self, payment_id: UUID, amount: Decimal) -> None:
        try:
            self._inner.notify_late_fee(payment_id, amount)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"payment_id": str(payment_id), "notification": "late_fee"},
                exc_info=True,
            )

    def notify_payment_failure(self, payment_id: UUID, reason: str) -> None:
        try:
            self._inner.notify_payment_failure(payment_id, reason)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"payment_id": str(payment_id), "notification": "payment_failure"},
                exc_info=True,
            )

    def notify_payment_confirmation(self, payment_id: UUID) -> None:
        try:
            self._inner.notify_payment_confirmation(payment_id)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"payment_id": str(payment_id), "notification": "payment_confirmation"},
                exc_info=True,
            )
