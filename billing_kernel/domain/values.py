"""
Values -- Immutable, self-validating money value objects.

Responsibility:
    Provides Currency and Money, the fixed-precision types every rent,
    invoice, fee and allocation computation runs on.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other layer.

Invariants enforced:
    - Amounts are Decimal, never float.
    - Currency codes are validated against CurrencyRegistry at construction.
    - Arithmetic and comparison refuse to mix currencies.

Failure modes:
    - ValueError on construction with invalid amounts or currencies.
    - ValueError when arithmetic mixes different currencies.
    - ValidationError from ``require_precision`` when an input carries more
      decimal places than its currency supports.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.exceptions import ValidationError


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - Immutable and hashable.
        - code is always uppercase and registered in CurrencyRegistry.
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if self.code else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise ValueError(f"Invalid ISO 4217 currency code: {self.code}")
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def quantum(self) -> Decimal:
        """Smallest unit of this currency (0.01 for USD)."""
        return Decimal(10) ** -self.decimal_places

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency -- they are never separated.

    Guarantees:
        - amount is always a Decimal (never float).
        - Arithmetic operations enforce the same-currency constraint.

    Non-goals:
        - Does NOT auto-round -- callers must explicitly call .round().
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid amount: {self.amount}") from e

        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """Factory method for creating Money (no float at the call site)."""
        if isinstance(amount, (str, int)):
            amount = Decimal(str(amount))
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    @property
    def is_positive(self) -> bool:
        return self.amount > Decimal("0")

    @property
    def is_negative(self) -> bool:
        return self.amount < Decimal("0")

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to the currency's decimal places (half-up by default)."""
        rounded = self.amount.quantize(self.currency.quantum, rounding=rounding)
        return Money(amount=rounded, currency=self.currency)

    def _check_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount), currency=self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        if isinstance(factor, (int, str)):
            factor = Decimal(str(factor))
        if not isinstance(factor, Decimal):
            return NotImplemented
        return Money(amount=self.amount * factor, currency=self.currency)

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __truediv__(self, divisor: Decimal | int | str) -> Money:
        if isinstance(divisor, (int, str)):
            divisor = Decimal(str(divisor))
        if not isinstance(divisor, Decimal):
            return NotImplemented
        return Money(amount=self.amount / divisor, currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"


def quantize_amount(value: Decimal | int | str, currency: str | Currency = "USD") -> Decimal:
    """Round a raw Decimal half-up to the currency's precision."""
    return Money.of(Decimal(str(value)), currency).round().amount


def require_precision(
    value: Decimal | int | str,
    currency: str | Currency = "USD",
    field: str = "amount",
) -> Decimal:
    """
    Coerce ``value`` to Decimal and reject sub-unit precision.

    Raises:
        ValidationError: If the value is not a number or has more decimal
            places than the currency allows.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(field, f"not a decimal number: {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(field, f"not a finite number: {value!r}")
    quantized = quantize_amount(amount, currency)
    if quantized != amount:
        raise ValidationError(
            field, f"{amount} has more precision than {currency} allows"
        )
    return quantized
