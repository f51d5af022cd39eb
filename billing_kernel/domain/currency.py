"""Currency -- ISO 4217 registry and precision-derived rounding."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, e.g. Decimal("0.01") for USD."""
        return Decimal(10) ** -self.decimal_places


class CurrencyRegistry:
    """Registry of the ISO 4217 currencies rent can be billed in."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "AUD": CurrencyInfo("AUD", 2, "Australian Dollar"),
        "NZD": CurrencyInfo("NZD", 2, "New Zealand Dollar"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "MXN": CurrencyInfo("MXN", 2, "Mexican Peso"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        "ZAR": CurrencyInfo("ZAR", 2, "South African Rand"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
        "KWD": CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        "BHD": CurrencyInfo("BHD", 3, "Bahraini Dinar"),
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return code in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(code)

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Decimal places for ``code``; unknown codes default to 2."""
        info = cls._CURRENCIES.get(code)
        return info.decimal_places if info else 2
