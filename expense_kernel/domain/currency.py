"""Currency -- ISO 4217 precision registry used to round converted amounts."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str


class CurrencyRegistry:
    """Registry of ISO 4217 currencies with decimal places."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "AUD": CurrencyInfo("AUD", 2, "Australian Dollar"),
        "SGD": CurrencyInfo("SGD", 2, "Singapore Dollar"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
        "BHD": CurrencyInfo("BHD", 3, "Bahraini Dinar"),
        "KWD": CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
    }

    # Unknown codes round to the most common precision.
    _DEFAULT_DECIMAL_PLACES = 2

    @classmethod
    def get(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(code.upper())

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return code.upper() in cls._CURRENCIES

    @classmethod
    def decimal_places(cls, code: str) -> int:
        info = cls.get(code)
        return info.decimal_places if info else cls._DEFAULT_DECIMAL_PLACES

    @classmethod
    def round(cls, amount: Decimal, code: str) -> Decimal:
        """Round ``amount`` half-up to the precision of ``code``."""
        places = cls.decimal_places(code)
        quantum = Decimal(1) if places == 0 else Decimal(1).scaleb(-places)
        return amount.quantize(quantum, rounding=ROUND_HALF_UP)
