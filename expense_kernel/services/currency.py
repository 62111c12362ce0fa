"""
StaticRateConverter -- table-driven CurrencyConverter.

Responsibility:
    Convert amounts between currencies using a fixed table of rates quoted
    against a single pivot currency, rounding the result to the target
    currency's precision.  Live rate retrieval belongs to the surrounding
    system; this converter covers configuration-supplied rates and tests.

Failure modes:
    - CurrencyConversionError when either currency has no rate.  The
      approval service recovers from this by keeping the original amount.
"""

from collections.abc import Mapping
from decimal import Decimal

from expense_kernel.domain.currency import CurrencyRegistry
from expense_kernel.exceptions import CurrencyConversionError


class StaticRateConverter:
    """Converts through a pivot currency.

    ``rates`` maps a currency code to the number of units of that currency
    per one unit of ``pivot``.  The pivot itself is implicitly 1.
    """

    def __init__(self, rates: Mapping[str, Decimal | str | int], pivot: str = "USD"):
        self._pivot = pivot.upper()
        self._rates: dict[str, Decimal] = {self._pivot: Decimal(1)}
        for code, rate in rates.items():
            value = Decimal(str(rate))
            if value <= 0:
                raise ValueError(f"Rate for {code} must be positive, got {value}")
            self._rates[code.upper()] = value

    @property
    def pivot(self) -> str:
        return self._pivot

    def rate(self, from_currency: str, to_currency: str) -> Decimal:
        source = self._rates.get(from_currency.upper())
        target = self._rates.get(to_currency.upper())
        if source is None or target is None:
            missing = from_currency if source is None else to_currency
            raise CurrencyConversionError(
                from_currency, to_currency, f"no rate for {missing.upper()}",
            )
        return target / source

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return amount
        converted = amount * self.rate(from_currency, to_currency)
        return CurrencyRegistry.round(converted, to_currency)
