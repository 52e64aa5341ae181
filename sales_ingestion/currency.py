"""Payment currency conversion into the canonical settlement unit."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

CANONICAL_PLACES = 4
FIAT_PLACES = 2


def round_price(value: float, places: int) -> float:
    """Round half-up to a fixed number of decimal places."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CurrencyTable:
    """Fixed exchange rates from token code to canonical units."""

    canonical_code: str = "XCH"
    rates: Mapping[str, float] = field(default_factory=dict)

    def is_known(self, code: str) -> bool:
        return code == self.canonical_code or code in self.rates

    def to_canonical(self, amount: float, code: str) -> float | None:
        """Convert an amount into canonical units, or None for unknown codes."""
        if code == self.canonical_code:
            return amount
        rate = self.rates.get(code)
        if rate is None:
            return None
        return amount * rate


def to_fiat(canonical_amount: float, fiat_rate: float) -> float:
    """Convert canonical units to fiat and round to cents."""
    return round_price(canonical_amount * fiat_rate, FIAT_PLACES)
