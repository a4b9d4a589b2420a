"""
Checkout pricing.

Total = vehicle price + sum(selected extras), rounded half-up to cents.
Gateways take integer minor units, so ``to_minor_units`` is the only
place a ``Decimal`` becomes an ``int``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class Extra:
    code: str
    price: Decimal


@dataclass(frozen=True)
class Quote:
    vehicle_price: Decimal
    extras: tuple[Extra, ...] = field(default_factory=tuple)

    @property
    def total(self) -> Decimal:
        return compute_total(self.vehicle_price, self.extras)


def compute_total(vehicle_price: Decimal, extras: Iterable[Extra] = ()) -> Decimal:
    total = Decimal(vehicle_price) + sum(
        (Decimal(e.price) for e in extras), Decimal("0")
    )
    if total < 0:
        raise ValueError("Checkout total cannot be negative")
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    return int((amount.quantize(CENTS, rounding=ROUND_HALF_UP) * 100).to_integral_value())
