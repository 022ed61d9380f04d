"""Entry/exit tribute arithmetic."""

from __future__ import annotations

from decimal import Decimal

from ..amount import Amount
from .models import PCT_BASE


def tribute_of(amount: int, rate: int, base: int = PCT_BASE) -> Amount:
    """Portion of ``amount`` retained by a tribute of ``rate``/``base``."""
    if not 0 <= rate <= base:
        raise ValueError(f"Tribute rate must be within [0, {base}], got {rate}")
    return Amount(Amount(amount) * rate // base)


def apply_tribute(amount: int, rate: int, base: int = PCT_BASE) -> Amount:
    """``amount - amount*rate/base`` with floor division."""
    return Amount(Amount(amount) - tribute_of(amount, rate, base))


def tribute_pct(rate: int, base: int = PCT_BASE) -> Decimal:
    """Rate as a human percentage, e.g. 2e16 -> Decimal('2')."""
    return (Decimal(rate) * 100 / Decimal(base)).normalize()
