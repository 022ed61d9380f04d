"""
Bancor continuous token formula.

The market maker prices conversions with the Bancor formula:

    purchase = supply * ((1 + amount / balance) ** (ratio / PPM) - 1)
    sale     = balance * (1 - (1 - amount / supply) ** (PPM / ratio))

The pure functions here evaluate it with high-precision ``Decimal`` arithmetic
and floor to base units. ``CurveFormula`` abstracts the evaluation so the
oracle can delegate it to the on-chain formula contract instead.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, localcontext
from typing import Protocol, runtime_checkable

from ..amount import Amount
from .models import PPM

_PRECISION = 78


class FormulaError(ValueError):
    """Raised when the curve cannot be evaluated for the given inputs."""


def _floor(value: Decimal) -> Amount:
    if value <= 0:
        return Amount(0)
    return Amount(int(value.to_integral_value(rounding=ROUND_FLOOR)))


def _validate(supply: int, balance: int, ratio: int) -> None:
    if supply <= 0 or balance <= 0:
        raise FormulaError("Supply and balance must be positive")
    if not 0 < ratio <= PPM:
        raise FormulaError(f"Reserve ratio must be within (0, {PPM}]")


def purchase_return(supply: int, balance: int, ratio: int, amount: int) -> Amount:
    """Bonded tokens minted for depositing ``amount`` of collateral."""
    _validate(supply, balance, ratio)
    if amount == 0:
        return Amount(0)
    if ratio == PPM:
        return Amount(supply * amount // balance)

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        base = 1 + Decimal(amount) / Decimal(balance)
        exponent = Decimal(ratio) / Decimal(PPM)
        return _floor(Decimal(supply) * (base ** exponent - 1))


def sale_return(supply: int, balance: int, ratio: int, amount: int) -> Amount:
    """Collateral released for burning ``amount`` of bonded tokens."""
    _validate(supply, balance, ratio)
    if amount > supply:
        raise FormulaError("Sale amount exceeds supply")
    if amount == 0:
        return Amount(0)
    if amount == supply:
        return Amount(balance)
    if ratio == PPM:
        return Amount(balance * amount // supply)

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        base = 1 - Decimal(amount) / Decimal(supply)
        exponent = Decimal(PPM) / Decimal(ratio)
        return _floor(Decimal(balance) * (1 - base ** exponent))


@runtime_checkable
class CurveFormula(Protocol):
    """Async curve evaluator (local or backed by the formula contract)."""

    async def calculate_purchase_return(
        self, supply: int, balance: int, ratio: int, amount: int
    ) -> Amount:
        ...

    async def calculate_sale_return(
        self, supply: int, balance: int, ratio: int, amount: int
    ) -> Amount:
        ...


class LocalBancorFormula:
    """Evaluates the curve in-process."""

    async def calculate_purchase_return(
        self, supply: int, balance: int, ratio: int, amount: int
    ) -> Amount:
        return purchase_return(supply, balance, ratio, amount)

    async def calculate_sale_return(
        self, supply: int, balance: int, ratio: int, amount: int
    ) -> Amount:
        return sale_return(supply, balance, ratio, amount)
