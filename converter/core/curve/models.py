"""
Bonding curve models.

Fixed-point conventions follow the market maker contract: tribute rates are
fractions of ``PCT_BASE`` (1e18 == 100%) and the reserve ratio is expressed in
parts per million.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..amount import Amount

PCT_BASE = 10**18
PPM = 1_000_000


class ConversionDirection(str, Enum):
    """Which way the conversion goes relative to the bonded asset."""
    TO_BONDED = "to_bonded"        # collateral -> bonded (buy)
    FROM_BONDED = "from_bonded"    # bonded -> collateral (sell)

    @property
    def is_buy(self) -> bool:
        return self is ConversionDirection.TO_BONDED


class EditingField(str, Enum):
    """Which input the user is currently typing into."""
    NONE = "none"
    SOURCE = "source"
    RECIPIENT = "recipient"


@dataclass(frozen=True)
class CurveParameters:
    """Snapshot of the curve configuration read from the market maker."""
    virtual_supply: Amount
    virtual_balance: Amount
    reserve_ratio: int                  # PPM
    buy_tribute_rate: int               # fraction of PCT_BASE
    exit_tribute_rate: int              # fraction of PCT_BASE

    def __post_init__(self):
        for name in ("buy_tribute_rate", "exit_tribute_rate"):
            rate = getattr(self, name)
            if not 0 <= rate <= PCT_BASE:
                raise ValueError(f"{name} must be within [0, {PCT_BASE}], got {rate}")
        if not 0 < self.reserve_ratio <= PPM:
            raise ValueError(f"reserve_ratio must be within (0, {PPM}], got {self.reserve_ratio}")
        object.__setattr__(self, "virtual_supply", Amount(self.virtual_supply))
        object.__setattr__(self, "virtual_balance", Amount(self.virtual_balance))

    def tribute_rate(self, direction: ConversionDirection) -> int:
        if direction.is_buy:
            return self.buy_tribute_rate
        return self.exit_tribute_rate


@dataclass(frozen=True)
class MarketSnapshot:
    """Curve parameters plus the two live reads the formula is queried against."""
    parameters: CurveParameters
    bonded_supply: Amount
    reserve_balance: Amount

    @property
    def effective_supply(self) -> Amount:
        return Amount(self.bonded_supply + self.parameters.virtual_supply)

    @property
    def effective_balance(self) -> Amount:
        return Amount(self.reserve_balance + self.parameters.virtual_balance)


@dataclass(frozen=True)
class ConversionRequest:
    """What the user asked to convert."""
    source_amount: Amount
    direction: ConversionDirection

    def __post_init__(self):
        object.__setattr__(self, "source_amount", Amount(self.source_amount))


@dataclass(frozen=True)
class CurvePrice:
    """Raw (pre-slippage) oracle output for one request."""
    price: Amount                       # tribute-adjusted output, 0 for an empty input
    price_per_unit: Amount              # output per whole input unit, scaled by 1e18
    raw_output: Amount                  # curve output before any exit tribute
    net_input: Amount                   # input after any buy tribute
    probe_amount: Amount                # amount actually fed to the curve
    snapshot: Optional[MarketSnapshot] = None


@dataclass(frozen=True)
class ConversionQuote:
    """Everything the confirmation screen and the planner need."""
    request: ConversionRequest
    estimated_received: Amount
    minimum_received: Amount
    price_per_unit: Amount
    tribute_retained: Amount
    tribute_pct: Decimal
    order_amount: Amount
    slippage_pct: int = 1
    raw_output: Amount = field(default_factory=lambda: Amount(0))

    @property
    def direction(self) -> ConversionDirection:
        return self.request.direction
