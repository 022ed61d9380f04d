"""
Quote assembly.

``build_quote`` turns an oracle price into a full ``ConversionQuote``: tribute
first, then the slippage discount. ``QuoteAssembler`` keeps the reactive form
state around it (current request, which field the user is editing, the
latest quote) and recomputes as inputs or curve state change.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ...config import settings
from ..amount import Amount
from .models import (
    ConversionDirection,
    ConversionQuote,
    ConversionRequest,
    CurvePrice,
    EditingField,
)
from .oracle import OracleState, PriceOracle
from .tribute import tribute_pct


def apply_slippage(amount: int, slippage_pct: int) -> Amount:
    """Minimum acceptable output for a slippage tolerance in whole percent."""
    if not 0 <= slippage_pct <= 100:
        raise ValueError(f"Slippage must be within [0, 100], got {slippage_pct}")
    return Amount(Amount(amount) * (100 - slippage_pct) // 100)


def build_quote(
    request: ConversionRequest,
    price: CurvePrice,
    slippage_pct: Optional[int] = None,
) -> ConversionQuote:
    """Combine a curve price with the slippage policy."""
    slippage = settings.slippage_pct if slippage_pct is None else slippage_pct
    if price.snapshot is None:
        raise ValueError("Curve price carries no market snapshot")

    parameters = price.snapshot.parameters
    rate = parameters.tribute_rate(request.direction)
    estimated = Amount(price.price)

    if request.direction.is_buy:
        tribute_retained = Amount(request.source_amount - price.net_input) if request.source_amount else Amount(0)
        order_amount = Amount(price.net_input)
    else:
        tribute_retained = Amount(price.raw_output - price.price)
        order_amount = Amount(request.source_amount)

    return ConversionQuote(
        request=request,
        estimated_received=estimated,
        minimum_received=apply_slippage(estimated, slippage),
        price_per_unit=Amount(price.price_per_unit),
        tribute_retained=tribute_retained,
        tribute_pct=tribute_pct(rate),
        order_amount=order_amount,
        slippage_pct=slippage,
        raw_output=Amount(price.raw_output),
    )


class QuoteAssembler:
    """
    Reactive quote state for the conversion form.

    The recipient amount is derived from the source amount. While the user is
    editing the recipient field the derived value is not overwritten; the
    latest oracle result is applied once editing stops.
    """

    def __init__(
        self,
        oracle: PriceOracle,
        direction: ConversionDirection = ConversionDirection.TO_BONDED,
        slippage_pct: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.oracle = oracle
        self.slippage_pct = settings.slippage_pct if slippage_pct is None else slippage_pct
        self.logger = logger or logging.getLogger(__name__)

        self.direction = direction
        self.source_amount = Amount(0)
        self.recipient_amount = Amount(0)
        self.editing = EditingField.NONE
        self.quote: Optional[ConversionQuote] = None

        self._held_state: Optional[OracleState] = None
        oracle.add_listener(self._on_oracle_state)

    @property
    def request(self) -> ConversionRequest:
        return ConversionRequest(source_amount=self.source_amount, direction=self.direction)

    @property
    def loading(self) -> bool:
        return self.oracle.loading

    async def on_input_changed(self, amount: int) -> asyncio.Task:
        """The source amount changed; request a fresh quote."""
        self.source_amount = Amount(amount)
        self.quote = None
        return await self.oracle.on_input_changed(self.source_amount, self.direction)

    async def on_tick(self) -> Optional[asyncio.Task]:
        return await self.oracle.on_tick()

    async def set_editing(self, field: EditingField) -> None:
        """Track which field is authoritative; flush any held result on release."""
        self.editing = field
        if field is not EditingField.RECIPIENT and self._held_state is not None:
            held, self._held_state = self._held_state, None
            await self._on_oracle_state(held)

    async def select_pair(self, direction: ConversionDirection) -> asyncio.Task:
        """Switch the asset pair; every derived value is discarded."""
        self.direction = direction
        self.reset()
        return await self.oracle.on_input_changed(self.source_amount, self.direction)

    def reset(self) -> None:
        self.source_amount = Amount(0)
        self.recipient_amount = Amount(0)
        self.editing = EditingField.NONE
        self.quote = None
        self._held_state = None

    async def _on_oracle_state(self, state: OracleState) -> None:
        if state.request != self.request:
            return

        if state.loading or state.price is None:
            self.quote = None
            return

        if self.editing is EditingField.RECIPIENT:
            self._held_state = state
            return

        self.quote = build_quote(state.request, state.price, self.slippage_pct)
        self.recipient_amount = self.quote.estimated_received
