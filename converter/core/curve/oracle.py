"""
Price Oracle

Computes the raw (pre-slippage) conversion output from live curve state.
Reads are always fresh. A failed read or evaluation is retried on a fixed
interval until it succeeds or the request is superseded; every publication
is guarded by a generation token so a stale request never publishes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, List, Optional

from ...config import settings
from ..amount import UNIT_SCALE, Amount, one_unit
from ..errors import classify_error
from .formula import CurveFormula
from .models import ConversionDirection, ConversionRequest, CurvePrice, MarketSnapshot
from .tribute import apply_tribute


@dataclass(frozen=True)
class OracleState:
    """What the oracle currently knows about the active request."""
    request: Optional[ConversionRequest] = None
    loading: bool = False
    price: Optional[CurvePrice] = None
    attempts: int = 0
    last_error: Optional[str] = None


OracleListener = Callable[[OracleState], Coroutine[Any, Any, None]]


class PriceOracle:
    """
    Bonding curve price oracle.

    ``quote()`` is a single attempt that raises on failure. ``on_input_changed()``
    and ``on_tick()`` drive the retrying loop and publish ``OracleState`` to
    registered listeners.
    """

    def __init__(
        self,
        market,
        formula: CurveFormula,
        registry,
        retry_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            market: ``MarketReader`` supplying curve parameters, supply and reserve balance
            formula: Curve evaluator
            registry: ``ContractRegistry`` used for source token decimals
            retry_seconds: Delay between attempts (default: settings.quote_retry_seconds)
            logger: Optional logger
        """
        self.market = market
        self.formula = formula
        self.registry = registry
        self.retry_seconds = retry_seconds if retry_seconds is not None else settings.quote_retry_seconds
        self.logger = logger or logging.getLogger(__name__)

        self._state = OracleState()
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[OracleListener] = []

    @property
    def state(self) -> OracleState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def current_task(self) -> Optional[asyncio.Task]:
        return self._task

    def add_listener(self, listener: OracleListener) -> None:
        """Register a coroutine called with every published state."""
        self._listeners.append(listener)

    async def quote(self, amount: int, direction: ConversionDirection) -> CurvePrice:
        """Evaluate the curve once for ``amount`` of the source asset."""
        amount = Amount(amount)

        parameters = await self.market.read_curve_parameters()
        bonded_supply = await self.market.read_bonded_supply()
        reserve_balance = await self.market.read_reserve_balance()
        snapshot = MarketSnapshot(
            parameters=parameters,
            bonded_supply=Amount(bonded_supply),
            reserve_balance=Amount(reserve_balance),
        )

        # An empty input would divide by zero; probe with one whole unit so the
        # unit price stays meaningful.
        probe = amount if amount > 0 else one_unit(self.registry.source_token(direction).decimals)

        if direction.is_buy:
            net_input = apply_tribute(probe, parameters.buy_tribute_rate)
            raw_output = await self.formula.calculate_purchase_return(
                snapshot.effective_supply,
                snapshot.effective_balance,
                parameters.reserve_ratio,
                net_input,
            )
            output = Amount(raw_output)
        else:
            net_input = probe
            raw_output = await self.formula.calculate_sale_return(
                snapshot.effective_supply,
                snapshot.effective_balance,
                parameters.reserve_ratio,
                probe,
            )
            output = apply_tribute(raw_output, parameters.exit_tribute_rate)

        price_per_unit = Amount(output * UNIT_SCALE // probe)

        if amount == 0:
            return CurvePrice(
                price=Amount(0),
                price_per_unit=price_per_unit,
                raw_output=Amount(0),
                net_input=Amount(0),
                probe_amount=probe,
                snapshot=snapshot,
            )

        return CurvePrice(
            price=output,
            price_per_unit=price_per_unit,
            raw_output=Amount(raw_output),
            net_input=net_input,
            probe_amount=probe,
            snapshot=snapshot,
        )

    async def on_input_changed(
        self,
        amount: int,
        direction: ConversionDirection,
    ) -> asyncio.Task:
        """Supersede any in-flight quote and start a new one."""
        request = ConversionRequest(source_amount=Amount(amount), direction=direction)
        return await self._restart(request)

    async def on_tick(self) -> Optional[asyncio.Task]:
        """Re-quote the current request against fresh curve state."""
        if self._state.request is None:
            return None
        return await self._restart(self._state.request)

    async def close(self) -> None:
        """Cancel the in-flight quote; nothing is published afterwards."""
        self._generation += 1
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _restart(self, request: ConversionRequest) -> asyncio.Task:
        self._generation += 1
        generation = self._generation

        previous, self._task = self._task, None
        if previous and not previous.done():
            previous.cancel()

        self._state = OracleState(request=request, loading=True)
        await self._publish(generation)

        self._task = asyncio.create_task(self._run(generation, request))
        return self._task

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _run(self, generation: int, request: ConversionRequest) -> Optional[CurvePrice]:
        attempts = 0
        while self._is_current(generation):
            attempts += 1
            try:
                price = await self.quote(request.source_amount, request.direction)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._is_current(generation):
                    return None
                error_context = classify_error(e)
                self.logger.warning(
                    "Price quote failed (attempt %d, %s); retrying in %ss: %s",
                    attempts,
                    error_context.category.value,
                    self.retry_seconds,
                    e,
                )
                self._state = OracleState(
                    request=request,
                    loading=True,
                    attempts=attempts,
                    last_error=str(e),
                )
                await asyncio.sleep(self.retry_seconds)
                continue

            if not self._is_current(generation):
                return None

            self._state = OracleState(
                request=request,
                loading=False,
                price=price,
                attempts=attempts,
            )
            self.logger.debug(
                "Quoted %s %s -> %s (unit price %s)",
                request.source_amount,
                request.direction.value,
                price.price,
                price.price_per_unit,
            )
            await self._publish(generation)
            return price

        return None

    async def _publish(self, generation: int) -> None:
        for listener in self._listeners:
            if not self._is_current(generation):
                return
            try:
                await listener(self._state)
            except Exception as e:
                self.logger.error(f"Oracle listener error: {e}")
