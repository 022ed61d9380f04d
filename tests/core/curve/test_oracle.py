"""
Tests for the price oracle: tribute asymmetry, the zero-amount probe, the
retry loop and supersession of in-flight requests.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from converter.config import Settings
from converter.core.curve import ConversionDirection, CurveParameters, PriceOracle
from converter.core.errors import TransientReadError
from converter.services.registry import ContractRegistry

UNIT = 10**18
BUY = ConversionDirection.TO_BONDED
SELL = ConversionDirection.FROM_BONDED


# =============================================================================
# Fixtures
# =============================================================================


class RecordingFormula:
    """Formula double returning fixed outputs and recording every call."""

    def __init__(self, purchase=50 * UNIT, sale=1000 * UNIT):
        self.purchase = purchase
        self.sale = sale
        self.calls = []

    async def calculate_purchase_return(self, supply, balance, ratio, amount):
        self.calls.append(("purchase", supply, balance, ratio, amount))
        return self.purchase

    async def calculate_sale_return(self, supply, balance, ratio, amount):
        self.calls.append(("sale", supply, balance, ratio, amount))
        return self.sale


@pytest.fixture
def parameters():
    return CurveParameters(
        virtual_supply=1000 * UNIT,
        virtual_balance=2000 * UNIT,
        reserve_ratio=250_000,
        buy_tribute_rate=10**16,        # 1%
        exit_tribute_rate=2 * 10**16,   # 2%
    )


@pytest.fixture
def market(parameters):
    reader = MagicMock()
    reader.read_curve_parameters = AsyncMock(return_value=parameters)
    reader.read_bonded_supply = AsyncMock(return_value=9000 * UNIT)
    reader.read_reserve_balance = AsyncMock(return_value=8000 * UNIT)
    return reader


@pytest.fixture
def registry():
    return ContractRegistry(Settings(collateral_decimals=18, bonded_decimals=6))


@pytest.fixture
def formula():
    return RecordingFormula()


@pytest.fixture
def oracle(market, formula, registry):
    return PriceOracle(market, formula, registry, retry_seconds=0.01)


# =============================================================================
# Single evaluation
# =============================================================================


class TestQuote:
    @pytest.mark.asyncio
    async def test_buy_applies_tribute_to_input(self, oracle, formula):
        price = await oracle.quote(100 * UNIT, BUY)

        kind, supply, balance, ratio, amount = formula.calls[0]
        assert kind == "purchase"
        assert supply == 10_000 * UNIT       # bonded supply + virtual supply
        assert balance == 10_000 * UNIT      # reserve balance + virtual balance
        assert ratio == 250_000
        assert amount == 99 * UNIT
        assert price.price == 50 * UNIT
        assert price.net_input == 99 * UNIT

    @pytest.mark.asyncio
    async def test_sell_applies_tribute_to_output(self, oracle, formula):
        price = await oracle.quote(10 * 10**6, SELL)

        assert formula.calls[0][0] == "sale"
        assert formula.calls[0][4] == 10 * 10**6
        assert price.raw_output == 1000 * UNIT
        assert price.price == 980 * UNIT

    @pytest.mark.asyncio
    async def test_price_per_unit_is_scaled(self, oracle):
        price = await oracle.quote(100 * UNIT, BUY)
        assert price.price_per_unit == 50 * UNIT * UNIT // (100 * UNIT)

    @pytest.mark.asyncio
    async def test_zero_amount_probes_one_unit(self, oracle, formula):
        price = await oracle.quote(0, BUY)

        assert price.price == 0
        assert price.probe_amount == UNIT
        assert formula.calls[0][4] == UNIT * 99 // 100
        assert price.price_per_unit == 50 * UNIT

    @pytest.mark.asyncio
    async def test_zero_amount_probe_uses_source_decimals(self, oracle, formula):
        price = await oracle.quote(0, SELL)

        assert price.probe_amount == 10**6
        assert formula.calls[0][4] == 10**6
        assert price.price == 0
        assert price.raw_output == 0

    @pytest.mark.asyncio
    async def test_reads_are_fresh(self, oracle, market):
        await oracle.quote(UNIT, BUY)
        await oracle.quote(UNIT, BUY)

        assert market.read_curve_parameters.await_count == 2
        assert market.read_bonded_supply.await_count == 2
        assert market.read_reserve_balance.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_propagates(self, oracle, market):
        market.read_bonded_supply.side_effect = TransientReadError("node down")

        with pytest.raises(TransientReadError):
            await oracle.quote(UNIT, BUY)


# =============================================================================
# Retrying loop
# =============================================================================


class TestRetryLoop:
    @pytest.mark.asyncio
    async def test_publishes_loading_then_price(self, oracle):
        states = []

        async def listener(state):
            states.append(state)

        oracle.add_listener(listener)
        task = await oracle.on_input_changed(100 * UNIT, BUY)
        await asyncio.wait_for(task, 1)

        assert states[0].loading is True
        assert states[-1].loading is False
        assert states[-1].price.price == 50 * UNIT
        assert oracle.loading is False

    @pytest.mark.asyncio
    async def test_retries_until_success(self, oracle, market, parameters):
        market.read_curve_parameters.side_effect = [
            TransientReadError("timeout"),
            TransientReadError("timeout"),
            parameters,
        ]

        task = await oracle.on_input_changed(100 * UNIT, BUY)
        price = await asyncio.wait_for(task, 1)

        assert price.price == 50 * UNIT
        assert oracle.state.attempts == 3
        assert market.read_curve_parameters.await_count == 3

    @pytest.mark.asyncio
    async def test_stays_loading_while_failing(self, oracle, market):
        market.read_curve_parameters.side_effect = TransientReadError("unreachable")

        task = await oracle.on_input_changed(100 * UNIT, BUY)
        await asyncio.sleep(0.05)

        assert oracle.loading is True
        assert oracle.state.last_error == "unreachable"
        assert not task.done()

        await oracle.close()
        assert task.done()

    @pytest.mark.asyncio
    async def test_superseded_request_never_publishes(self, market, registry):
        gate = asyncio.Event()

        class SlowFirstFormula(RecordingFormula):
            async def calculate_purchase_return(self, supply, balance, ratio, amount):
                if amount == 99 * UNIT:
                    await gate.wait()
                return await super().calculate_purchase_return(supply, balance, ratio, amount)

        oracle = PriceOracle(market, SlowFirstFormula(), registry, retry_seconds=0.01)
        published = []

        async def listener(state):
            if state.price is not None:
                published.append(state.request.source_amount)

        oracle.add_listener(listener)

        first = await oracle.on_input_changed(100 * UNIT, BUY)
        await asyncio.sleep(0)
        second = await oracle.on_input_changed(200 * UNIT, BUY)
        gate.set()
        await asyncio.wait_for(second, 1)

        assert first.cancelled() or first.result() is None
        assert published == [200 * UNIT]

    @pytest.mark.asyncio
    async def test_tick_requotes_current_request(self, oracle, market):
        task = await oracle.on_input_changed(100 * UNIT, BUY)
        await asyncio.wait_for(task, 1)

        task = await oracle.on_tick()
        await asyncio.wait_for(task, 1)

        assert market.read_curve_parameters.await_count == 2
        assert oracle.state.request.source_amount == 100 * UNIT

    @pytest.mark.asyncio
    async def test_tick_without_request_is_noop(self, oracle, market):
        assert await oracle.on_tick() is None
        market.read_curve_parameters.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_listener_errors_are_contained(self, oracle):
        async def broken(state):
            raise RuntimeError("listener bug")

        oracle.add_listener(broken)
        task = await oracle.on_input_changed(UNIT, BUY)

        assert (await asyncio.wait_for(task, 1)) is not None
