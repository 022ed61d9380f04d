"""
Tests for the conversion session: input handling, pair switching and the
conditions that gate submission.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from converter.config import Settings
from converter.core.amount import Amount
from converter.core.conversion import MAKE_BUY_ORDER, PlannerState, TransactionStepPlanner
from converter.core.curve import (
    ConversionDirection,
    CurveParameters,
    PriceOracle,
    QuoteAssembler,
)
from converter.core.errors import BlockingConditionError
from converter.providers.abi import encode_address, encode_uint
from converter.services.registry import ContractRegistry
from converter.services.session import BlockingReason, ConversionSession, create_session

UNIT = 10**18
ACCOUNT = "0x" + "11" * 20
MARKET = "0x" + "aa" * 20
BUY = ConversionDirection.TO_BONDED
SELL = ConversionDirection.FROM_BONDED


# =============================================================================
# Fixtures
# =============================================================================


class HalfFormula:
    async def calculate_purchase_return(self, supply, balance, ratio, amount):
        return amount // 2

    async def calculate_sale_return(self, supply, balance, ratio, amount):
        return amount * 2


def balance_gateway(balance):
    gateway = MagicMock()
    gateway.read_balance = AsyncMock(return_value=Amount(balance))
    return gateway


@pytest.fixture
def market():
    reader = MagicMock()
    reader.read_curve_parameters = AsyncMock(
        return_value=CurveParameters(
            virtual_supply=0,
            virtual_balance=0,
            reserve_ratio=250_000,
            buy_tribute_rate=0,
            exit_tribute_rate=0,
        )
    )
    reader.read_bonded_supply = AsyncMock(return_value=10**6 * UNIT)
    reader.read_reserve_balance = AsyncMock(return_value=10**6 * UNIT)
    return reader


@pytest.fixture
def tokens():
    gateway = balance_gateway(150 * UNIT)
    gateway.read_allowance = AsyncMock(return_value=Amount(0))
    gateway.submit_approval = AsyncMock(return_value="0xapprove")
    return gateway


@pytest.fixture
def orders():
    gateway = MagicMock()
    gateway.spender_address = MARKET
    gateway.submit_order = AsyncMock(return_value="0xorder")
    return gateway


@pytest.fixture
def receipts():
    receipt = {
        "status": "0x1",
        "logs": [
            {
                "address": MARKET,
                "topics": [MAKE_BUY_ORDER.topic] + ["0x" + encode_address(ACCOUNT)] * 3,
                "data": "0x" + "".join(encode_uint(v) for v in (0, 100 * UNIT, 50 * UNIT, 0)),
            }
        ],
    }
    source = MagicMock()
    source.get_transaction_receipt = AsyncMock(return_value=receipt)
    source.wait_for_receipt = AsyncMock(return_value=receipt)
    return source


def build_session(market, tokens, orders, receipts, account=ACCOUNT, bonded_balance=10 * UNIT):
    registry = ContractRegistry(Settings(collateral_decimals=18, bonded_decimals=18))
    oracle = PriceOracle(market, HalfFormula(), registry, retry_seconds=0.01)
    assembler = QuoteAssembler(oracle, direction=BUY, slippage_pct=1)
    planner = TransactionStepPlanner(
        tokens=tokens,
        orders=orders,
        receipts=receipts,
        account=account,
        display_delay_seconds=0,
    )
    return ConversionSession(
        assembler=assembler,
        planner=planner,
        balances={BUY: tokens, SELL: balance_gateway(bonded_balance)},
        registry=registry,
        account=account,
    )


@pytest.fixture
def session(market, tokens, orders, receipts):
    return build_session(market, tokens, orders, receipts)


async def settle(session):
    """Let the in-flight quote finish."""
    await asyncio.wait_for(session.wait_for_quote(), 1)


# =============================================================================
# Input handling
# =============================================================================


class TestInput:
    @pytest.mark.asyncio
    async def test_start_quotes_unit_price(self, session):
        await session.start()
        await settle(session)

        assert session.quote.estimated_received == 0
        assert session.quote.price_per_unit == UNIT // 2
        assert session.source_balance == 150 * UNIT

    @pytest.mark.asyncio
    async def test_valid_input(self, session):
        assert await session.handle_source_input("100") is True
        await settle(session)

        assert session.source_amount == 100 * UNIT
        assert session.quote.estimated_received == 50 * UNIT

    @pytest.mark.asyncio
    async def test_invalid_input_keeps_previous_amount(self, session):
        await session.handle_source_input("12.5")

        assert await session.handle_source_input("12.5x") is False
        assert session.source_amount == 125 * UNIT // 10

    @pytest.mark.asyncio
    async def test_convert_all_uses_balance(self, session):
        assert await session.convert_all() is True
        await settle(session)

        assert session.source_amount == 150 * UNIT

    @pytest.mark.asyncio
    async def test_invert_resets_and_reads_other_balance(self, session):
        await session.handle_source_input("100")
        await settle(session)

        await session.invert()

        assert session.direction is SELL
        assert session.source_amount == 0
        assert session.source_balance == 10 * UNIT
        await settle(session)


# =============================================================================
# Submission gating
# =============================================================================


class TestBlockingReasons:
    @pytest.mark.asyncio
    async def test_ready_to_submit(self, session):
        await session.refresh_balance()
        await session.handle_source_input("100")
        await settle(session)

        assert session.blocking_reasons() == []
        assert session.can_submit

    @pytest.mark.asyncio
    async def test_no_account(self, market, tokens, orders, receipts):
        session = build_session(market, tokens, orders, receipts, account=None)
        await session.handle_source_input("1")
        await settle(session)

        assert session.blocking_reasons() == [BlockingReason.NO_ACCOUNT]

    @pytest.mark.asyncio
    async def test_empty_amount(self, session):
        await session.start()
        await settle(session)

        assert session.blocking_reasons() == [BlockingReason.EMPTY_AMOUNT]

    @pytest.mark.asyncio
    async def test_quote_loading(self, session):
        await session.refresh_balance()
        await session.handle_source_input("1")

        assert BlockingReason.QUOTE_LOADING in session.blocking_reasons()
        await settle(session)

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, session):
        await session.refresh_balance()
        await session.handle_source_input("151")
        await settle(session)

        assert session.blocking_reasons() == [BlockingReason.INSUFFICIENT_BALANCE]

    @pytest.mark.asyncio
    async def test_balance_unknown(self, session):
        await session.handle_source_input("1")
        await settle(session)

        assert session.blocking_reasons() == [BlockingReason.BALANCE_UNKNOWN]

    @pytest.mark.asyncio
    async def test_confirm_when_blocked(self, session, orders):
        with pytest.raises(BlockingConditionError):
            await session.confirm()
        orders.submit_order.assert_not_awaited()


# =============================================================================
# Confirmation
# =============================================================================


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirm_runs_plan(self, session, tokens, orders):
        await session.refresh_balance()
        await session.handle_source_input("100")
        await settle(session)

        receipt = await session.confirm()

        assert receipt.converted_total == 50 * UNIT
        tokens.submit_approval.assert_awaited_once_with(ACCOUNT, MARKET, 100 * UNIT)
        orders.submit_order.assert_awaited_once_with(ACCOUNT, 100 * UNIT, BUY, 495 * UNIT // 10)
        assert BlockingReason.CONVERSION_IN_PROGRESS in session.blocking_reasons()

    @pytest.mark.asyncio
    async def test_return_home(self, session):
        await session.refresh_balance()
        await session.handle_source_input("100")
        await settle(session)
        await session.confirm()

        await session.return_home()
        await settle(session)

        assert session.planner.state is PlannerState.IDLE
        assert session.source_amount == 0
        assert session.quote.estimated_received == 0

    @pytest.mark.asyncio
    async def test_close_stops_quoting(self, session, market):
        market.read_curve_parameters.side_effect = RuntimeError("node down")
        await session.handle_source_input("1")
        task = session.assembler.oracle.current_task

        await session.close()

        assert task.done()


def test_create_session_wires_configured_contracts():
    config = Settings(
        account_address=ACCOUNT,
        market_maker_address=MARKET,
        bonded_token_address="0x" + "bb" * 20,
        collateral_token_address="0x" + "cc" * 20,
        reserve_address="0x" + "dd" * 20,
        use_onchain_formula=False,
    )

    session = create_session(config)

    assert session.account == ACCOUNT
    assert session.planner.orders.spender_address == MARKET
    assert session.balances[BUY].token_address == "0x" + "cc" * 20
    assert session.balances[SELL].token_address == "0x" + "bb" * 20
    assert session.planner.receipt_emitter == MARKET
