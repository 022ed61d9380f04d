"""
Conversion session.

Ties the quoting and execution pieces together for one user: parses what
they type, keeps the quote current, decides whether submission is allowed,
and runs the transaction plan once they confirm.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional

from ..config import Settings, settings
from ..core.amount import Amount, parse_amount
from ..core.conversion.models import OrderReceipt, PlannerState
from ..core.conversion.planner import TransactionStepPlanner
from ..core.curve.formula import CurveFormula, LocalBancorFormula
from ..core.curve.models import ConversionDirection, ConversionQuote, EditingField
from ..core.curve.oracle import PriceOracle
from ..core.curve.quotes import QuoteAssembler
from ..core.errors import BlockingConditionError, InvalidTransitionError
from ..logging_config import bind_conversion_context, clear_conversion_context
from ..providers.base import TokenGateway
from ..providers.market import MarketMakerProvider, OnchainBancorFormula
from ..providers.rpc import JsonRpcClient
from ..providers.token import ERC20Provider
from .registry import MARKET_MAKER, ContractRegistry, get_registry

logger = logging.getLogger(__name__)


class BlockingReason(str, Enum):
    """Why the convert button is disabled."""
    NO_ACCOUNT = "no_account"
    QUOTE_LOADING = "quote_loading"
    EMPTY_AMOUNT = "empty_amount"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    BALANCE_UNKNOWN = "balance_unknown"
    CONVERSION_IN_PROGRESS = "conversion_in_progress"


class ConversionSession:
    """Form-level conversion flow for a single account."""

    def __init__(
        self,
        assembler: QuoteAssembler,
        planner: TransactionStepPlanner,
        balances: Dict[ConversionDirection, TokenGateway],
        registry: ContractRegistry,
        account: Optional[str] = None,
    ):
        self.assembler = assembler
        self.planner = planner
        self.balances = balances
        self.registry = registry
        self.account = account
        self.source_balance: Optional[Amount] = None

    @property
    def direction(self) -> ConversionDirection:
        return self.assembler.direction

    @property
    def source_amount(self) -> Amount:
        return self.assembler.source_amount

    @property
    def quote(self) -> Optional[ConversionQuote]:
        return self.assembler.quote

    @property
    def source_decimals(self) -> int:
        return self.registry.source_token(self.direction).decimals

    async def start(self) -> asyncio.Task:
        """Load the balance and the unit price for an empty input."""
        await self.refresh_balance()
        return await self.assembler.select_pair(self.direction)

    async def handle_source_input(self, text: str) -> bool:
        """Parse typed input; invalid input leaves the previous amount in place."""
        amount = parse_amount(text, self.source_decimals)
        if amount is None:
            logger.debug("Ignoring invalid amount input %r", text)
            return False
        await self.assembler.on_input_changed(amount)
        return True

    async def wait_for_quote(self) -> Optional[ConversionQuote]:
        """Wait for the in-flight quote, if any, and return the current one."""
        task = self.assembler.oracle.current_task
        if task is not None and not task.done():
            await task
        return self.quote

    async def set_editing(self, field: EditingField) -> None:
        await self.assembler.set_editing(field)

    async def select_pair(self, direction: ConversionDirection) -> None:
        """Switch direction; amounts and quotes are reset for the new pair."""
        if direction is self.direction:
            return
        await self.assembler.select_pair(direction)
        await self.refresh_balance()

    async def invert(self) -> None:
        if self.direction.is_buy:
            await self.select_pair(ConversionDirection.FROM_BONDED)
        else:
            await self.select_pair(ConversionDirection.TO_BONDED)

    async def refresh_balance(self) -> Optional[Amount]:
        if not self.account:
            self.source_balance = None
            return None
        gateway = self.balances[self.direction]
        self.source_balance = Amount(await gateway.read_balance(self.account))
        return self.source_balance

    async def convert_all(self) -> bool:
        """Use the whole source balance as the input."""
        balance = await self.refresh_balance()
        if balance is None:
            return False
        await self.assembler.on_input_changed(balance)
        return True

    def blocking_reasons(self) -> List[BlockingReason]:
        reasons: List[BlockingReason] = []
        if not self.account:
            reasons.append(BlockingReason.NO_ACCOUNT)
        if self.planner.state is not PlannerState.IDLE:
            reasons.append(BlockingReason.CONVERSION_IN_PROGRESS)
        if self.assembler.loading or (self.source_amount > 0 and self.quote is None):
            reasons.append(BlockingReason.QUOTE_LOADING)
        if self.source_amount <= 0:
            reasons.append(BlockingReason.EMPTY_AMOUNT)
        if self.account:
            if self.source_balance is None:
                reasons.append(BlockingReason.BALANCE_UNKNOWN)
            elif self.source_balance < self.source_amount:
                reasons.append(BlockingReason.INSUFFICIENT_BALANCE)
        return reasons

    @property
    def can_submit(self) -> bool:
        return not self.blocking_reasons()

    async def confirm(self) -> Optional[OrderReceipt]:
        """Run the transaction plan for the current quote."""
        reasons = self.blocking_reasons()
        if reasons:
            raise BlockingConditionError(
                "Conversion cannot be submitted: " + ", ".join(r.value for r in reasons)
            )
        bind_conversion_context(direction=self.direction.value, account=self.account)
        return await self.planner.run(self.quote)

    async def return_home(self) -> asyncio.Task:
        """Drop the current plan and go back to an empty form."""
        await self.planner.reset()
        clear_conversion_context()
        await self.refresh_balance()
        return await self.assembler.select_pair(self.direction)

    async def close(self) -> None:
        try:
            await self.planner.reset()
        except InvalidTransitionError as e:
            logger.warning(f"Planner reset on close failed: {e}")
        await self.assembler.oracle.close()


def create_session(
    config: Optional[Settings] = None,
    rpc: Optional[JsonRpcClient] = None,
) -> ConversionSession:
    """Wire a session against the configured node and contracts."""
    config = config or settings
    registry = ContractRegistry(config) if config is not settings else get_registry()
    rpc = rpc or JsonRpcClient(
        rpc_url=config.rpc_url,
        timeout_seconds=config.request_timeout_seconds,
        poll_interval_seconds=config.receipt_poll_seconds,
    )

    market = MarketMakerProvider(rpc, registry)
    formula: CurveFormula = (
        OnchainBancorFormula(rpc, registry) if config.use_onchain_formula else LocalBancorFormula()
    )
    collateral = ERC20Provider(rpc, registry.collateral.address)
    bonded = ERC20Provider(rpc, registry.bonded.address)

    oracle = PriceOracle(market, formula, registry, retry_seconds=config.quote_retry_seconds)
    assembler = QuoteAssembler(oracle, slippage_pct=config.slippage_pct)
    planner = TransactionStepPlanner(
        tokens=collateral,
        orders=market,
        receipts=rpc,
        account=config.account_address,
        display_delay_seconds=config.plan_display_delay_seconds,
        receipt_timeout_seconds=config.receipt_timeout_seconds,
        receipt_emitter=registry.contract_address(MARKET_MAKER),
    )

    return ConversionSession(
        assembler=assembler,
        planner=planner,
        balances={
            ConversionDirection.TO_BONDED: collateral,
            ConversionDirection.FROM_BONDED: bonded,
        },
        registry=registry,
        account=config.account_address or None,
    )
