"""Bonding curve market maker and formula contracts over JSON-RPC."""

from __future__ import annotations

from typing import Optional

from ..config import settings
from ..core.amount import Amount
from ..core.curve.models import ConversionDirection, CurveParameters
from ..services.registry import (
    BANCOR_FORMULA,
    BONDED_TOKEN,
    COLLATERAL_TOKEN,
    MARKET_MAKER,
    RESERVE,
    ContractRegistry,
    get_registry,
)
from .abi import decode_static, decode_uint, encode_address, encode_call, encode_uint
from .base import MarketReader, OrderGateway
from .rpc import JsonRpcClient

GET_COLLATERAL_TOKEN = "getCollateralToken(address)"
BUY_FEE_PCT = "buyFeePct()"
SELL_FEE_PCT = "sellFeePct()"
TOTAL_SUPPLY = "totalSupply()"
BALANCE_OF = "balanceOf(address)"
MAKE_BUY_ORDER = "makeBuyOrder(address,address,uint256,uint256)"
MAKE_SELL_ORDER = "makeSellOrder(address,address,uint256,uint256)"
CALCULATE_PURCHASE_RETURN = "calculatePurchaseReturn(uint256,uint256,uint32,uint256)"
CALCULATE_SALE_RETURN = "calculateSaleReturn(uint256,uint256,uint32,uint256)"


class ContractNotConfiguredError(ValueError):
    """Raised when a required contract address is missing from the registry."""


def _require(registry: ContractRegistry, name: str) -> str:
    address = registry.contract_address(name)
    if not address:
        raise ContractNotConfiguredError(f"{name} address is not configured")
    return address


class MarketMakerProvider(MarketReader, OrderGateway):
    """Reads curve state from, and submits orders to, the market maker."""

    name = "market_maker"

    def __init__(
        self,
        rpc: JsonRpcClient,
        registry: Optional[ContractRegistry] = None,
    ):
        self.rpc = rpc
        self.registry = registry or get_registry()

    async def ready(self) -> bool:
        return all(
            self.registry.contract_address(name)
            for name in (MARKET_MAKER, BONDED_TOKEN, COLLATERAL_TOKEN, RESERVE)
        )

    @property
    def spender_address(self) -> str:
        return _require(self.registry, MARKET_MAKER)

    async def read_curve_parameters(self) -> CurveParameters:
        market_maker = _require(self.registry, MARKET_MAKER)
        collateral = _require(self.registry, COLLATERAL_TOKEN)

        raw = await self.rpc.eth_call(
            market_maker,
            encode_call(GET_COLLATERAL_TOKEN, encode_address(collateral)),
        )
        whitelisted, virtual_supply, virtual_balance, reserve_ratio = decode_static(
            ("bool", "uint256", "uint256", "uint32"),
            raw,
        )
        if not whitelisted:
            raise ContractNotConfiguredError(f"Collateral {collateral} is not whitelisted")

        buy_fee = decode_uint(await self.rpc.eth_call(market_maker, encode_call(BUY_FEE_PCT)))
        sell_fee = decode_uint(await self.rpc.eth_call(market_maker, encode_call(SELL_FEE_PCT)))

        return CurveParameters(
            virtual_supply=Amount(virtual_supply),
            virtual_balance=Amount(virtual_balance),
            reserve_ratio=reserve_ratio,
            buy_tribute_rate=buy_fee,
            exit_tribute_rate=sell_fee,
        )

    async def read_bonded_supply(self) -> Amount:
        bonded = _require(self.registry, BONDED_TOKEN)
        return Amount(decode_uint(await self.rpc.eth_call(bonded, encode_call(TOTAL_SUPPLY))))

    async def read_reserve_balance(self) -> Amount:
        collateral = _require(self.registry, COLLATERAL_TOKEN)
        reserve = _require(self.registry, RESERVE)
        raw = await self.rpc.eth_call(
            collateral,
            encode_call(BALANCE_OF, encode_address(reserve)),
        )
        return Amount(decode_uint(raw))

    async def submit_order(
        self,
        account: str,
        amount: int,
        direction: ConversionDirection,
        minimum_return: int,
    ) -> str:
        market_maker = _require(self.registry, MARKET_MAKER)
        collateral = _require(self.registry, COLLATERAL_TOKEN)

        signature = MAKE_BUY_ORDER if direction.is_buy else MAKE_SELL_ORDER
        gas_limit = settings.buy_order_gas_limit if direction.is_buy else settings.sell_order_gas_limit
        data = encode_call(
            signature,
            encode_address(account),
            encode_address(collateral),
            encode_uint(amount),
            encode_uint(minimum_return),
        )
        return await self.rpc.send_transaction(
            from_address=account,
            to_address=market_maker,
            data=data,
            gas_limit=gas_limit,
        )


class OnchainBancorFormula:
    """Evaluates the curve with the deployed Bancor formula contract."""

    def __init__(
        self,
        rpc: JsonRpcClient,
        registry: Optional[ContractRegistry] = None,
    ):
        self.rpc = rpc
        self.registry = registry or get_registry()

    async def _evaluate(self, signature: str, supply: int, balance: int, ratio: int, amount: int) -> Amount:
        formula = _require(self.registry, BANCOR_FORMULA)
        raw = await self.rpc.eth_call(
            formula,
            encode_call(
                signature,
                encode_uint(supply),
                encode_uint(balance),
                encode_uint(ratio),
                encode_uint(amount),
            ),
        )
        return Amount(decode_uint(raw))

    async def calculate_purchase_return(
        self, supply: int, balance: int, ratio: int, amount: int
    ) -> Amount:
        return await self._evaluate(CALCULATE_PURCHASE_RETURN, supply, balance, ratio, amount)

    async def calculate_sale_return(
        self, supply: int, balance: int, ratio: int, amount: int
    ) -> Amount:
        return await self._evaluate(CALCULATE_SALE_RETURN, supply, balance, ratio, amount)
