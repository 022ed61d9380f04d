"""ERC-20 reads and approvals for the converting account."""

from __future__ import annotations

from typing import Optional

from ..core.amount import Amount
from .abi import decode_uint, encode_address, encode_call, encode_uint
from .base import TokenGateway
from .rpc import JsonRpcClient

ALLOWANCE = "allowance(address,address)"
BALANCE_OF = "balanceOf(address)"
APPROVE = "approve(address,uint256)"


class ERC20Provider(TokenGateway):
    """One ERC-20 token reached through the node's JSON-RPC."""

    name = "erc20"

    def __init__(self, rpc: JsonRpcClient, token_address: str, approval_gas_limit: Optional[int] = None):
        self.rpc = rpc
        self.token_address = token_address.lower()
        self.approval_gas_limit = approval_gas_limit

    async def ready(self) -> bool:
        return bool(self.token_address)

    async def read_allowance(self, owner: str, spender: str) -> Amount:
        raw = await self.rpc.eth_call(
            self.token_address,
            encode_call(ALLOWANCE, encode_address(owner), encode_address(spender)),
        )
        return Amount(decode_uint(raw))

    async def read_balance(self, owner: str) -> Amount:
        raw = await self.rpc.eth_call(
            self.token_address,
            encode_call(BALANCE_OF, encode_address(owner)),
        )
        return Amount(decode_uint(raw))

    async def submit_approval(self, owner: str, spender: str, amount: int) -> str:
        data = encode_call(APPROVE, encode_address(spender), encode_uint(amount))
        return await self.rpc.send_transaction(
            from_address=owner,
            to_address=self.token_address,
            data=data,
            gas_limit=self.approval_gas_limit,
        )
