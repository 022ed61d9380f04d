"""
JSON-RPC client for an Ethereum node.

Signing happens in the node or wallet behind the endpoint; the client only
sends ``eth_sendTransaction`` requests for the configured account.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.errors import RpcError, TransientReadError
from .base import ReceiptSource

logger = logging.getLogger(__name__)


class JsonRpcClient(ReceiptSource):
    """Thin async JSON-RPC wrapper over httpx."""

    name = "rpc"

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url or settings.rpc_url
        self.poll_interval_seconds = poll_interval_seconds or settings.receipt_poll_seconds
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds or settings.request_timeout_seconds
        )
        self._request_id = 0

    async def ready(self) -> bool:
        return bool(self.rpc_url)

    async def call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call and return its ``result``."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientReadError(f"RPC transport error on {method}: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            raise TransientReadError(f"RPC returned a non-JSON body on {method}: {e}") from e
        if "error" in result:
            error = result["error"] or {}
            raise RpcError(
                f"RPC error on {method}: {error.get('message', error)}",
                code=error.get("code"),
                data=error.get("data"),
            )

        return result.get("result")

    async def eth_call(self, to_address: str, data: str, block: str = "latest") -> str:
        return await self.call("eth_call", [{"to": to_address, "data": data}, block])

    async def send_transaction(
        self,
        from_address: str,
        to_address: str,
        data: str,
        value: int = 0,
        gas_limit: Optional[int] = None,
    ) -> str:
        """Broadcast a transaction; returns its hash."""
        tx: Dict[str, Any] = {
            "from": from_address,
            "to": to_address,
            "data": data,
            "value": hex(value),
        }
        if gas_limit:
            tx["gas"] = hex(gas_limit)

        tx_hash = await self.call("eth_sendTransaction", [tx])
        logger.info(f"Transaction submitted: {tx_hash}")
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Poll until ``tx_hash`` is mined.

        Read errors while polling are logged and polling continues.

        Raises:
            asyncio.TimeoutError: if the transaction is not mined in time
        """
        timeout = settings.receipt_timeout_seconds if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + timeout

        while True:
            try:
                receipt = await self.get_transaction_receipt(tx_hash)
                if receipt:
                    return receipt
            except TransientReadError as e:
                logger.warning(f"Error checking transaction status: {e}")

            if time.monotonic() >= deadline:
                raise asyncio.TimeoutError(f"Transaction {tx_hash} not mined after {timeout}s")

            await asyncio.sleep(self.poll_interval_seconds)

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()
