"""Chain collaborators: JSON-RPC client, market maker and ERC-20 gateways"""

from .base import MarketReader, OrderGateway, Provider, ReceiptSource, TokenGateway
from .rpc import JsonRpcClient

__all__ = [
    "MarketReader",
    "OrderGateway",
    "Provider",
    "ReceiptSource",
    "TokenGateway",
    "JsonRpcClient",
]
