"""Service layer helpers"""

from .registry import ContractRegistry, TokenInfo, block_explorer_href, get_registry

__all__ = [
    "ContractRegistry",
    "TokenInfo",
    "block_explorer_href",
    "get_registry",
]
