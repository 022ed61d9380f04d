"""Known contracts, token metadata and explorer links for the configured chain."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from ..config import Settings, settings
from ..core.curve.models import ConversionDirection

# Block explorer transaction URL templates keyed by chain ID.
EXPLORER_TX_URLS: Dict[int, str] = {
    1: "https://etherscan.io/tx/{tx_hash}",
    4: "https://rinkeby.etherscan.io/tx/{tx_hash}",
    100: "https://blockscout.com/poa/xdai/tx/{tx_hash}",
}

MARKET_MAKER = "MARKET_MAKER"
BONDED_TOKEN = "BONDED_TOKEN"
COLLATERAL_TOKEN = "COLLATERAL_TOKEN"
RESERVE = "RESERVE"
BANCOR_FORMULA = "BANCOR_FORMULA"


class UnknownTokenError(KeyError):
    """Raised when decimals are requested for a token the registry does not know."""


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    address: str
    decimals: int


class ContractRegistry:
    """
    Read-only lookup of contract addresses and token metadata.

    Built once from settings; the mappings it exposes cannot be mutated
    afterwards.
    """

    def __init__(self, config: Optional[Settings] = None):
        config = config or settings
        self.chain_id = config.chain_id

        self._contracts: Mapping[str, str] = MappingProxyType(
            {
                MARKET_MAKER: config.market_maker_address,
                BONDED_TOKEN: config.bonded_token_address,
                COLLATERAL_TOKEN: config.collateral_token_address,
                RESERVE: config.reserve_address,
                BANCOR_FORMULA: config.formula_address,
            }
        )

        self.collateral = TokenInfo(
            symbol=config.collateral_symbol,
            address=config.collateral_token_address,
            decimals=config.collateral_decimals,
        )
        self.bonded = TokenInfo(
            symbol=config.bonded_symbol,
            address=config.bonded_token_address,
            decimals=config.bonded_decimals,
        )

        tokens: Dict[str, TokenInfo] = {}
        for token in (self.collateral, self.bonded):
            tokens[token.symbol.upper()] = token
            if token.address:
                tokens[token.address.lower()] = token
        self._tokens: Mapping[str, TokenInfo] = MappingProxyType(tokens)

    @property
    def contracts(self) -> Mapping[str, str]:
        return self._contracts

    def contract_address(self, name: str) -> Optional[str]:
        """Address of a known contract, or None when not configured."""
        return self._contracts.get(name) or None

    def token(self, symbol_or_address: str) -> TokenInfo:
        key = symbol_or_address.strip()
        info = self._tokens.get(key.lower()) or self._tokens.get(key.upper())
        if info is None:
            raise UnknownTokenError(symbol_or_address)
        return info

    def token_decimals(self, symbol_or_address: str) -> int:
        """Static decimals lookup; never touches the chain."""
        return self.token(symbol_or_address).decimals

    def source_token(self, direction: ConversionDirection) -> TokenInfo:
        return self.collateral if direction.is_buy else self.bonded

    def target_token(self, direction: ConversionDirection) -> TokenInfo:
        return self.bonded if direction.is_buy else self.collateral

    def explorer_href(self, tx_hash: str) -> Optional[str]:
        return block_explorer_href(tx_hash, self.chain_id)


def block_explorer_href(tx_hash: str, chain_id: int) -> Optional[str]:
    """Return the explorer URL for a transaction, or None for unknown chains."""
    template = EXPLORER_TX_URLS.get(chain_id)
    if template is None:
        return None
    return template.format(tx_hash=tx_hash)


# Singleton instance
_registry: Optional[ContractRegistry] = None


def get_registry() -> ContractRegistry:
    """Get the process-wide registry."""
    global _registry
    if _registry is None:
        _registry = ContractRegistry()
    return _registry
