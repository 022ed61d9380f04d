"""
Tests for the contract registry.
"""

import pytest

from converter.config import Settings
from converter.core.curve import ConversionDirection
from converter.services.registry import (
    MARKET_MAKER,
    ContractRegistry,
    UnknownTokenError,
    block_explorer_href,
)

COLLATERAL = "0x" + "cc" * 20
BONDED = "0x" + "bb" * 20


@pytest.fixture
def registry():
    return ContractRegistry(
        Settings(
            chain_id=100,
            collateral_token_address=COLLATERAL.upper().replace("0X", "0x"),
            collateral_decimals=18,
            bonded_token_address=BONDED,
            bonded_decimals=6,
        )
    )


class TestTokens:
    def test_decimals_by_symbol(self, registry):
        assert registry.token_decimals("ANT") == 18
        assert registry.token_decimals("anj") == 6

    def test_decimals_by_address(self, registry):
        assert registry.token_decimals(COLLATERAL) == 18
        assert registry.token_decimals(BONDED.upper().replace("0X", "0x")) == 6

    def test_unknown_token(self, registry):
        with pytest.raises(UnknownTokenError):
            registry.token_decimals("DAI")

    def test_source_and_target(self, registry):
        assert registry.source_token(ConversionDirection.TO_BONDED).symbol == "ANT"
        assert registry.target_token(ConversionDirection.TO_BONDED).symbol == "ANJ"
        assert registry.source_token(ConversionDirection.FROM_BONDED).decimals == 6


class TestContracts:
    def test_missing_contract_is_none(self, registry):
        assert registry.contract_address(MARKET_MAKER) is None

    def test_read_only(self, registry):
        with pytest.raises(TypeError):
            registry.contracts[MARKET_MAKER] = "0x" + "00" * 20


class TestExplorer:
    def test_known_chains(self):
        assert block_explorer_href("0xabc", 1) == "https://etherscan.io/tx/0xabc"
        assert block_explorer_href("0xabc", 4) == "https://rinkeby.etherscan.io/tx/0xabc"

    def test_unknown_chain(self):
        assert block_explorer_href("0xabc", 1337) is None

    def test_registry_uses_configured_chain(self, registry):
        assert registry.explorer_href("0xabc") == "https://blockscout.com/poa/xdai/tx/0xabc"
