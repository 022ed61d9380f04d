from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..core.amount import Amount
from ..core.curve.models import ConversionDirection, CurveParameters


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass


class MarketReader(Provider):
    """Reads the bonding curve state from the market maker"""

    @abstractmethod
    async def read_curve_parameters(self) -> CurveParameters:
        """Virtual supply/balance, reserve ratio and tribute rates"""
        pass

    @abstractmethod
    async def read_bonded_supply(self) -> Amount:
        """Current total supply of the bonded token"""
        pass

    @abstractmethod
    async def read_reserve_balance(self) -> Amount:
        """Collateral currently held by the reserve"""
        pass


class TokenGateway(Provider):
    """ERC-20 reads and approvals for the collateral token"""

    @abstractmethod
    async def read_allowance(self, owner: str, spender: str) -> Amount:
        pass

    @abstractmethod
    async def read_balance(self, owner: str) -> Amount:
        pass

    @abstractmethod
    async def submit_approval(self, owner: str, spender: str, amount: int) -> str:
        """Broadcast approve(spender, amount); returns the transaction hash"""
        pass


class OrderGateway(Provider):
    """Submits conversion orders to the market maker"""

    @property
    @abstractmethod
    def spender_address(self) -> str:
        """Address that pulls collateral on buy orders"""
        pass

    @abstractmethod
    async def submit_order(
        self,
        account: str,
        amount: int,
        direction: ConversionDirection,
        minimum_return: int,
    ) -> str:
        """Broadcast the order; returns the transaction hash"""
        pass


class ReceiptSource(Provider):
    """Fetches mined transaction receipts"""

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt dict with a ``logs`` list, or None while pending"""
        pass

    @abstractmethod
    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Poll until the transaction is mined"""
        pass
