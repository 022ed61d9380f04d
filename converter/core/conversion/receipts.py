"""
Receipt parsing.

The order transaction emits the market maker's ``MakeBuyOrder`` or
``MakeSellOrder`` event; its ``returnedAmount`` field is what the user
actually received. When several matching logs are present the last one is
authoritative.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ...providers.abi import decode_value, decode_words, event_topic, strip_0x
from ..amount import Amount
from ..curve.models import ConversionDirection
from ..errors import ReceiptDecodingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSchema:
    """ABI description of a single event."""
    name: str
    inputs: Tuple[EventInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(item.type for item in self.inputs)})"

    @property
    def topic(self) -> str:
        return event_topic(self.signature)

    def matches(self, log: Dict[str, Any]) -> bool:
        topics = log.get("topics") or []
        return bool(topics) and str(topics[0]).lower() == self.topic

    def decode(self, log: Dict[str, Any]) -> Dict[str, Any]:
        """Decode a raw log into ``{input name: value}``.

        Raises:
            ValueError: if topics or data do not fit the schema
        """
        if not self.matches(log):
            raise ValueError(f"Log is not a {self.name} event")

        indexed = [item for item in self.inputs if item.indexed]
        non_indexed = [item for item in self.inputs if not item.indexed]

        topics = log.get("topics") or []
        if len(topics) - 1 != len(indexed):
            raise ValueError(
                f"{self.name} expects {len(indexed)} indexed topics, got {len(topics) - 1}"
            )

        words = decode_words(log.get("data") or "0x")
        if len(words) != len(non_indexed):
            raise ValueError(
                f"{self.name} expects {len(non_indexed)} data words, got {len(words)}"
            )

        values: Dict[str, Any] = {}
        for item, topic in zip(indexed, topics[1:]):
            values[item.name] = decode_value(item.type, int(strip_0x(str(topic)), 16))
        for item, word in zip(non_indexed, words):
            values[item.name] = decode_value(item.type, word)
        return values


MAKE_BUY_ORDER = EventSchema(
    name="MakeBuyOrder",
    inputs=(
        EventInput("buyer", "address", indexed=True),
        EventInput("onBehalfOf", "address", indexed=True),
        EventInput("collateral", "address", indexed=True),
        EventInput("fee", "uint256"),
        EventInput("purchaseAmount", "uint256"),
        EventInput("returnedAmount", "uint256"),
        EventInput("feePct", "uint256"),
    ),
)

MAKE_SELL_ORDER = EventSchema(
    name="MakeSellOrder",
    inputs=(
        EventInput("seller", "address", indexed=True),
        EventInput("onBehalfOf", "address", indexed=True),
        EventInput("collateral", "address", indexed=True),
        EventInput("fee", "uint256"),
        EventInput("sellAmount", "uint256"),
        EventInput("returnedAmount", "uint256"),
        EventInput("feePct", "uint256"),
    ),
)

RETURNED_AMOUNT_FIELD = "returnedAmount"


def order_event_schema(direction: ConversionDirection) -> EventSchema:
    return MAKE_BUY_ORDER if direction.is_buy else MAKE_SELL_ORDER


class ReceiptParser:
    """Recovers the settled amount from the order transaction's receipt."""

    def __init__(
        self,
        receipts,
        schema: EventSchema,
        emitter: Optional[str] = None,
        field: str = RETURNED_AMOUNT_FIELD,
    ):
        """
        Args:
            receipts: ``ReceiptSource`` used to fetch receipts
            schema: Event carrying the settlement amount
            emitter: Only accept logs emitted by this address (if given)
            field: Event input holding the amount
        """
        self.receipts = receipts
        self.schema = schema
        self.emitter = emitter.lower() if emitter else None
        self.field = field

    @classmethod
    def for_direction(
        cls,
        receipts,
        direction: ConversionDirection,
        emitter: Optional[str] = None,
    ) -> "ReceiptParser":
        return cls(receipts, order_event_schema(direction), emitter=emitter)

    def matching_logs(self, receipt: Dict[str, Any]) -> List[Dict[str, Any]]:
        logs = receipt.get("logs")
        if not isinstance(logs, list):
            raise ReceiptDecodingError("Receipt has no log list")
        return [
            log for log in logs
            if isinstance(log, dict)
            and self.schema.matches(log)
            and (self.emitter is None or str(log.get("address", "")).lower() == self.emitter)
        ]

    async def extract_converted_amount(self, tx_hash: str) -> Amount:
        """Amount returned to the user by the mined order ``tx_hash``.

        Raises:
            ReceiptDecodingError: receipt missing, event absent or malformed
        """
        receipt = await self.receipts.get_transaction_receipt(tx_hash)
        if not receipt:
            raise ReceiptDecodingError(f"No receipt for {tx_hash}", tx_hash=tx_hash)

        try:
            logs = self.matching_logs(receipt)
        except ReceiptDecodingError as e:
            raise ReceiptDecodingError(f"{e.message} ({tx_hash})", tx_hash=tx_hash) from e

        if not logs:
            raise ReceiptDecodingError(
                f"No {self.schema.name} event in receipt of {tx_hash}",
                tx_hash=tx_hash,
            )

        try:
            decoded = self.schema.decode(logs[-1])
            amount = Amount(decoded[self.field])
        except (ValueError, KeyError, TypeError) as e:
            raise ReceiptDecodingError(
                f"Malformed {self.schema.name} event in {tx_hash}: {e}",
                tx_hash=tx_hash,
            ) from e

        logger.info(f"Order {tx_hash} settled {amount} ({self.schema.name})")
        return amount
