"""
Error Classification

Defines the error taxonomy for the conversion engine. Transient read errors
are absorbed and retried by the price oracle; everything else is surfaced to
the caller and never retried automatically.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    TRANSIENT_READ = "transient_read"         # Price/parameter/allowance read failed
    INVALID_INPUT = "invalid_input"           # Unparseable or out-of-range input
    BLOCKING = "blocking"                     # Balance/allowance condition blocks submission
    SUBMISSION = "submission"                 # Signing rejected, node error, revert
    RECEIPT_DECODING = "receipt_decoding"     # Mined, but the settlement log is unreadable
    INVALID_TRANSITION = "invalid_transition" # Planner driven out of order
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False
    step_index: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class ConversionError(Exception):
    """Base class for conversion engine errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(
            category=self.category,
            recoverable=self.recoverable,
        )


class TransientReadError(ConversionError):
    """A chain read failed; safe to retry."""

    category = ErrorCategory.TRANSIENT_READ
    recoverable = True


class RpcError(TransientReadError):
    """JSON-RPC endpoint returned an error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data
        self.context.details.update({"code": code, "data": data})


class InvalidInputError(ConversionError):
    """User input cannot be turned into an amount."""

    category = ErrorCategory.INVALID_INPUT


class BlockingConditionError(ConversionError):
    """A balance/allowance condition prevents submission."""

    category = ErrorCategory.BLOCKING


class PlanConstructionError(ConversionError):
    """The transaction plan could not be built."""

    category = ErrorCategory.SUBMISSION


class StepSubmissionError(ConversionError):
    """A plan step failed to submit or its transaction reverted."""

    category = ErrorCategory.SUBMISSION

    def __init__(
        self,
        message: str,
        step_index: int,
        tx_hash: Optional[str] = None,
    ):
        super().__init__(
            message,
            ErrorContext(
                category=self.category,
                recoverable=False,
                step_index=step_index,
                tx_hash=tx_hash,
            ),
        )
        self.step_index = step_index
        self.tx_hash = tx_hash


class DuplicateSubmissionError(StepSubmissionError):
    """A step that already has a submission was asked to submit again."""


class TransactionTimeoutError(StepSubmissionError):
    """The final transaction was not mined in time."""


class ReceiptDecodingError(ConversionError):
    """The settlement event could not be decoded; funds may have moved."""

    category = ErrorCategory.RECEIPT_DECODING

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(
            message,
            ErrorContext(category=self.category, recoverable=False, tx_hash=tx_hash),
        )
        self.tx_hash = tx_hash


class InvalidTransitionError(ConversionError):
    """Raised when the planner is asked for a transition it does not allow."""

    category = ErrorCategory.INVALID_TRANSITION

    def __init__(self, from_state: Any, to_state: Any, message: Optional[str] = None):
        from_value = getattr(from_state, "value", from_state)
        to_value = getattr(to_state, "value", to_state)
        super().__init__(message or f"Invalid transition from {from_value} to {to_value}")
        self.from_state = from_state
        self.to_state = to_state


def classify_error(error: Exception) -> ErrorContext:
    """Classify an arbitrary exception for logging and retry decisions."""
    if isinstance(error, ConversionError):
        return error.context

    if isinstance(error, (httpx.TransportError, httpx.HTTPStatusError, TimeoutError, ConnectionError)):
        return ErrorContext(
            category=ErrorCategory.TRANSIENT_READ,
            recoverable=True,
            details={"type": type(error).__name__},
        )

    return ErrorContext(
        category=ErrorCategory.UNKNOWN,
        recoverable=False,
        details={"type": type(error).__name__},
    )
