"""
Transaction plan models.

A conversion is executed as an ordered, immutable ``StepPlan`` of one to three
``TransactionStep``s. Per-step progress is tracked separately so the plan
itself never changes once execution starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from uuid import uuid4

from ..amount import Amount
from ..curve.models import ConversionDirection, ConversionQuote


class PlannerState(str, Enum):
    """Lifecycle of one conversion attempt."""
    IDLE = "idle"                 # No plan; form is editable
    PLANNING = "planning"         # Reading allowance and building the plan
    EXECUTING = "executing"       # Submitting step ``current_index``
    DONE = "done"                 # Order mined and receipt decoded
    FAILED = "failed"             # Halted at ``failed_index``
    CANCELLED = "cancelled"       # User left; nothing further is published


class StepKind(str, Enum):
    RESET_APPROVAL = "reset_approval"
    RAISE_APPROVAL = "raise_approval"
    ORDER = "order"


class StepStatus(str, Enum):
    PENDING = "pending"           # Not yet submitted
    SUBMITTING = "submitting"     # Waiting for the wallet/node to return a hash
    SUBMITTED = "submitted"       # Broadcast
    MINED = "mined"               # Final step only
    FAILED = "failed"


TxAction = Callable[[], Awaitable[str]]
TxHook = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class TransactionStep:
    """One transaction to submit, and what to do once it is broadcast/mined."""
    kind: StepKind
    label: str
    action: TxAction
    amount: Amount
    spender: Optional[str] = None
    on_submitted: Optional[TxHook] = None
    on_mined: Optional[TxHook] = None


@dataclass(frozen=True)
class StepPlan:
    """Ordered steps for one conversion attempt."""
    quote: ConversionQuote
    steps: Tuple[TransactionStep, ...]
    allowance: Optional[Amount] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self):
        if not 1 <= len(self.steps) <= 3:
            raise ValueError(f"A plan has 1 to 3 steps, got {len(self.steps)}")
        if self.steps[-1].kind is not StepKind.ORDER:
            raise ValueError("The order must be the last step")

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def kinds(self) -> Tuple[StepKind, ...]:
        return tuple(step.kind for step in self.steps)

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(step.label for step in self.steps)

    @property
    def direction(self) -> ConversionDirection:
        return self.quote.direction


@dataclass(frozen=True)
class AllowanceState:
    """Allowance read immediately before planning."""
    owner: str
    spender: str
    current_allowance: Amount
    read_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def covers(self, amount: int) -> bool:
        return self.current_allowance >= amount


@dataclass
class StepProgress:
    """Mutable execution record for one step."""
    status: StepStatus = StepStatus.PENDING
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    submitted_at: Optional[datetime] = None
    mined_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "txHash": self.tx_hash,
            "error": self.error,
            "submittedAt": self.submitted_at.isoformat() if self.submitted_at else None,
            "minedAt": self.mined_at.isoformat() if self.mined_at else None,
        }


@dataclass(frozen=True)
class OrderReceipt:
    """Settled outcome of the order step."""
    converted_total: Amount
    tx_hash: str
    direction: ConversionDirection


@dataclass
class PlannerTransition:
    """Record of a planner state change."""
    from_state: PlannerState
    to_state: PlannerState
    step_index: Optional[int] = None
    reason: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromState": self.from_state.value,
            "toState": self.to_state.value,
            "stepIndex": self.step_index,
            "reason": self.reason,
            "errorMessage": self.error_message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CancellationToken:
    """Cooperative cancellation flag shared with in-flight work."""
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True
