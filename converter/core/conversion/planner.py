"""
Transaction Step Planner

Builds the ordered transaction plan for a confirmed quote and drives its
execution strictly in sequence:

1. Reset approval to zero (buy only; an insufficient, non-zero allowance exists)
2. Raise approval (buy only; the allowance does not cover the order)
3. Submit the order, wait for it to be mined, decode the settled amount

Some tokens reject changing a non-zero allowance to another non-zero value,
so the reset always precedes the raise. Submissions are never retried
automatically; a failed plan must be rebuilt from a fresh allowance read.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from ...config import settings
from ...logging_config import bind_conversion_context
from ..amount import Amount
from ..curve.models import ConversionDirection, ConversionQuote
from ..errors import (
    ConversionError,
    DuplicateSubmissionError,
    InvalidTransitionError,
    PlanConstructionError,
    ReceiptDecodingError,
    StepSubmissionError,
    TransactionTimeoutError,
)
from .models import (
    AllowanceState,
    CancellationToken,
    OrderReceipt,
    PlannerState,
    PlannerTransition,
    StepKind,
    StepPlan,
    StepProgress,
    StepStatus,
    TransactionStep,
)
from .receipts import ReceiptParser

TransitionCallback = Callable[[PlannerTransition], Coroutine[Any, Any, None]]
StepCallback = Callable[[int, StepProgress], Coroutine[Any, Any, None]]


def order_label(direction: ConversionDirection) -> str:
    return f"Make {'buy' if direction.is_buy else 'sell'} order"


def build_plan(
    quote: ConversionQuote,
    allowance: Optional[AllowanceState],
    tokens,
    orders,
    account: str,
    on_order_mined=None,
) -> StepPlan:
    """
    Build the step plan for ``quote``.

    Deterministic: the same quote and allowance always yield the same steps in
    the same order.

    Args:
        quote: Confirmed quote; supplies the order amount and minimum return
        allowance: Fresh allowance read (required for buy orders)
        tokens: ``TokenGateway`` used for approvals
        orders: ``OrderGateway`` used for the order itself
        account: Converting account
        on_order_mined: Hook run with the order hash once it is mined
    """
    direction = quote.direction
    order_amount = Amount(quote.order_amount)
    steps: List[TransactionStep] = []

    if direction.is_buy:
        if allowance is None:
            raise PlanConstructionError("Buy orders need a fresh allowance read")

        if not allowance.covers(order_amount):
            spender = allowance.spender
            if allowance.current_allowance > 0:
                steps.append(
                    TransactionStep(
                        kind=StepKind.RESET_APPROVAL,
                        label="Reset approval",
                        action=lambda: tokens.submit_approval(account, spender, 0),
                        amount=Amount(0),
                        spender=spender,
                    )
                )
            steps.append(
                TransactionStep(
                    kind=StepKind.RAISE_APPROVAL,
                    label="Raise approval",
                    action=lambda: tokens.submit_approval(account, spender, order_amount),
                    amount=order_amount,
                    spender=spender,
                )
            )

    minimum_return = Amount(quote.minimum_received)
    steps.append(
        TransactionStep(
            kind=StepKind.ORDER,
            label=order_label(direction),
            action=lambda: orders.submit_order(account, order_amount, direction, minimum_return),
            amount=order_amount,
            on_mined=on_order_mined,
        )
    )

    return StepPlan(
        quote=quote,
        steps=tuple(steps),
        allowance=allowance.current_allowance if allowance else None,
    )


class TransactionStepPlanner:
    """
    Owns one conversion attempt from planning to settlement.

    Features:
    - Validates transitions against an explicit transition map
    - Reads the allowance fresh for every plan
    - Submits each step exactly once, in order
    - Waits for the order to be mined and decodes the settled amount
    - Cooperative cancellation: nothing is published after ``cancel()``
    """

    TRANSITIONS: Dict[PlannerState, Set[PlannerState]] = {
        PlannerState.IDLE: {
            PlannerState.PLANNING,
            PlannerState.CANCELLED,
        },
        PlannerState.PLANNING: {
            PlannerState.EXECUTING,
            PlannerState.FAILED,
            PlannerState.CANCELLED,
        },
        PlannerState.EXECUTING: {
            PlannerState.EXECUTING,   # Next step
            PlannerState.DONE,
            PlannerState.FAILED,
            PlannerState.CANCELLED,
        },
        PlannerState.DONE: {PlannerState.IDLE},
        PlannerState.FAILED: {PlannerState.IDLE},
        PlannerState.CANCELLED: {PlannerState.IDLE},
    }

    def __init__(
        self,
        tokens,
        orders,
        receipts,
        account: str,
        display_delay_seconds: Optional[float] = None,
        receipt_timeout_seconds: Optional[float] = None,
        receipt_emitter: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            tokens: ``TokenGateway`` for allowance reads and approvals
            orders: ``OrderGateway`` for the order
            receipts: ``ReceiptSource`` for mining and receipt decoding
            account: Converting account
            display_delay_seconds: Pause before the plan is published
            receipt_timeout_seconds: Max wait for the order to be mined
            receipt_emitter: Only decode settlement logs from this address
            logger: Optional logger
        """
        self.tokens = tokens
        self.orders = orders
        self.receipts = receipts
        self.account = account
        self.display_delay_seconds = (
            settings.plan_display_delay_seconds
            if display_delay_seconds is None
            else display_delay_seconds
        )
        self.receipt_timeout_seconds = (
            settings.receipt_timeout_seconds
            if receipt_timeout_seconds is None
            else receipt_timeout_seconds
        )
        self.receipt_emitter = receipt_emitter
        self.logger = logger or logging.getLogger(__name__)

        self._state = PlannerState.IDLE
        self._plan: Optional[StepPlan] = None
        self._progress: List[StepProgress] = []
        self._current_index: Optional[int] = None
        self._failed_index: Optional[int] = None
        self._receipt: Optional[OrderReceipt] = None
        self._error: Optional[ConversionError] = None
        self._token = CancellationToken()
        # Token of the attempt currently inside execute()
        self._executing_token: Optional[CancellationToken] = None

        self.history: List[PlannerTransition] = []
        self._transition_callbacks: List[TransitionCallback] = []
        self._step_callbacks: List[StepCallback] = []

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlannerState:
        return self._state

    @property
    def plan(self) -> Optional[StepPlan]:
        return self._plan

    @property
    def progress(self) -> List[StepProgress]:
        return list(self._progress)

    @property
    def current_index(self) -> Optional[int]:
        return self._current_index

    @property
    def failed_index(self) -> Optional[int]:
        return self._failed_index

    @property
    def receipt(self) -> Optional[OrderReceipt]:
        return self._receipt

    @property
    def error(self) -> Optional[ConversionError]:
        return self._error

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def can_transition_to(self, to_state: PlannerState) -> bool:
        return to_state in self.TRANSITIONS.get(self._state, set())

    def register_transition_callback(self, callback: TransitionCallback) -> None:
        """Register a coroutine called after every state change."""
        self._transition_callbacks.append(callback)

    def register_step_callback(self, callback: StepCallback) -> None:
        """Register a coroutine called whenever a step's progress changes."""
        self._step_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def build(self, quote: ConversionQuote) -> StepPlan:
        """Read the allowance and build the plan (IDLE -> PLANNING)."""
        await self._transition_to(PlannerState.PLANNING, reason="Building plan")
        token = self._token

        try:
            allowance = await self._read_allowance(quote.direction)
            parser = ReceiptParser.for_direction(
                self.receipts,
                quote.direction,
                emitter=self.receipt_emitter,
            )

            async def on_order_mined(tx_hash: str) -> Amount:
                return await parser.extract_converted_amount(tx_hash)

            plan = build_plan(
                quote=quote,
                allowance=allowance,
                tokens=self.tokens,
                orders=self.orders,
                account=self.account,
                on_order_mined=on_order_mined,
            )
        except Exception as e:
            error = e if isinstance(e, PlanConstructionError) else PlanConstructionError(
                f"Failed to build conversion plan: {e}"
            )
            if not token.cancelled:
                self._error = error
                await self._transition_to(
                    PlannerState.FAILED,
                    reason="Plan construction failed",
                    error_message=str(e),
                )
            raise error from e

        if self.display_delay_seconds:
            await asyncio.sleep(self.display_delay_seconds)

        if token.cancelled:
            return plan

        self._plan = plan
        self._progress = [StepProgress() for _ in plan.steps]
        bind_conversion_context(plan_id=plan.id)
        self.logger.info(
            "Plan %s built: %s",
            plan.id,
            " -> ".join(kind.value for kind in plan.kinds),
        )
        return plan

    async def execute(self) -> Optional[OrderReceipt]:
        """Submit every step in order (PLANNING -> EXECUTING -> DONE)."""
        if self._plan is None:
            raise InvalidTransitionError(self._state, PlannerState.EXECUTING, "No plan to execute")
        if self._executing_token is self._token:
            raise InvalidTransitionError(self._state, PlannerState.EXECUTING, "Plan is already executing")

        token = self._token
        self._executing_token = token
        plan = self._plan
        try:
            last_index = len(plan.steps) - 1
            for index, step in enumerate(plan.steps):
                if token.cancelled:
                    return None

                self._current_index = index
                await self._transition_to(
                    PlannerState.EXECUTING,
                    step_index=index,
                    reason=step.label,
                )

                tx_hash = await self._submit_step(index, step, token)
                if token.cancelled:
                    return None

                if index == last_index:
                    return await self._settle(index, step, tx_hash, token)
            return None
        finally:
            if self._executing_token is token:
                self._executing_token = None

    async def run(self, quote: ConversionQuote) -> Optional[OrderReceipt]:
        """Build and execute in one call."""
        await self.build(quote)
        if self.cancelled:
            return None
        return await self.execute()

    async def cancel(self, reason: Optional[str] = None) -> None:
        """Stop publishing; transactions already broadcast stay broadcast."""
        if self._state is PlannerState.CANCELLED:
            return
        if self.can_transition_to(PlannerState.CANCELLED):
            await self._transition_to(
                PlannerState.CANCELLED,
                reason=reason or "Cancelled by user",
            )
        self._token.cancel()

    async def reset(self) -> None:
        """Return to IDLE with no plan; the next attempt starts from scratch."""
        if self._state is not PlannerState.IDLE:
            if not self.can_transition_to(PlannerState.IDLE):
                # Leaving mid-flight: cancel first so late results are dropped.
                await self.cancel("Returned to form")
            await self._transition_to(PlannerState.IDLE, reason="Reset for new conversion")

        self._token = CancellationToken()
        self._plan = None
        self._progress = []
        self._current_index = None
        self._failed_index = None
        self._receipt = None
        self._error = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _read_allowance(self, direction: ConversionDirection) -> Optional[AllowanceState]:
        if not direction.is_buy:
            return None
        spender = self.orders.spender_address
        current = await self.tokens.read_allowance(self.account, spender)
        return AllowanceState(
            owner=self.account,
            spender=spender,
            current_allowance=Amount(current),
        )

    async def _submit_step(
        self,
        index: int,
        step: TransactionStep,
        token: CancellationToken,
    ) -> str:
        progress = self._progress[index]
        if progress.status is not StepStatus.PENDING:
            raise DuplicateSubmissionError(
                f"Step {index} ({step.label}) was already submitted",
                step_index=index,
                tx_hash=progress.tx_hash,
            )

        progress.status = StepStatus.SUBMITTING
        await self._publish_step(index, token)

        try:
            tx_hash = await step.action()
        except Exception as e:
            progress.status = StepStatus.FAILED
            progress.error = str(e)
            error = StepSubmissionError(f"{step.label} failed: {e}", step_index=index)
            await self._fail(index, error, token)
            raise error from e

        progress.status = StepStatus.SUBMITTED
        progress.tx_hash = tx_hash
        progress.submitted_at = datetime.now(timezone.utc)
        self.logger.info(f"Step {index} ({step.label}) submitted: {tx_hash}")
        await self._publish_step(index, token)

        if step.on_submitted:
            await step.on_submitted(tx_hash)

        return tx_hash

    async def _settle(
        self,
        index: int,
        step: TransactionStep,
        tx_hash: str,
        token: CancellationToken,
    ) -> Optional[OrderReceipt]:
        progress = self._progress[index]

        try:
            mined = await self.receipts.wait_for_receipt(
                tx_hash,
                timeout_seconds=self.receipt_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            progress.status = StepStatus.FAILED
            progress.error = "Timed out waiting for the order to be mined"
            error = TransactionTimeoutError(progress.error, step_index=index, tx_hash=tx_hash)
            await self._fail(index, error, token)
            raise error from e
        except Exception as e:
            progress.status = StepStatus.FAILED
            progress.error = f"Could not confirm the order was mined: {e}"
            error = StepSubmissionError(progress.error, step_index=index, tx_hash=tx_hash)
            await self._fail(index, error, token)
            raise error from e

        if _receipt_reverted(mined):
            progress.status = StepStatus.FAILED
            progress.error = "Order transaction reverted"
            error = StepSubmissionError(progress.error, step_index=index, tx_hash=tx_hash)
            await self._fail(index, error, token)
            raise error

        if token.cancelled:
            return None

        progress.status = StepStatus.MINED
        progress.mined_at = datetime.now(timezone.utc)
        await self._publish_step(index, token)

        converted_total: Optional[Amount] = None
        if step.on_mined:
            try:
                converted_total = await step.on_mined(tx_hash)
            except ReceiptDecodingError as e:
                await self._fail(index, e, token)
                raise
            except Exception as e:
                error = ReceiptDecodingError(
                    f"Could not read settled amount for {tx_hash}: {e}",
                    tx_hash=tx_hash,
                )
                await self._fail(index, error, token)
                raise error from e

        if token.cancelled:
            return None

        self._receipt = OrderReceipt(
            converted_total=Amount(converted_total if converted_total is not None else 0),
            tx_hash=tx_hash,
            direction=self._plan.direction,
        )
        await self._transition_to(
            PlannerState.DONE,
            step_index=index,
            reason=f"Converted {self._receipt.converted_total}",
        )
        return self._receipt

    async def _fail(
        self,
        index: int,
        error: ConversionError,
        token: CancellationToken,
    ) -> None:
        if token.cancelled:
            self.logger.warning(f"Step {index} of an abandoned attempt failed: {error}")
            return
        self._error = error
        self._failed_index = index
        self.logger.error(f"Conversion halted at step {index}: {error}")
        await self._publish_step(index, token)
        await self._transition_to(
            PlannerState.FAILED,
            step_index=index,
            reason="Step failed",
            error_message=str(error),
        )

    async def _transition_to(
        self,
        to_state: PlannerState,
        step_index: Optional[int] = None,
        reason: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> PlannerTransition:
        from_state = self._state
        if not self.can_transition_to(to_state):
            raise InvalidTransitionError(
                from_state,
                to_state,
                f"Invalid transition from {from_state.value} to {to_state.value}. "
                f"Allowed: {sorted(s.value for s in self.TRANSITIONS.get(from_state, set()))}",
            )

        transition = PlannerTransition(
            from_state=from_state,
            to_state=to_state,
            step_index=step_index,
            reason=reason,
            error_message=error_message,
        )
        self._state = to_state
        self.history.append(transition)

        self.logger.info(
            f"Planner: {from_state.value} -> {to_state.value}"
            f"{f' [step {step_index}]' if step_index is not None else ''}"
            f"{f' ({reason})' if reason else ''}"
        )

        for callback in self._transition_callbacks:
            try:
                await callback(transition)
            except Exception as e:
                self.logger.error(f"Transition callback error: {e}")

        return transition

    async def _publish_step(self, index: int, token: CancellationToken) -> None:
        if token.cancelled:
            return
        progress = self._progress[index]
        for callback in self._step_callbacks:
            try:
                await callback(index, progress)
            except Exception as e:
                self.logger.error(f"Step callback error: {e}")


def _receipt_reverted(receipt: Dict[str, Any]) -> bool:
    status = receipt.get("status")
    if status is None:
        return False
    if isinstance(status, str):
        return int(status, 16) == 0
    return int(status) == 0
