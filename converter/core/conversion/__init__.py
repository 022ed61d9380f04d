"""
Conversion Execution

Turns a confirmed quote into on-chain transactions:
- build_plan: 1-3 ordered steps (reset approval, raise approval, order)
- TransactionStepPlanner: runs the plan sequentially and tracks progress
- ReceiptParser: reads the settled amount from the order's event log

Usage:
    from converter.core.conversion import TransactionStepPlanner

    planner = TransactionStepPlanner(tokens, orders, receipts, account)
    receipt = await planner.run(quote)
    print(receipt.converted_total)
"""

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

from .receipts import (
    MAKE_BUY_ORDER,
    MAKE_SELL_ORDER,
    EventInput,
    EventSchema,
    ReceiptParser,
    order_event_schema,
)

from .planner import (
    TransactionStepPlanner,
    build_plan,
)

__all__ = [
    # Models
    "AllowanceState",
    "CancellationToken",
    "OrderReceipt",
    "PlannerState",
    "PlannerTransition",
    "StepKind",
    "StepPlan",
    "StepProgress",
    "StepStatus",
    "TransactionStep",
    # Receipts
    "MAKE_BUY_ORDER",
    "MAKE_SELL_ORDER",
    "EventInput",
    "EventSchema",
    "ReceiptParser",
    "order_event_schema",
    # Planner
    "TransactionStepPlanner",
    "build_plan",
]
