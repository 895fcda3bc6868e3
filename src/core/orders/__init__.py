"""Order validation and execution package."""

from src.core.orders.events import OrderEvent, OrderEventBus
from src.core.orders.scheduler import (
    ExecutionScheduler,
    ManualExecutionScheduler,
    QueueExecutionScheduler,
)
from src.core.orders.service import (
    OrderEngine,
    OrderEngineError,
    OrderIdempotencyConflictError,
    OrderNotFoundError,
    OrderRejectedError,
    OrderTransitionError,
    PortfolioNotFoundError,
    transition_order,
)

__all__ = [
    "ExecutionScheduler",
    "ManualExecutionScheduler",
    "OrderEngine",
    "OrderEngineError",
    "OrderEvent",
    "OrderEventBus",
    "OrderIdempotencyConflictError",
    "OrderNotFoundError",
    "OrderRejectedError",
    "OrderTransitionError",
    "PortfolioNotFoundError",
    "QueueExecutionScheduler",
    "transition_order",
]
