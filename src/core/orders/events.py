import logging
from threading import Lock
from typing import Callable, Literal

from pydantic import BaseModel, Field

from src.core.models import Order

logger = logging.getLogger(__name__)

OrderEventType = Literal["ORDER_CREATED", "ORDER_EXECUTED", "ORDER_FAILED"]


class OrderEvent(BaseModel):
    event_type: OrderEventType = Field(description="Domain event type.")
    order: Order = Field(description="Order snapshot at the time of the event.")


OrderEventHandler = Callable[[OrderEvent], None]


class OrderEventBus:
    """
    In-process fan-out of order lifecycle events to presentation-layer subscribers.

    A failing subscriber is logged and skipped; it never rolls back the ledger
    change that produced the event.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._handlers: list[OrderEventHandler] = []

    def subscribe(self, handler: OrderEventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: OrderEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "order.event_handler_failed",
                    extra={
                        "extra_fields": {
                            "event_type": event.event_type,
                            "order_id": event.order.order_id,
                        }
                    },
                )
