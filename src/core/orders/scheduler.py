import logging
import queue
import threading
import time
from collections import deque
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

ExecutionHandler = Callable[[str], object]


class ExecutionScheduler(Protocol):
    def bind(self, handler: ExecutionHandler) -> None: ...

    def schedule(self, *, order_id: str) -> None: ...


class ManualExecutionScheduler(ExecutionScheduler):
    """Queues execution triggers until run_pending() is called."""

    def __init__(self) -> None:
        self._handler: Optional[ExecutionHandler] = None
        self._pending: deque[str] = deque()
        self._lock = threading.Lock()

    def bind(self, handler: ExecutionHandler) -> None:
        self._handler = handler

    def schedule(self, *, order_id: str) -> None:
        with self._lock:
            self._pending.append(order_id)

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def run_pending(self) -> int:
        if self._handler is None:
            raise RuntimeError("EXECUTION_HANDLER_NOT_BOUND")
        executed = 0
        while True:
            with self._lock:
                if not self._pending:
                    return executed
                order_id = self._pending.popleft()
            self._handler(order_id)
            executed += 1


_STOP = object()


class QueueExecutionScheduler(ExecutionScheduler):
    """
    Single-consumer worker that fills each order fill_delay_seconds after it
    was scheduled. One consumer means fills never run concurrently.
    """

    def __init__(
        self,
        *,
        fill_delay_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._fill_delay_seconds = max(0.0, fill_delay_seconds)
        self._clock = clock
        self._sleep = sleep
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._handler: Optional[ExecutionHandler] = None
        self._worker: Optional[threading.Thread] = None
        self._lifecycle_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def bind(self, handler: ExecutionHandler) -> None:
        self._handler = handler

    def schedule(self, *, order_id: str) -> None:
        self._queue.put((self._clock() + self._fill_delay_seconds, order_id))

    def start(self) -> None:
        with self._lifecycle_lock:
            if self.running:
                return
            if self._handler is None:
                raise RuntimeError("EXECUTION_HANDLER_NOT_BOUND")
            self._worker = threading.Thread(
                target=self._run, name="order-execution-worker", daemon=True
            )
            self._worker.start()

    def stop(self, *, timeout: Optional[float] = None) -> None:
        with self._lifecycle_lock:
            worker = self._worker
            if worker is None:
                return
            self._queue.put(_STOP)
            worker.join(timeout=timeout)
            self._worker = None

    def join(self) -> None:
        """Blocks until every scheduled trigger has been processed."""
        self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                due_at, order_id = item
                remaining = due_at - self._clock()
                if remaining > 0:
                    self._sleep(remaining)
                self._execute(order_id)
            finally:
                self._queue.task_done()

    def _execute(self, order_id: str) -> None:
        try:
            self._handler(order_id)
        except Exception:
            logger.exception(
                "order.execution_worker_error",
                extra={"extra_fields": {"order_id": order_id}},
            )
