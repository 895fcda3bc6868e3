import logging
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Any, Callable, NoReturn, Optional

from src.core.common.canonical import hash_canonical_payload
from src.core.common.concentration import DEFAULT_CONCENTRATION_LIMIT_PCT, check_concentration
from src.core.common.ids import new_id, order_idempotency_key
from src.core.common.suitability import check_suitability
from src.core.ledger import (
    LedgerInvariantError,
    apply_cash_fill,
    apply_holding_fill,
    check_cash_sufficiency,
    estimate_order_cost,
)
from src.core.models import (
    AuditEvent,
    Instrument,
    Order,
    OrderSide,
    OrderStatus,
    OrderSubmitRequest,
    OrderSubmitResponse,
    OrderType,
    Portfolio,
    Transaction,
)
from src.core.orders.events import OrderEvent, OrderEventBus
from src.core.orders.scheduler import ExecutionScheduler
from src.core.store import WealthStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system:order-engine"

INSTRUMENT_NOT_FOUND = "INSTRUMENT_NOT_FOUND"
RISK_PROFILE_NOT_FOUND = "RISK_PROFILE_NOT_FOUND"
SUITABILITY_FAILED = "SUITABILITY_FAILED"
INSUFFICIENT_CASH = "INSUFFICIENT_CASH"
CONCENTRATION_LIMIT_EXCEEDED = "CONCENTRATION_LIMIT_EXCEEDED"
INSUFFICIENT_HOLDINGS = "INSUFFICIENT_HOLDINGS"

ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.EXECUTED, OrderStatus.FAILED},
    OrderStatus.EXECUTED: set(),
    OrderStatus.FAILED: set(),
}


class OrderEngineError(Exception):
    pass


class PortfolioNotFoundError(OrderEngineError):
    pass


class OrderNotFoundError(OrderEngineError):
    pass


class OrderIdempotencyConflictError(OrderEngineError):
    pass


class OrderTransitionError(OrderEngineError):
    pass


class OrderRejectedError(OrderEngineError):
    def __init__(self, code: str, reason: str) -> None:
        super().__init__(f"{code}: {reason}")
        self.code = code
        self.reason = reason


def transition_order(order: Order, to_status: OrderStatus, **fields: Any) -> Order:
    """
    The only way an order changes status. Terminal orders cannot move.
    """
    if to_status not in ALLOWED_TRANSITIONS[order.status]:
        raise OrderTransitionError(
            f"INVALID_TRANSITION: {order.status.value} -> {to_status.value}"
        )
    return order.model_copy(update={**fields, "status": to_status})


class OrderEngine:
    def __init__(
        self,
        *,
        store: WealthStore,
        scheduler: ExecutionScheduler,
        event_bus: Optional[OrderEventBus] = None,
        concentration_limit: Decimal = DEFAULT_CONCENTRATION_LIMIT_PCT,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._event_bus = event_bus or OrderEventBus()
        self._concentration_limit = concentration_limit
        self._clock = clock or _utc_now
        self._locks_guard = Lock()
        self._portfolio_locks: dict[str, Lock] = {}
        scheduler.bind(self._execute_scheduled)

    @property
    def event_bus(self) -> OrderEventBus:
        return self._event_bus

    def submit_order(
        self,
        *,
        portfolio_id: str,
        request: OrderSubmitRequest,
        actor_id: str,
        idempotency_key: Optional[str] = None,
    ) -> OrderSubmitResponse:
        # python mode keeps Decimals, which hash by normalized value
        request_hash = hash_canonical_payload(
            {"portfolio_id": portfolio_id, **request.model_dump()}
        )
        if idempotency_key is not None:
            replay = self._replay_submission(idempotency_key, request_hash)
            if replay is not None:
                return replay

        if self._store.get_portfolio(portfolio_id=portfolio_id) is None:
            raise PortfolioNotFoundError("PORTFOLIO_NOT_FOUND")
        with self._portfolio_lock(portfolio_id):
            portfolio = self._store.get_portfolio(portfolio_id=portfolio_id)
            if portfolio is None:
                raise PortfolioNotFoundError("PORTFOLIO_NOT_FOUND")
            instrument = self._validate_submission(portfolio=portfolio, request=request)

            now = self._clock()
            order = Order(
                order_id=new_id("ord"),
                portfolio_id=portfolio_id,
                instrument_id=request.instrument_id,
                side=request.side,
                order_type=request.order_type,
                quantity=request.quantity,
                limit_price=request.limit_price,
                status=OrderStatus.PENDING,
                created_by=actor_id,
                created_at=now,
                idempotency_key=idempotency_key
                or order_idempotency_key(portfolio_id, request.instrument_id),
                request_hash=request_hash,
            )
            audit_event = AuditEvent(
                event_id=new_id("aud"),
                event_type="ORDER_CREATED",
                actor_id=actor_id,
                client_id=portfolio.client_id,
                occurred_at=now,
                details={
                    "order_id": order.order_id,
                    "instrument": instrument.symbol,
                    "quantity": order.quantity,
                    "side": order.side.value,
                    "order_type": order.order_type.value,
                },
            )
            try:
                self._store.create_order(order, audit_event=audit_event)
            except ValueError:
                replay = self._replay_submission(order.idempotency_key, request_hash)
                if replay is None:
                    raise
                return replay

        logger.info(
            "order.accepted",
            extra={
                "extra_fields": {
                    "order_id": order.order_id,
                    "portfolio_id": portfolio_id,
                    "side": order.side.value,
                    "quantity": order.quantity,
                }
            },
        )
        self._event_bus.publish(OrderEvent(event_type="ORDER_CREATED", order=order))
        self._scheduler.schedule(order_id=order.order_id)
        return OrderSubmitResponse(
            order_id=order.order_id,
            status=order.status,
            idempotency_key=order.idempotency_key,
        )

    def execute_order(self, *, order_id: str) -> Order:
        """
        Fills a PENDING order. Any other status returns the stored order untouched,
        so repeated triggers for one order mutate the ledger once.
        """
        order = self._store.get_order(order_id=order_id)
        if order is None:
            raise OrderNotFoundError("ORDER_NOT_FOUND")

        with self._portfolio_lock(order.portfolio_id):
            order = self._store.get_order(order_id=order_id)
            if order is None:
                raise OrderNotFoundError("ORDER_NOT_FOUND")
            if order.status != OrderStatus.PENDING:
                logger.info(
                    "order.execution_skipped",
                    extra={"extra_fields": {"order_id": order_id, "status": order.status.value}},
                )
                return order
            return self._fill(order)

    def get_order(self, *, order_id: str) -> Order:
        order = self._store.get_order(order_id=order_id)
        if order is None:
            raise OrderNotFoundError("ORDER_NOT_FOUND")
        return order

    def get_order_history(self, *, portfolio_id: str) -> list[Order]:
        if self._store.get_portfolio(portfolio_id=portfolio_id) is None:
            raise PortfolioNotFoundError("PORTFOLIO_NOT_FOUND")
        return self._store.list_orders(portfolio_id=portfolio_id)

    def _validate_submission(
        self, *, portfolio: Portfolio, request: OrderSubmitRequest
    ) -> Instrument:
        instrument = self._store.get_instrument(instrument_id=request.instrument_id)
        if instrument is None:
            self._reject(portfolio, INSTRUMENT_NOT_FOUND, "Invalid instrument")

        risk_profile = self._store.get_risk_profile(client_id=portfolio.client_id)
        if risk_profile is None:
            self._reject(
                portfolio,
                RISK_PROFILE_NOT_FOUND,
                f"No risk profile on file for client {portfolio.client_id}",
            )
        suitability = check_suitability(instrument, risk_profile)
        if not suitability.suitable:
            self._reject(portfolio, SUITABILITY_FAILED, suitability.reason or "Not suitable")

        if request.side == OrderSide.BUY:
            estimated_cost = estimate_order_cost(
                instrument=instrument,
                order_type=request.order_type,
                quantity=request.quantity,
                limit_price=request.limit_price,
            )
            # cash already committed to PENDING buys is not available again
            committed_cash = self._pending_buy_commitment(portfolio.portfolio_id)
            cash_check = check_cash_sufficiency(
                portfolio.model_copy(
                    update={"cash": max(portfolio.cash - committed_cash, Decimal("0"))}
                ),
                estimated_cost,
            )
            if not cash_check.sufficient:
                self._reject(
                    portfolio,
                    INSUFFICIENT_CASH,
                    f"Required: {cash_check.required:.2f}, Available: {cash_check.available:.2f}",
                )

            concentration = check_concentration(
                holdings=self._store.list_holdings(portfolio_id=portfolio.portfolio_id),
                instruments=self._store.list_instruments(),
                portfolio=portfolio,
                instrument_id=instrument.instrument_id,
                quantity=request.quantity,
                estimated_price=(
                    request.limit_price if request.order_type == OrderType.LIMIT else None
                ),
                limit=self._concentration_limit,
            )
            if not concentration.acceptable:
                self._reject(
                    portfolio,
                    CONCENTRATION_LIMIT_EXCEEDED,
                    f"This order would result in {concentration.resulting_percentage:.1f}% "
                    f"concentration (limit {concentration.limit}%)",
                )
        else:
            holding = self._store.get_holding(
                portfolio_id=portfolio.portfolio_id, instrument_id=instrument.instrument_id
            )
            held = holding.quantity if holding is not None else 0
            committed = sum(
                o.quantity
                for o in self._store.list_orders(
                    portfolio_id=portfolio.portfolio_id, status=OrderStatus.PENDING.value
                )
                if o.side == OrderSide.SELL and o.instrument_id == instrument.instrument_id
            )
            available = held - committed
            if request.quantity > available:
                self._reject(
                    portfolio,
                    INSUFFICIENT_HOLDINGS,
                    f"Requested: {request.quantity}, Available to sell: {max(available, 0)}",
                )
        return instrument

    def _pending_buy_commitment(self, portfolio_id: str) -> Decimal:
        committed = Decimal("0")
        for pending in self._store.list_orders(
            portfolio_id=portfolio_id, status=OrderStatus.PENDING.value
        ):
            if pending.side != OrderSide.BUY:
                continue
            instrument = self._store.get_instrument(instrument_id=pending.instrument_id)
            if instrument is None:
                continue
            committed += estimate_order_cost(
                instrument=instrument,
                order_type=pending.order_type,
                quantity=pending.quantity,
                limit_price=pending.limit_price,
            )
        return committed

    def _reject(self, portfolio: Portfolio, code: str, reason: str) -> NoReturn:
        logger.info(
            "order.rejected",
            extra={
                "extra_fields": {
                    "portfolio_id": portfolio.portfolio_id,
                    "code": code,
                }
            },
        )
        raise OrderRejectedError(code, reason)

    def _fill(self, order: Order) -> Order:
        instrument = self._store.get_instrument(instrument_id=order.instrument_id)
        if instrument is None:
            return self._fail(order, "Instrument not found")

        if order.order_type == OrderType.LIMIT and order.limit_price is not None:
            executed_price = order.limit_price
        else:
            executed_price = instrument.current_price
        if executed_price <= 0:
            return self._fail(order, "Invalid execution price")

        portfolio = self._store.get_portfolio(portfolio_id=order.portfolio_id)
        if portfolio is None:
            return self._fail(order, "Portfolio not found")
        holding = self._store.get_holding(
            portfolio_id=order.portfolio_id, instrument_id=order.instrument_id
        )
        if order.side == OrderSide.SELL and (holding is None or holding.quantity < order.quantity):
            return self._fail(order, "Insufficient holdings")

        now = self._clock()
        try:
            new_portfolio = apply_cash_fill(
                portfolio,
                side=order.side,
                quantity=order.quantity,
                executed_price=executed_price,
                now=now,
            )
            new_holding = apply_holding_fill(
                holding,
                portfolio_id=order.portfolio_id,
                instrument_id=order.instrument_id,
                side=order.side,
                quantity=order.quantity,
                executed_price=executed_price,
                now=now,
            )
        except LedgerInvariantError as exc:
            logger.warning(
                "order.ledger_invariant",
                extra={"extra_fields": {"order_id": order.order_id, "detail": str(exc)}},
            )
            reason = "Insufficient cash" if order.side == OrderSide.BUY else "Insufficient holdings"
            return self._fail(order, reason)

        amount = Decimal(order.quantity) * executed_price
        executed = transition_order(
            order,
            OrderStatus.EXECUTED,
            executed_at=now,
            executed_price=executed_price,
        )
        transaction = Transaction(
            transaction_id=new_id("txn"),
            portfolio_id=order.portfolio_id,
            instrument_id=order.instrument_id,
            type=order.side,
            quantity=order.quantity,
            price=executed_price,
            amount=amount,
            timestamp=now,
            order_id=order.order_id,
        )
        audit_event = AuditEvent(
            event_id=new_id("aud"),
            event_type="ORDER_EXECUTED",
            actor_id=SYSTEM_ACTOR,
            client_id=portfolio.client_id,
            occurred_at=now,
            details={
                "order_id": order.order_id,
                "instrument": instrument.symbol,
                "quantity": order.quantity,
                "side": order.side.value,
                "executed_price": str(executed_price),
                "amount": str(amount),
            },
        )
        committed = self._store.commit_fill(
            order=executed,
            portfolio=new_portfolio,
            holding=new_holding,
            transaction=transaction,
            audit_event=audit_event,
        )
        if not committed:
            return self.get_order(order_id=order.order_id)

        logger.info(
            "order.executed",
            extra={
                "extra_fields": {
                    "order_id": order.order_id,
                    "portfolio_id": order.portfolio_id,
                    "executed_price": str(executed_price),
                }
            },
        )
        self._event_bus.publish(OrderEvent(event_type="ORDER_EXECUTED", order=executed))
        return executed

    def _fail(self, order: Order, reason: str) -> Order:
        now = self._clock()
        failed = transition_order(order, OrderStatus.FAILED, failure_reason=reason)
        portfolio = self._store.get_portfolio(portfolio_id=order.portfolio_id)
        audit_event = AuditEvent(
            event_id=new_id("aud"),
            event_type="ORDER_FAILED",
            actor_id=SYSTEM_ACTOR,
            client_id=portfolio.client_id if portfolio is not None else None,
            occurred_at=now,
            details={"order_id": order.order_id, "reason": reason},
        )
        if not self._store.fail_order(failed, audit_event=audit_event):
            return self.get_order(order_id=order.order_id)

        logger.info(
            "order.failed",
            extra={"extra_fields": {"order_id": order.order_id, "reason": reason}},
        )
        self._event_bus.publish(OrderEvent(event_type="ORDER_FAILED", order=failed))
        return failed

    def _execute_scheduled(self, order_id: str) -> Order:
        return self.execute_order(order_id=order_id)

    def _replay_submission(
        self, idempotency_key: str, request_hash: str
    ) -> Optional[OrderSubmitResponse]:
        existing = self._store.get_order_by_idempotency_key(idempotency_key=idempotency_key)
        if existing is None:
            return None
        if existing.request_hash != request_hash:
            raise OrderIdempotencyConflictError("IDEMPOTENCY_KEY_CONFLICT: request hash mismatch")
        return OrderSubmitResponse(
            order_id=existing.order_id,
            status=existing.status,
            idempotency_key=existing.idempotency_key,
        )

    def _portfolio_lock(self, portfolio_id: str) -> Lock:
        with self._locks_guard:
            lock = self._portfolio_locks.get(portfolio_id)
            if lock is None:
                lock = Lock()
                self._portfolio_locks[portfolio_id] = lock
            return lock


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
