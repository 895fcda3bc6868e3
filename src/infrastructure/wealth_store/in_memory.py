from copy import deepcopy
from decimal import Decimal
from threading import Lock
from typing import Optional

from src.core.models import (
    AuditEvent,
    Holding,
    Instrument,
    ModelPortfolio,
    Order,
    OrderStatus,
    Portfolio,
    RiskProfile,
    Transaction,
)
from src.core.store import WealthStore


class InMemoryWealthStore(WealthStore):
    def __init__(self) -> None:
        self._lock = Lock()
        self._instruments: dict[str, Instrument] = {}
        self._risk_profiles: dict[str, RiskProfile] = {}
        self._portfolios: dict[str, Portfolio] = {}
        self._holdings: dict[tuple[str, str], Holding] = {}
        self._orders: dict[str, Order] = {}
        self._order_by_idempotency: dict[str, str] = {}
        self._transactions: list[Transaction] = []
        self._audit_events: list[AuditEvent] = []
        self._model_portfolios: dict[str, ModelPortfolio] = {}

    def get_instrument(self, *, instrument_id: str) -> Optional[Instrument]:
        with self._lock:
            instrument = self._instruments.get(instrument_id)
            return deepcopy(instrument) if instrument is not None else None

    def list_instruments(self) -> list[Instrument]:
        with self._lock:
            rows = list(self._instruments.values())
        return [deepcopy(row) for row in sorted(rows, key=lambda x: x.instrument_id)]

    def upsert_instrument(self, instrument: Instrument) -> None:
        with self._lock:
            self._instruments[instrument.instrument_id] = deepcopy(instrument)

    def update_instrument_price(self, *, instrument_id: str, price: Decimal) -> None:
        with self._lock:
            instrument = self._instruments.get(instrument_id)
            if instrument is None:
                raise KeyError(instrument_id)
            self._instruments[instrument_id] = instrument.model_copy(
                update={"current_price": price}
            )

    def delete_instrument(self, *, instrument_id: str) -> bool:
        with self._lock:
            return self._instruments.pop(instrument_id, None) is not None

    def get_risk_profile(self, *, client_id: str) -> Optional[RiskProfile]:
        with self._lock:
            profile = self._risk_profiles.get(client_id)
            return deepcopy(profile) if profile is not None else None

    def upsert_risk_profile(self, profile: RiskProfile) -> None:
        with self._lock:
            self._risk_profiles[profile.client_id] = deepcopy(profile)

    def get_portfolio(self, *, portfolio_id: str) -> Optional[Portfolio]:
        with self._lock:
            portfolio = self._portfolios.get(portfolio_id)
            return deepcopy(portfolio) if portfolio is not None else None

    def list_portfolios(self) -> list[Portfolio]:
        with self._lock:
            rows = list(self._portfolios.values())
        return [deepcopy(row) for row in sorted(rows, key=lambda x: x.portfolio_id)]

    def create_portfolio(self, portfolio: Portfolio) -> None:
        with self._lock:
            self._portfolios[portfolio.portfolio_id] = deepcopy(portfolio)

    def get_holding(self, *, portfolio_id: str, instrument_id: str) -> Optional[Holding]:
        with self._lock:
            holding = self._holdings.get((portfolio_id, instrument_id))
            return deepcopy(holding) if holding is not None else None

    def list_holdings(self, *, portfolio_id: str) -> list[Holding]:
        with self._lock:
            rows = [h for (pid, _), h in self._holdings.items() if pid == portfolio_id]
        return [deepcopy(row) for row in sorted(rows, key=lambda x: x.instrument_id)]

    def seed_holding(self, holding: Holding) -> None:
        with self._lock:
            self._holdings[(holding.portfolio_id, holding.instrument_id)] = deepcopy(holding)

    def create_order(self, order: Order, *, audit_event: AuditEvent) -> None:
        with self._lock:
            if order.idempotency_key in self._order_by_idempotency:
                raise ValueError(f"DUPLICATE_IDEMPOTENCY_KEY: {order.idempotency_key}")
            self._orders[order.order_id] = deepcopy(order)
            self._order_by_idempotency[order.idempotency_key] = order.order_id
            self._audit_events.append(deepcopy(audit_event))

    def get_order(self, *, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return deepcopy(order) if order is not None else None

    def get_order_by_idempotency_key(self, *, idempotency_key: str) -> Optional[Order]:
        with self._lock:
            order_id = self._order_by_idempotency.get(idempotency_key)
            if order_id is None:
                return None
            return deepcopy(self._orders[order_id])

    def list_orders(self, *, portfolio_id: str, status: Optional[str] = None) -> list[Order]:
        with self._lock:
            rows = [o for o in self._orders.values() if o.portfolio_id == portfolio_id]
        if status is not None:
            rows = [row for row in rows if row.status == status]
        rows = sorted(rows, key=lambda x: (x.created_at, x.order_id), reverse=True)
        return [deepcopy(row) for row in rows]

    def fail_order(self, order: Order, *, audit_event: AuditEvent) -> bool:
        with self._lock:
            if not self._is_pending(order.order_id):
                return False
            self._orders[order.order_id] = deepcopy(order)
            self._audit_events.append(deepcopy(audit_event))
            return True

    def commit_fill(
        self,
        *,
        order: Order,
        portfolio: Portfolio,
        holding: Optional[Holding],
        transaction: Transaction,
        audit_event: AuditEvent,
    ) -> bool:
        with self._lock:
            if not self._is_pending(order.order_id):
                return False
            key = (order.portfolio_id, order.instrument_id)
            if holding is None:
                self._holdings.pop(key, None)
            else:
                self._holdings[key] = deepcopy(holding)
            self._portfolios[portfolio.portfolio_id] = deepcopy(portfolio)
            self._transactions.append(deepcopy(transaction))
            self._orders[order.order_id] = deepcopy(order)
            self._audit_events.append(deepcopy(audit_event))
            return True

    def list_transactions(self, *, portfolio_id: str) -> list[Transaction]:
        with self._lock:
            rows = [t for t in self._transactions if t.portfolio_id == portfolio_id]
        rows = sorted(rows, key=lambda x: (x.timestamp, x.transaction_id), reverse=True)
        return [deepcopy(row) for row in rows]

    def append_audit_event(self, event: AuditEvent) -> None:
        with self._lock:
            self._audit_events.append(deepcopy(event))

    def list_audit_events(self, *, client_id: Optional[str] = None) -> list[AuditEvent]:
        with self._lock:
            rows = list(self._audit_events)
        if client_id is not None:
            rows = [row for row in rows if row.client_id == client_id]
        return [deepcopy(row) for row in rows]

    def list_model_portfolios(self) -> list[ModelPortfolio]:
        with self._lock:
            rows = list(self._model_portfolios.values())
        rows = sorted(rows, key=lambda x: (x.min_risk_score, x.model_id))
        return [deepcopy(row) for row in rows]

    def upsert_model_portfolio(self, model: ModelPortfolio) -> None:
        with self._lock:
            self._model_portfolios[model.model_id] = deepcopy(model)

    def _is_pending(self, order_id: str) -> bool:
        stored = self._orders.get(order_id)
        return stored is not None and stored.status == OrderStatus.PENDING
