from decimal import Decimal
from typing import Optional, Protocol

from src.core.models import (
    AuditEvent,
    Holding,
    Instrument,
    ModelPortfolio,
    Order,
    Portfolio,
    RiskProfile,
    Transaction,
)


class WealthStore(Protocol):
    def get_instrument(self, *, instrument_id: str) -> Optional[Instrument]: ...

    def list_instruments(self) -> list[Instrument]: ...

    def upsert_instrument(self, instrument: Instrument) -> None: ...

    def update_instrument_price(self, *, instrument_id: str, price: Decimal) -> None: ...

    def delete_instrument(self, *, instrument_id: str) -> bool: ...

    def get_risk_profile(self, *, client_id: str) -> Optional[RiskProfile]: ...

    def upsert_risk_profile(self, profile: RiskProfile) -> None: ...

    def get_portfolio(self, *, portfolio_id: str) -> Optional[Portfolio]: ...

    def list_portfolios(self) -> list[Portfolio]: ...

    def create_portfolio(self, portfolio: Portfolio) -> None: ...

    def get_holding(self, *, portfolio_id: str, instrument_id: str) -> Optional[Holding]: ...

    def list_holdings(self, *, portfolio_id: str) -> list[Holding]: ...

    def seed_holding(self, holding: Holding) -> None: ...

    def create_order(self, order: Order, *, audit_event: AuditEvent) -> None: ...

    def get_order(self, *, order_id: str) -> Optional[Order]: ...

    def get_order_by_idempotency_key(self, *, idempotency_key: str) -> Optional[Order]: ...

    def list_orders(
        self, *, portfolio_id: str, status: Optional[str] = None
    ) -> list[Order]: ...

    def fail_order(self, order: Order, *, audit_event: AuditEvent) -> bool: ...

    def commit_fill(
        self,
        *,
        order: Order,
        portfolio: Portfolio,
        holding: Optional[Holding],
        transaction: Transaction,
        audit_event: AuditEvent,
    ) -> bool: ...

    def list_transactions(self, *, portfolio_id: str) -> list[Transaction]: ...

    def append_audit_event(self, event: AuditEvent) -> None: ...

    def list_audit_events(self, *, client_id: Optional[str] = None) -> list[AuditEvent]: ...

    def list_model_portfolios(self) -> list[ModelPortfolio]: ...

    def upsert_model_portfolio(self, model: ModelPortfolio) -> None: ...
