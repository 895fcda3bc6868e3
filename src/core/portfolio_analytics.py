from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from src.core.common.drift_analytics import (
    DEFAULT_DRIFT_THRESHOLD_PCT,
    calculate_drift,
    is_rebalance_required,
)
from src.core.insights import generate_next_best_actions, score_portfolio_health
from src.core.model_portfolios import select_model_portfolio
from src.core.models import (
    AllocationBreakdown,
    AuditEvent,
    DriftResult,
    Holding,
    NextBestAction,
    Portfolio,
    PortfolioHealth,
    PortfolioSummary,
    RiskProfile,
    Transaction,
)
from src.core.orders.service import PortfolioNotFoundError
from src.core.store import WealthStore
from src.core.valuation import calculate_portfolio_allocations, portfolio_total_value


class RiskProfileNotFoundError(Exception):
    pass


class PortfolioAnalyticsService:
    """Read-side queries over a portfolio: valuation, allocation, drift and insights."""

    def __init__(
        self,
        *,
        store: WealthStore,
        drift_threshold: Decimal = DEFAULT_DRIFT_THRESHOLD_PCT,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._drift_threshold = drift_threshold
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_portfolio_summary(self, *, portfolio_id: str) -> PortfolioSummary:
        portfolio = self._require_portfolio(portfolio_id)
        holdings = self._store.list_holdings(portfolio_id=portfolio_id)
        return PortfolioSummary(
            portfolio=portfolio,
            total_value=portfolio_total_value(
                portfolio, holdings, self._store.list_instruments()
            ),
            holdings_count=len(holdings),
        )

    def list_holdings(self, *, portfolio_id: str) -> List[Holding]:
        self._require_portfolio(portfolio_id)
        return self._store.list_holdings(portfolio_id=portfolio_id)

    def list_transactions(self, *, portfolio_id: str) -> List[Transaction]:
        self._require_portfolio(portfolio_id)
        return self._store.list_transactions(portfolio_id=portfolio_id)

    def list_audit_events(self, *, client_id: Optional[str] = None) -> List[AuditEvent]:
        return self._store.list_audit_events(client_id=client_id)

    def get_allocations(self, *, portfolio_id: str) -> List[AllocationBreakdown]:
        portfolio = self._require_portfolio(portfolio_id)
        return calculate_portfolio_allocations(
            self._store.list_holdings(portfolio_id=portfolio_id),
            self._store.list_instruments(),
            portfolio,
        )

    def get_drift(self, *, portfolio_id: str, risk_score: Optional[int] = None) -> DriftResult:
        """
        Drift of the current allocation from the model for risk_score, or for
        the client's stored risk profile when no score is given.

        A score that selects no model reports zero drift and no rebalance.
        """
        portfolio = self._require_portfolio(portfolio_id)
        if risk_score is None:
            risk_score = self._require_risk_profile(portfolio).score

        model = select_model_portfolio(risk_score, self._store.list_model_portfolios())
        if model is None:
            return DriftResult(
                portfolio_id=portfolio_id,
                risk_score=risk_score,
                drift_percentage=Decimal("0"),
                threshold=self._drift_threshold,
                rebalance_required=False,
            )

        drift = calculate_drift(self.get_allocations(portfolio_id=portfolio_id), model)
        return DriftResult(
            portfolio_id=portfolio_id,
            risk_score=risk_score,
            model_id=model.model_id,
            model_name=model.name,
            drift_percentage=drift,
            threshold=self._drift_threshold,
            rebalance_required=is_rebalance_required(drift, self._drift_threshold),
        )

    def get_next_best_actions(self, *, portfolio_id: str) -> List[NextBestAction]:
        portfolio = self._require_portfolio(portfolio_id)
        return generate_next_best_actions(
            portfolio=portfolio,
            holdings=self._store.list_holdings(portfolio_id=portfolio_id),
            instruments=self._store.list_instruments(),
            risk_profile=self._store.get_risk_profile(client_id=portfolio.client_id),
            models=self._store.list_model_portfolios(),
            now=self._clock(),
            drift_threshold=self._drift_threshold,
        )

    def get_portfolio_health(self, *, portfolio_id: str) -> PortfolioHealth:
        portfolio = self._require_portfolio(portfolio_id)
        return score_portfolio_health(
            portfolio=portfolio,
            holdings=self._store.list_holdings(portfolio_id=portfolio_id),
            instruments=self._store.list_instruments(),
            risk_profile=self._store.get_risk_profile(client_id=portfolio.client_id),
            models=self._store.list_model_portfolios(),
            now=self._clock(),
            drift_threshold=self._drift_threshold,
        )

    def _require_portfolio(self, portfolio_id: str) -> Portfolio:
        portfolio = self._store.get_portfolio(portfolio_id=portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError("PORTFOLIO_NOT_FOUND")
        return portfolio

    def _require_risk_profile(self, portfolio: Portfolio) -> RiskProfile:
        profile = self._store.get_risk_profile(client_id=portfolio.client_id)
        if profile is None:
            raise RiskProfileNotFoundError("RISK_PROFILE_NOT_FOUND")
        return profile
