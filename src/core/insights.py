"""
FILE: src/core/insights.py
Advisor-facing signals derived from a portfolio snapshot: next best actions
and a composite health score.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from src.core.common.drift_analytics import DEFAULT_DRIFT_THRESHOLD_PCT, calculate_drift
from src.core.model_portfolios import select_model_portfolio
from src.core.models import (
    Holding,
    Instrument,
    ModelPortfolio,
    NextBestAction,
    Portfolio,
    PortfolioHealth,
    RiskProfile,
)
from src.core.valuation import (
    calculate_portfolio_allocations,
    holding_market_value,
    portfolio_total_value,
)

RISK_PROFILE_MAX_AGE = timedelta(days=180)
HIGH_DRIFT_PCT = Decimal("15")
EXCESS_CASH_PCT = Decimal("10")
HIGH_CASH_PCT = Decimal("15")
HOLDING_CONCENTRATION_PCT = Decimal("40")

STALE_PROFILE_PENALTY = 20
MAX_DRIFT_PENALTY = Decimal("30")
HIGH_CASH_PENALTY = 10
HIGH_PRIORITY_PENALTY = 15


def is_risk_profile_stale(profile: RiskProfile, now: datetime) -> bool:
    return now - profile.last_updated > RISK_PROFILE_MAX_AGE


def _cash_percentage(portfolio: Portfolio, total_value: Decimal) -> Decimal:
    if total_value <= 0:
        return Decimal("0")
    return portfolio.cash / total_value * Decimal("100")


def _model_drift(
    *,
    portfolio: Portfolio,
    holdings: List[Holding],
    instruments: List[Instrument],
    risk_profile: Optional[RiskProfile],
    models: List[ModelPortfolio],
) -> tuple[Optional[ModelPortfolio], Decimal]:
    if risk_profile is None:
        return None, Decimal("0")
    model = select_model_portfolio(risk_profile.score, models)
    if model is None:
        return None, Decimal("0")
    allocations = calculate_portfolio_allocations(holdings, instruments, portfolio)
    return model, calculate_drift(allocations, model)


def generate_next_best_actions(
    *,
    portfolio: Portfolio,
    holdings: List[Holding],
    instruments: List[Instrument],
    risk_profile: Optional[RiskProfile],
    models: List[ModelPortfolio],
    now: datetime,
    drift_threshold: Decimal = DEFAULT_DRIFT_THRESHOLD_PCT,
) -> List[NextBestAction]:
    client_id = portfolio.client_id
    actions: List[NextBestAction] = []

    if risk_profile is not None and is_risk_profile_stale(risk_profile, now):
        age_days = (now - risk_profile.last_updated).days
        actions.append(
            NextBestAction(
                action_id=f"nba_{client_id}_risk",
                client_id=client_id,
                type="REFRESH_RISK_PROFILE",
                title="Refresh Risk Profile",
                description=f"Risk profile is {age_days} days old. Consider updating.",
                priority="HIGH",
                created_at=now,
                metadata={"age_days": age_days},
            )
        )

    model, drift = _model_drift(
        portfolio=portfolio,
        holdings=holdings,
        instruments=instruments,
        risk_profile=risk_profile,
        models=models,
    )
    if model is not None and drift > drift_threshold:
        actions.append(
            NextBestAction(
                action_id=f"nba_{client_id}_rebalance",
                client_id=client_id,
                type="REBALANCE_PORTFOLIO",
                title="Rebalance Portfolio",
                description=(
                    f"Portfolio has drifted {drift:.1f}% from target {model.name} "
                    "model allocation."
                ),
                priority="HIGH" if drift > HIGH_DRIFT_PCT else "MEDIUM",
                created_at=now,
                metadata={"drift": str(drift), "model_id": model.model_id},
            )
        )

    total_value = portfolio_total_value(portfolio, holdings, instruments)
    cash_pct = _cash_percentage(portfolio, total_value)
    if cash_pct > EXCESS_CASH_PCT:
        actions.append(
            NextBestAction(
                action_id=f"nba_{client_id}_invest_cash",
                client_id=client_id,
                type="INVEST_CASH",
                title="Invest Excess Cash",
                description=(
                    f"{cash_pct:.1f}% of portfolio is in cash. "
                    "Consider investing according to target allocation."
                ),
                priority="MEDIUM" if cash_pct > HIGH_CASH_PCT else "LOW",
                created_at=now,
                metadata={"cash_percentage": str(cash_pct), "cash_amount": str(portfolio.cash)},
            )
        )

    if total_value > 0:
        by_id = {instrument.instrument_id: instrument for instrument in instruments}
        for holding in holdings:
            instrument = by_id.get(holding.instrument_id)
            if instrument is None:
                continue
            pct = holding_market_value(holding, instrument) / total_value * Decimal("100")
            if pct > HOLDING_CONCENTRATION_PCT:
                actions.append(
                    NextBestAction(
                        action_id=f"nba_{client_id}_concentration_{instrument.instrument_id}",
                        client_id=client_id,
                        type="REDUCE_CONCENTRATION",
                        title="Reduce Concentration Risk",
                        description=(
                            f"{instrument.symbol} represents {pct:.1f}% of portfolio, "
                            f"exceeding {HOLDING_CONCENTRATION_PCT}% threshold."
                        ),
                        priority="HIGH",
                        created_at=now,
                        metadata={
                            "instrument_id": instrument.instrument_id,
                            "percentage": str(pct),
                        },
                    )
                )

    return actions


def score_portfolio_health(
    *,
    portfolio: Portfolio,
    holdings: List[Holding],
    instruments: List[Instrument],
    risk_profile: Optional[RiskProfile],
    models: List[ModelPortfolio],
    now: datetime,
    drift_threshold: Decimal = DEFAULT_DRIFT_THRESHOLD_PCT,
) -> PortfolioHealth:
    """
    Starts at 100 and subtracts a fixed penalty per warning signal:
    stale risk profile, drift over threshold (2 points per drift point, capped),
    excess cash, and any HIGH priority action. Never below 0.
    """
    stale = risk_profile is not None and is_risk_profile_stale(risk_profile, now)
    model, drift = _model_drift(
        portfolio=portfolio,
        holdings=holdings,
        instruments=instruments,
        risk_profile=risk_profile,
        models=models,
    )
    total_value = portfolio_total_value(portfolio, holdings, instruments)
    cash_pct = _cash_percentage(portfolio, total_value)
    high_cash = cash_pct > EXCESS_CASH_PCT
    actions = generate_next_best_actions(
        portfolio=portfolio,
        holdings=holdings,
        instruments=instruments,
        risk_profile=risk_profile,
        models=models,
        now=now,
        drift_threshold=drift_threshold,
    )

    score = Decimal("100")
    if stale:
        score -= STALE_PROFILE_PENALTY
    if drift > drift_threshold:
        score -= min(MAX_DRIFT_PENALTY, drift * 2)
    if high_cash:
        score -= HIGH_CASH_PENALTY
    if any(action.priority == "HIGH" for action in actions):
        score -= HIGH_PRIORITY_PENALTY

    return PortfolioHealth(
        portfolio_id=portfolio.portfolio_id,
        score=int(max(score, Decimal("0"))),
        drift_percentage=drift,
        model_name=model.name if model is not None else None,
        risk_profile_stale=stale,
        high_cash=high_cash,
        cash_percentage=cash_pct,
    )
