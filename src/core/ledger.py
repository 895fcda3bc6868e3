"""
FILE: src/core/ledger.py
Cash ledger and holdings book mutations for a single fill.

Both functions are pure: they return the new state and leave persistence to
WealthStore.commit_fill, which writes cash and holding in one unit.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from src.core.models import (
    CashSufficiencyResult,
    Holding,
    Instrument,
    OrderSide,
    OrderType,
    Portfolio,
)


class LedgerInvariantError(Exception):
    pass


def estimate_order_cost(
    *,
    instrument: Instrument,
    order_type: OrderType,
    quantity: int,
    limit_price: Optional[Decimal],
) -> Decimal:
    if order_type == OrderType.LIMIT and limit_price is not None:
        return Decimal(quantity) * limit_price
    return Decimal(quantity) * instrument.current_price


def check_cash_sufficiency(portfolio: Portfolio, estimated_cost: Decimal) -> CashSufficiencyResult:
    return CashSufficiencyResult(
        sufficient=portfolio.cash >= estimated_cost,
        available=portfolio.cash,
        required=estimated_cost,
    )


def apply_cash_fill(
    portfolio: Portfolio,
    *,
    side: OrderSide,
    quantity: int,
    executed_price: Decimal,
    now: datetime,
) -> Portfolio:
    amount = Decimal(quantity) * executed_price
    if side == OrderSide.BUY:
        cash = portfolio.cash - amount
    else:
        cash = portfolio.cash + amount
    if cash < 0:
        raise LedgerInvariantError(
            f"NEGATIVE_CASH: fill of {amount} leaves {portfolio.portfolio_id} at {cash}"
        )
    return portfolio.model_copy(update={"cash": cash, "last_updated": now})


def apply_holding_fill(
    holding: Optional[Holding],
    *,
    portfolio_id: str,
    instrument_id: str,
    side: OrderSide,
    quantity: int,
    executed_price: Decimal,
    now: datetime,
) -> Optional[Holding]:
    """
    Returns the holding after the fill, or None when a sell closes it out.
    Sells leave average cost untouched.
    """
    if side == OrderSide.BUY:
        if holding is None:
            return Holding(
                portfolio_id=portfolio_id,
                instrument_id=instrument_id,
                quantity=quantity,
                average_cost=executed_price,
                last_updated=now,
            )
        new_quantity = holding.quantity + quantity
        new_average_cost = (
            Decimal(holding.quantity) * holding.average_cost + Decimal(quantity) * executed_price
        ) / Decimal(new_quantity)
        return holding.model_copy(
            update={
                "quantity": new_quantity,
                "average_cost": new_average_cost,
                "last_updated": now,
            }
        )

    if holding is None:
        raise LedgerInvariantError(f"NO_HOLDING: cannot sell {instrument_id} in {portfolio_id}")
    new_quantity = holding.quantity - quantity
    if new_quantity <= 0:
        return None
    return holding.model_copy(update={"quantity": new_quantity, "last_updated": now})
