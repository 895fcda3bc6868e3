"""
FILE: src/core/valuation.py
"""

from decimal import Decimal
from typing import Dict, Iterable, List

from src.core.models import AllocationBreakdown, AssetClass, Holding, Instrument, Portfolio

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _instrument_index(instruments: Iterable[Instrument]) -> Dict[str, Instrument]:
    return {instrument.instrument_id: instrument for instrument in instruments}


def holding_market_value(holding: Holding, instrument: Instrument) -> Decimal:
    return Decimal(holding.quantity) * instrument.current_price


def holdings_market_value(holdings: Iterable[Holding], instruments: Iterable[Instrument]) -> Decimal:
    by_id = _instrument_index(instruments)
    total = _ZERO
    for holding in holdings:
        instrument = by_id.get(holding.instrument_id)
        if instrument is None:
            continue
        total += holding_market_value(holding, instrument)
    return total


def portfolio_total_value(
    portfolio: Portfolio,
    holdings: Iterable[Holding],
    instruments: Iterable[Instrument],
) -> Decimal:
    """
    Cash plus market value of every holding whose instrument is still listed.
    """
    return portfolio.cash + holdings_market_value(holdings, instruments)


def calculate_portfolio_allocations(
    holdings: Iterable[Holding],
    instruments: Iterable[Instrument],
    portfolio: Portfolio,
) -> List[AllocationBreakdown]:
    """
    Aggregates holdings and cash into value and percentage per asset class.

    Cash is reported as a CASH bucket; a portfolio with no holdings always
    reports its CASH bucket, even at zero.
    """
    by_id = _instrument_index(instruments)
    values: Dict[AssetClass, Decimal] = {}

    # 1. Holdings at current price
    for holding in holdings:
        instrument = by_id.get(holding.instrument_id)
        if instrument is None:
            continue
        values[instrument.asset_class] = values.get(
            instrument.asset_class, _ZERO
        ) + holding_market_value(holding, instrument)

    # 2. Synthetic cash bucket
    if portfolio.cash > 0 or not values:
        values[AssetClass.CASH] = values.get(AssetClass.CASH, _ZERO) + portfolio.cash

    # 3. Percentages
    total = sum(values.values(), _ZERO)
    ordered = [asset_class for asset_class in AssetClass if asset_class in values]
    return [
        AllocationBreakdown(
            asset_class=asset_class,
            value=values[asset_class],
            percentage=(values[asset_class] / total * _HUNDRED) if total > 0 else _ZERO,
        )
        for asset_class in ordered
    ]
