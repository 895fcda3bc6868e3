from decimal import Decimal
from typing import Iterable, Optional

from src.core.models import ConcentrationResult, Holding, Instrument, Portfolio
from src.core.valuation import portfolio_total_value

DEFAULT_CONCENTRATION_LIMIT_PCT = Decimal("25")
_HUNDRED = Decimal("100")


def check_concentration(
    *,
    holdings: Iterable[Holding],
    instruments: Iterable[Instrument],
    portfolio: Portfolio,
    instrument_id: str,
    quantity: int,
    estimated_price: Optional[Decimal] = None,
    limit: Decimal = DEFAULT_CONCENTRATION_LIMIT_PCT,
) -> ConcentrationResult:
    """
    Weight of the instrument after a hypothetical BUY fill, against a cap.

    The position is marked at the current price. Cash leaves the portfolio at
    the estimated execution price, so a LIMIT below market slightly raises the
    post-trade total and a LIMIT above market lowers it.
    """
    holdings = list(holdings)
    instruments = list(instruments)
    instrument = next((i for i in instruments if i.instrument_id == instrument_id), None)
    if instrument is None:
        raise ValueError(f"unknown instrument {instrument_id}")

    price = instrument.current_price
    fill_price = estimated_price if estimated_price is not None else price
    held = next(
        (
            h.quantity
            for h in holdings
            if h.portfolio_id == portfolio.portfolio_id and h.instrument_id == instrument_id
        ),
        0,
    )

    position_value = Decimal(held + quantity) * price
    total_after = (
        portfolio_total_value(portfolio, holdings, instruments)
        - Decimal(quantity) * fill_price
        + Decimal(quantity) * price
    )
    if total_after <= 0:
        return ConcentrationResult(
            acceptable=False, resulting_percentage=_HUNDRED, limit=limit
        )

    percentage = position_value / total_after * _HUNDRED
    return ConcentrationResult(
        acceptable=percentage <= limit,
        resulting_percentage=percentage,
        limit=limit,
    )
