from typing import NoReturn

from fastapi import HTTPException, status

from src.core.orders import (
    OrderIdempotencyConflictError,
    OrderNotFoundError,
    OrderRejectedError,
    OrderTransitionError,
    PortfolioNotFoundError,
)
from src.core.portfolio_analytics import RiskProfileNotFoundError

# Name differs across Starlette releases.
HTTP_422_UNPROCESSABLE = getattr(
    status,
    "HTTP_422_UNPROCESSABLE_CONTENT",
    status.HTTP_422_UNPROCESSABLE_ENTITY,
)


def raise_order_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, (PortfolioNotFoundError, OrderNotFoundError, RiskProfileNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (OrderIdempotencyConflictError, OrderTransitionError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, OrderRejectedError):
        raise HTTPException(
            status_code=HTTP_422_UNPROCESSABLE,
            detail={"code": exc.code, "reason": exc.reason},
        ) from exc
    raise exc
