from datetime import datetime, timezone
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Header, Path, status

from src.api.routers.order_http_errors import raise_order_http_exception
from src.api.routers.orders_config import (
    build_store,
    order_concentration_limit_pct,
    order_fill_delay_seconds,
    portfolio_drift_threshold_pct,
    seed_demo_data_enabled,
)
from src.core.models import Order, OrderSubmitRequest, OrderSubmitResponse
from src.core.orders import (
    OrderEngine,
    OrderIdempotencyConflictError,
    OrderNotFoundError,
    OrderRejectedError,
    PortfolioNotFoundError,
    QueueExecutionScheduler,
)
from src.core.portfolio_analytics import PortfolioAnalyticsService
from src.core.seed import seed_demo_data
from src.core.store import WealthStore

router = APIRouter(tags=["Orders"])

DEFAULT_ACTOR_ID = "anonymous"

_STORE: Optional[WealthStore] = None
_SCHEDULER: Optional[QueueExecutionScheduler] = None
_ENGINE: Optional[OrderEngine] = None
_ANALYTICS: Optional[PortfolioAnalyticsService] = None


def get_wealth_store() -> WealthStore:
    global _STORE
    if _STORE is None:
        _STORE = build_store()
        if seed_demo_data_enabled():
            seed_demo_data(_STORE, now=datetime.now(timezone.utc))
    return _STORE


def get_execution_scheduler() -> QueueExecutionScheduler:
    global _SCHEDULER
    if _SCHEDULER is None:
        _SCHEDULER = QueueExecutionScheduler(fill_delay_seconds=order_fill_delay_seconds())
    return _SCHEDULER


def get_order_engine() -> OrderEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = OrderEngine(
            store=get_wealth_store(),
            scheduler=get_execution_scheduler(),
            concentration_limit=order_concentration_limit_pct(),
        )
    return _ENGINE


def get_portfolio_analytics_service() -> PortfolioAnalyticsService:
    global _ANALYTICS
    if _ANALYTICS is None:
        _ANALYTICS = PortfolioAnalyticsService(
            store=get_wealth_store(),
            drift_threshold=portfolio_drift_threshold_pct(),
        )
    return _ANALYTICS


def start_order_execution() -> None:
    get_order_engine()
    get_execution_scheduler().start()


def stop_order_execution() -> None:
    if _SCHEDULER is not None:
        _SCHEDULER.stop(timeout=5.0)


def reset_order_runtime_for_tests() -> None:
    global _STORE
    global _SCHEDULER
    global _ENGINE
    global _ANALYTICS
    stop_order_execution()
    _STORE = None
    _SCHEDULER = None
    _ENGINE = None
    _ANALYTICS = None


@router.post(
    "/portfolios/{portfolio_id}/orders",
    response_model=OrderSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit Order",
    description=(
        "Validates suitability, cash and concentration synchronously, records the order as "
        "PENDING and schedules its fill. Rejections return 422 with a reason code."
    ),
)
def submit_order(
    payload: OrderSubmitRequest,
    portfolio_id: Annotated[
        str,
        Path(description="Portfolio to trade in.", examples=["port-cli-1"]),
    ],
    idempotency_key: Annotated[
        Optional[str],
        Header(
            alias="Idempotency-Key",
            description="Optional key; retries with the same key return the original order.",
            examples=["order-submit-idem-001"],
        ),
    ] = None,
    actor_id: Annotated[
        Optional[str],
        Header(
            alias="X-Actor-Id",
            description="Actor recorded on the ORDER_CREATED audit event.",
            examples=["adv-1"],
        ),
    ] = None,
    engine: Annotated[OrderEngine, Depends(get_order_engine)] = None,
) -> OrderSubmitResponse:
    try:
        return engine.submit_order(
            portfolio_id=portfolio_id,
            request=payload,
            actor_id=actor_id or DEFAULT_ACTOR_ID,
            idempotency_key=idempotency_key,
        )
    except (PortfolioNotFoundError, OrderRejectedError, OrderIdempotencyConflictError) as exc:
        raise_order_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/orders",
    response_model=List[Order],
    status_code=status.HTTP_200_OK,
    summary="Order History",
    description="Returns every order of the portfolio, newest first.",
)
def get_order_history(
    portfolio_id: Annotated[
        str,
        Path(description="Portfolio identifier.", examples=["port-cli-1"]),
    ],
    engine: Annotated[OrderEngine, Depends(get_order_engine)] = None,
) -> List[Order]:
    try:
        return engine.get_order_history(portfolio_id=portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_order_http_exception(exc)


@router.get(
    "/orders/{order_id}",
    response_model=Order,
    status_code=status.HTTP_200_OK,
    summary="Get Order",
)
def get_order(
    order_id: Annotated[
        str,
        Path(description="Order identifier.", examples=["ord_1a2b3c4d5e6f"]),
    ],
    engine: Annotated[OrderEngine, Depends(get_order_engine)] = None,
) -> Order:
    try:
        return engine.get_order(order_id=order_id)
    except OrderNotFoundError as exc:
        raise_order_http_exception(exc)


@router.post(
    "/orders/{order_id}/execute",
    response_model=Order,
    status_code=status.HTTP_200_OK,
    summary="Execute Order",
    description=(
        "Fills a PENDING order immediately. Orders that already left PENDING are returned "
        "unchanged, so the call is safe to repeat."
    ),
)
def execute_order(
    order_id: Annotated[
        str,
        Path(description="Order identifier.", examples=["ord_1a2b3c4d5e6f"]),
    ],
    engine: Annotated[OrderEngine, Depends(get_order_engine)] = None,
) -> Order:
    try:
        return engine.execute_order(order_id=order_id)
    except OrderNotFoundError as exc:
        raise_order_http_exception(exc)
