from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from src.api.routers.order_http_errors import raise_order_http_exception
from src.api.routers.orders import get_portfolio_analytics_service, get_wealth_store
from src.core.models import (
    AllocationBreakdown,
    AuditEvent,
    DriftResult,
    Holding,
    Instrument,
    ModelPortfolio,
    NextBestAction,
    PortfolioHealth,
    PortfolioSummary,
    Transaction,
)
from src.core.orders import PortfolioNotFoundError
from src.core.portfolio_analytics import PortfolioAnalyticsService, RiskProfileNotFoundError
from src.core.store import WealthStore

router = APIRouter(tags=["Portfolios"])

PortfolioId = Annotated[
    str,
    Path(description="Portfolio identifier.", examples=["port-cli-1"]),
]
Analytics = Annotated[PortfolioAnalyticsService, Depends(get_portfolio_analytics_service)]


@router.get(
    "/portfolios/{portfolio_id}",
    response_model=PortfolioSummary,
    status_code=status.HTTP_200_OK,
    summary="Get Portfolio",
    description="Returns cash, total value and holdings count.",
)
def get_portfolio(portfolio_id: PortfolioId, service: Analytics = None) -> PortfolioSummary:
    try:
        return service.get_portfolio_summary(portfolio_id=portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_order_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/holdings",
    response_model=List[Holding],
    status_code=status.HTTP_200_OK,
    summary="List Holdings",
)
def list_holdings(portfolio_id: PortfolioId, service: Analytics = None) -> List[Holding]:
    try:
        return service.list_holdings(portfolio_id=portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_order_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/transactions",
    response_model=List[Transaction],
    status_code=status.HTTP_200_OK,
    summary="List Transactions",
    description="Returns fills recorded for the portfolio, newest first.",
)
def list_transactions(portfolio_id: PortfolioId, service: Analytics = None) -> List[Transaction]:
    try:
        return service.list_transactions(portfolio_id=portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_order_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/allocations",
    response_model=List[AllocationBreakdown],
    status_code=status.HTTP_200_OK,
    summary="Asset-Class Allocation",
    description="Value and percentage per asset class, cash included.",
)
def get_allocations(
    portfolio_id: PortfolioId, service: Analytics = None
) -> List[AllocationBreakdown]:
    try:
        return service.get_allocations(portfolio_id=portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_order_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/drift",
    response_model=DriftResult,
    status_code=status.HTTP_200_OK,
    summary="Drift From Model",
    description=(
        "Drift of the current allocation from the model portfolio selected by risk_score, "
        "or by the client's stored risk profile when omitted."
    ),
)
def get_drift(
    portfolio_id: PortfolioId,
    risk_score: Annotated[
        Optional[int],
        Query(description="Risk score override.", ge=0, le=10, examples=[5]),
    ] = None,
    service: Analytics = None,
) -> DriftResult:
    try:
        return service.get_drift(portfolio_id=portfolio_id, risk_score=risk_score)
    except (PortfolioNotFoundError, RiskProfileNotFoundError) as exc:
        raise_order_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/next-best-actions",
    response_model=List[NextBestAction],
    status_code=status.HTTP_200_OK,
    summary="Next Best Actions",
)
def get_next_best_actions(
    portfolio_id: PortfolioId, service: Analytics = None
) -> List[NextBestAction]:
    try:
        return service.get_next_best_actions(portfolio_id=portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_order_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/health-score",
    response_model=PortfolioHealth,
    status_code=status.HTTP_200_OK,
    summary="Portfolio Health Score",
)
def get_portfolio_health(portfolio_id: PortfolioId, service: Analytics = None) -> PortfolioHealth:
    try:
        return service.get_portfolio_health(portfolio_id=portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_order_http_exception(exc)


@router.get(
    "/instruments",
    response_model=List[Instrument],
    status_code=status.HTTP_200_OK,
    summary="Instrument Catalog",
)
def list_instruments(
    store: Annotated[WealthStore, Depends(get_wealth_store)] = None,
) -> List[Instrument]:
    return store.list_instruments()


@router.get(
    "/model-portfolios",
    response_model=List[ModelPortfolio],
    status_code=status.HTTP_200_OK,
    summary="Model Portfolios",
    description="Model portfolios ordered by risk band.",
)
def list_model_portfolios(
    store: Annotated[WealthStore, Depends(get_wealth_store)] = None,
) -> List[ModelPortfolio]:
    return store.list_model_portfolios()


@router.get(
    "/audit-events",
    response_model=List[AuditEvent],
    status_code=status.HTTP_200_OK,
    summary="Audit Trail",
)
def list_audit_events(
    client_id: Annotated[
        Optional[str],
        Query(description="Client filter.", examples=["cli-1"]),
    ] = None,
    service: Analytics = None,
) -> List[AuditEvent]:
    return service.list_audit_events(client_id=client_id)
