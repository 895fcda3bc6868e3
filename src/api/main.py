"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.observability import setup_observability
from src.api.routers.orders import (
    router as orders_router,
)
from src.api.routers.orders import (
    start_order_execution,
    stop_order_execution,
)
from src.api.routers.portfolios import router as portfolios_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    start_order_execution()
    try:
        yield
    finally:
        stop_order_execution()


app = FastAPI(
    title="Wealth Order Engine API",
    version="0.1.0",
    description=(
        "Order validation and execution against client portfolios, with asset-class "
        "allocation, model-portfolio drift and advisor insights.\n\n"
        "Accepted orders return `PENDING` and are filled asynchronously."
    ),
    openapi_tags=[
        {
            "name": "Orders",
            "description": "Order submission, history and execution endpoints.",
        },
        {
            "name": "Portfolios",
            "description": "Portfolio valuation, allocation, drift and insight endpoints.",
        },
        {
            "name": "Health",
            "description": "Liveness and readiness probes.",
        },
    ],
    lifespan=_app_lifespan,
)

setup_observability(app)

app.include_router(orders_router)
app.include_router(portfolios_router)


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )


@app.get("/health", tags=["Health"], summary="Health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/live", tags=["Health"], summary="Liveness")
def health_live() -> dict:
    return {"status": "live"}


@app.get("/health/ready", tags=["Health"], summary="Readiness")
def health_ready() -> dict:
    return {"status": "ready"}
