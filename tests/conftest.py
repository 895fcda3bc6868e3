"""
FILE: tests/conftest.py
Shared fixtures for order engine and analytics tests.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from src.core.orders import ManualExecutionScheduler, OrderEngine, OrderEventBus
from src.core.portfolio_analytics import PortfolioAnalyticsService
from src.infrastructure.wealth_store import InMemoryWealthStore
from tests.factories import (
    FIXED_NOW,
    holding,
    instrument,
    model_portfolio,
    portfolio,
    risk_profile,
)


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if (
            _has_marker(item, "unit")
            or _has_marker(item, "integration")
            or _has_marker(item, "e2e")
        ):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        if "/tests/e2e/" in path:
            item.add_marker(pytest.mark.e2e)
            continue
        item.add_marker(pytest.mark.unit)


class StepClock:
    """Returns FIXED_NOW, then advances one second per call."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self._current = start

    def __call__(self) -> datetime:
        value = self._current
        self._current = value + timedelta(seconds=1)
        return value


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store():
    """
    Portfolio pf_1 for client c_1 (score 5) with 10,000 cash, plus a catalog
    covering every asset class.
    """
    wealth_store = InMemoryWealthStore()
    for item in [
        instrument("eq_1", asset_class="EQUITY", price="50", risk_rating=4),
        instrument("eq_2", asset_class="EQUITY", price="100", risk_rating=4),
        instrument("fi_1", asset_class="FIXED_INCOME", price="20", risk_rating=1),
        instrument("alt_1", asset_class="ALTERNATIVE", price="10"),
        instrument("re_1", asset_class="REAL_ESTATE", price="25"),
    ]:
        wealth_store.upsert_instrument(item)
    wealth_store.upsert_risk_profile(risk_profile("c_1", score=5))
    wealth_store.create_portfolio(portfolio("pf_1", client_id="c_1", cash="10000"))
    for model in [
        model_portfolio("mp_low", 0, 4, EQUITY="30", FIXED_INCOME="60", CASH="10"),
        model_portfolio("mp_mid", 5, 7, EQUITY="60", FIXED_INCOME="35", CASH="5"),
        model_portfolio("mp_high", 8, 10, EQUITY="90", FIXED_INCOME="5", CASH="5"),
    ]:
        wealth_store.upsert_model_portfolio(model)
    return wealth_store


@pytest.fixture
def scheduler():
    return ManualExecutionScheduler()


@pytest.fixture
def event_bus():
    return OrderEventBus()


@pytest.fixture
def engine(store, scheduler, event_bus, clock):
    return OrderEngine(
        store=store,
        scheduler=scheduler,
        event_bus=event_bus,
        concentration_limit=Decimal("25"),
        clock=clock,
    )


@pytest.fixture
def analytics(store):
    return PortfolioAnalyticsService(
        store=store,
        drift_threshold=Decimal("8"),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def seed_holding(store):
    def _seed(instrument_id: str, quantity: int, average_cost: str = "40"):
        store.seed_holding(
            holding("pf_1", instrument_id, quantity=quantity, average_cost=average_cost)
        )

    return _seed
