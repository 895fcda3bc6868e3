from decimal import Decimal

from src.core.insights import generate_next_best_actions
from src.core.seed import SEED_INSTRUMENTS, SEED_RISK_PROFILES, seed_demo_data
from src.infrastructure.wealth_store import InMemoryWealthStore
from tests.factories import FIXED_NOW


def _seeded_store():
    store = InMemoryWealthStore()
    seed_demo_data(store, now=FIXED_NOW)
    return store


def test_seed_loads_catalog_and_one_portfolio_per_client():
    store = _seeded_store()

    assert len(store.list_instruments()) == len(SEED_INSTRUMENTS) == 15
    assert [m.name for m in store.list_model_portfolios()] == [
        "Conservative",
        "Moderate",
        "Balanced",
        "Growth",
        "Aggressive",
    ]
    assert len(store.list_portfolios()) == len(SEED_RISK_PROFILES) == 12
    vti = store.get_instrument(instrument_id="ins-1")
    assert vti.symbol == "VTI"
    assert vti.current_price == Decimal("245.50")
    assert vti.risk_rating == 5


def test_seed_portfolios_hold_cash_and_positive_positions():
    store = _seeded_store()

    for pf in store.list_portfolios():
        assert pf.cash > 0
        positions = store.list_holdings(portfolio_id=pf.portfolio_id)
        assert positions
        assert all(p.quantity > 0 for p in positions)


def test_seed_is_idempotent_for_existing_portfolios():
    store = _seeded_store()
    store.create_portfolio(
        store.get_portfolio(portfolio_id="port-cli-1").model_copy(update={"cash": Decimal("1")})
    )

    seed_demo_data(store, now=FIXED_NOW)

    assert store.get_portfolio(portfolio_id="port-cli-1").cash == Decimal("1")
    assert len(store.list_portfolios()) == 12


def test_concentrated_demo_client_gets_concentration_and_refresh_actions():
    store = _seeded_store()
    pf = store.get_portfolio(portfolio_id="port-cli-3")

    actions = generate_next_best_actions(
        portfolio=pf,
        holdings=store.list_holdings(portfolio_id=pf.portfolio_id),
        instruments=store.list_instruments(),
        risk_profile=store.get_risk_profile(client_id="cli-3"),
        models=store.list_model_portfolios(),
        now=FIXED_NOW,
    )

    types = {a.type for a in actions}
    assert "REDUCE_CONCENTRATION" in types
    assert "REFRESH_RISK_PROFILE" in types
