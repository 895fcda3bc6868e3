import os
from decimal import Decimal, InvalidOperation
from typing import cast

from src.core.common.concentration import DEFAULT_CONCENTRATION_LIMIT_PCT
from src.core.common.drift_analytics import DEFAULT_DRIFT_THRESHOLD_PCT
from src.core.store import WealthStore
from src.infrastructure.wealth_store import InMemoryWealthStore, SqliteWealthStore

DEFAULT_FILL_DELAY_SECONDS = 2.0


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_non_negative_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def env_percentage(name: str, default: Decimal) -> Decimal:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = Decimal(value.strip())
    except InvalidOperation:
        return default
    return parsed if Decimal("0") <= parsed <= Decimal("100") else default


def wealth_store_backend_name() -> str:
    backend = os.getenv("WEALTH_STORE_BACKEND", "IN_MEMORY").strip().upper()
    return "SQLITE" if backend in {"SQL", "SQLITE"} else "IN_MEMORY"


def wealth_sqlite_path() -> str:
    return os.getenv("WEALTH_SQLITE_PATH", ".data/wealth_engine.sqlite")


def order_fill_delay_seconds() -> float:
    return env_non_negative_float("ORDER_FILL_DELAY_SECONDS", DEFAULT_FILL_DELAY_SECONDS)


def order_concentration_limit_pct() -> Decimal:
    return env_percentage("ORDER_CONCENTRATION_LIMIT_PCT", DEFAULT_CONCENTRATION_LIMIT_PCT)


def portfolio_drift_threshold_pct() -> Decimal:
    return env_percentage("PORTFOLIO_DRIFT_THRESHOLD_PCT", DEFAULT_DRIFT_THRESHOLD_PCT)


def seed_demo_data_enabled() -> bool:
    return env_flag("WEALTH_SEED_DEMO_DATA", True)


def build_store() -> WealthStore:
    if wealth_store_backend_name() == "SQLITE":
        return cast(WealthStore, SqliteWealthStore(database_path=wealth_sqlite_path()))
    return cast(WealthStore, InMemoryWealthStore())
