from src.infrastructure.wealth_store.in_memory import InMemoryWealthStore
from src.infrastructure.wealth_store.sqlite import SqliteWealthStore

__all__ = ["InMemoryWealthStore", "SqliteWealthStore"]
