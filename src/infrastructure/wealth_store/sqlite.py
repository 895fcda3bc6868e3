import sqlite3
from contextlib import closing
from decimal import Decimal
from pathlib import Path
from threading import Lock
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

from src.core.models import (
    AuditEvent,
    Holding,
    Instrument,
    ModelPortfolio,
    Order,
    OrderStatus,
    Portfolio,
    RiskProfile,
    Transaction,
)
from src.core.store import WealthStore

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class SqliteWealthStore(WealthStore):
    """
    Rows keep their lookup keys in columns and the full record as JSON text.
    Fill commits run in one transaction guarded on the stored order status.
    """

    def __init__(self, *, database_path: str) -> None:
        self._lock = Lock()
        self._database_path = database_path
        self._init_db()

    def get_instrument(self, *, instrument_id: str) -> Optional[Instrument]:
        return self._fetch_one(
            Instrument,
            "SELECT payload_json FROM instruments WHERE instrument_id = ?",
            (instrument_id,),
        )

    def list_instruments(self) -> list[Instrument]:
        return self._fetch_all(
            Instrument, "SELECT payload_json FROM instruments ORDER BY instrument_id", ()
        )

    def upsert_instrument(self, instrument: Instrument) -> None:
        query = """
            INSERT INTO instruments (instrument_id, payload_json) VALUES (?, ?)
            ON CONFLICT(instrument_id) DO UPDATE SET payload_json=excluded.payload_json
        """
        self._execute(query, (instrument.instrument_id, instrument.model_dump_json()))

    def update_instrument_price(self, *, instrument_id: str, price: Decimal) -> None:
        with self._lock, closing(self._connect()) as connection:
            row = connection.execute(
                "SELECT payload_json FROM instruments WHERE instrument_id = ?",
                (instrument_id,),
            ).fetchone()
            if row is None:
                raise KeyError(instrument_id)
            instrument = Instrument.model_validate_json(row["payload_json"])
            updated = instrument.model_copy(update={"current_price": price})
            connection.execute(
                "UPDATE instruments SET payload_json = ? WHERE instrument_id = ?",
                (updated.model_dump_json(), instrument_id),
            )
            connection.commit()

    def delete_instrument(self, *, instrument_id: str) -> bool:
        with self._lock, closing(self._connect()) as connection:
            cursor = connection.execute(
                "DELETE FROM instruments WHERE instrument_id = ?", (instrument_id,)
            )
            connection.commit()
            return cursor.rowcount > 0

    def get_risk_profile(self, *, client_id: str) -> Optional[RiskProfile]:
        return self._fetch_one(
            RiskProfile,
            "SELECT payload_json FROM risk_profiles WHERE client_id = ?",
            (client_id,),
        )

    def upsert_risk_profile(self, profile: RiskProfile) -> None:
        query = """
            INSERT INTO risk_profiles (client_id, payload_json) VALUES (?, ?)
            ON CONFLICT(client_id) DO UPDATE SET payload_json=excluded.payload_json
        """
        self._execute(query, (profile.client_id, profile.model_dump_json()))

    def get_portfolio(self, *, portfolio_id: str) -> Optional[Portfolio]:
        return self._fetch_one(
            Portfolio,
            "SELECT payload_json FROM portfolios WHERE portfolio_id = ?",
            (portfolio_id,),
        )

    def list_portfolios(self) -> list[Portfolio]:
        return self._fetch_all(
            Portfolio, "SELECT payload_json FROM portfolios ORDER BY portfolio_id", ()
        )

    def create_portfolio(self, portfolio: Portfolio) -> None:
        query = """
            INSERT INTO portfolios (portfolio_id, payload_json) VALUES (?, ?)
            ON CONFLICT(portfolio_id) DO UPDATE SET payload_json=excluded.payload_json
        """
        self._execute(query, (portfolio.portfolio_id, portfolio.model_dump_json()))

    def get_holding(self, *, portfolio_id: str, instrument_id: str) -> Optional[Holding]:
        return self._fetch_one(
            Holding,
            """
            SELECT payload_json FROM holdings
            WHERE portfolio_id = ? AND instrument_id = ?
            """,
            (portfolio_id, instrument_id),
        )

    def list_holdings(self, *, portfolio_id: str) -> list[Holding]:
        return self._fetch_all(
            Holding,
            """
            SELECT payload_json FROM holdings
            WHERE portfolio_id = ?
            ORDER BY instrument_id
            """,
            (portfolio_id,),
        )

    def seed_holding(self, holding: Holding) -> None:
        with self._lock, closing(self._connect()) as connection:
            _upsert_holding(connection, holding)
            connection.commit()

    def create_order(self, order: Order, *, audit_event: AuditEvent) -> None:
        query = """
            INSERT INTO orders (
                order_id,
                portfolio_id,
                idempotency_key,
                status,
                created_at,
                payload_json
            ) VALUES (?, ?, ?, ?, ?, ?)
        """
        with self._lock, closing(self._connect()) as connection:
            try:
                connection.execute(
                    query,
                    (
                        order.order_id,
                        order.portfolio_id,
                        order.idempotency_key,
                        order.status.value,
                        order.created_at.isoformat(),
                        order.model_dump_json(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                connection.rollback()
                raise ValueError(f"DUPLICATE_IDEMPOTENCY_KEY: {order.idempotency_key}") from exc
            _insert_audit_event(connection, audit_event)
            connection.commit()

    def get_order(self, *, order_id: str) -> Optional[Order]:
        return self._fetch_one(
            Order, "SELECT payload_json FROM orders WHERE order_id = ?", (order_id,)
        )

    def get_order_by_idempotency_key(self, *, idempotency_key: str) -> Optional[Order]:
        return self._fetch_one(
            Order,
            "SELECT payload_json FROM orders WHERE idempotency_key = ?",
            (idempotency_key,),
        )

    def list_orders(self, *, portfolio_id: str, status: Optional[str] = None) -> list[Order]:
        query = "SELECT payload_json FROM orders WHERE portfolio_id = ?"
        params: tuple = (portfolio_id,)
        if status is not None:
            query += " AND status = ?"
            params = (portfolio_id, OrderStatus(status).value)
        query += " ORDER BY created_at DESC, order_id DESC"
        return self._fetch_all(Order, query, params)

    def fail_order(self, order: Order, *, audit_event: AuditEvent) -> bool:
        with self._lock, closing(self._connect()) as connection:
            if not _transition_pending_order(connection, order):
                connection.rollback()
                return False
            _insert_audit_event(connection, audit_event)
            connection.commit()
            return True

    def commit_fill(
        self,
        *,
        order: Order,
        portfolio: Portfolio,
        holding: Optional[Holding],
        transaction: Transaction,
        audit_event: AuditEvent,
    ) -> bool:
        with self._lock, closing(self._connect()) as connection:
            try:
                if not _transition_pending_order(connection, order):
                    connection.rollback()
                    return False
                if holding is None:
                    connection.execute(
                        "DELETE FROM holdings WHERE portfolio_id = ? AND instrument_id = ?",
                        (order.portfolio_id, order.instrument_id),
                    )
                else:
                    _upsert_holding(connection, holding)
                connection.execute(
                    "UPDATE portfolios SET payload_json = ? WHERE portfolio_id = ?",
                    (portfolio.model_dump_json(), portfolio.portfolio_id),
                )
                connection.execute(
                    """
                    INSERT INTO transactions (
                        transaction_id,
                        portfolio_id,
                        order_id,
                        timestamp,
                        payload_json
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        transaction.transaction_id,
                        transaction.portfolio_id,
                        transaction.order_id,
                        transaction.timestamp.isoformat(),
                        transaction.model_dump_json(),
                    ),
                )
                _insert_audit_event(connection, audit_event)
            except sqlite3.Error:
                connection.rollback()
                raise
            connection.commit()
            return True

    def list_transactions(self, *, portfolio_id: str) -> list[Transaction]:
        return self._fetch_all(
            Transaction,
            """
            SELECT payload_json FROM transactions
            WHERE portfolio_id = ?
            ORDER BY timestamp DESC, transaction_id DESC
            """,
            (portfolio_id,),
        )

    def append_audit_event(self, event: AuditEvent) -> None:
        with self._lock, closing(self._connect()) as connection:
            _insert_audit_event(connection, event)
            connection.commit()

    def list_audit_events(self, *, client_id: Optional[str] = None) -> list[AuditEvent]:
        if client_id is None:
            return self._fetch_all(
                AuditEvent, "SELECT payload_json FROM audit_events ORDER BY seq", ()
            )
        return self._fetch_all(
            AuditEvent,
            "SELECT payload_json FROM audit_events WHERE client_id = ? ORDER BY seq",
            (client_id,),
        )

    def list_model_portfolios(self) -> list[ModelPortfolio]:
        return self._fetch_all(
            ModelPortfolio,
            "SELECT payload_json FROM model_portfolios ORDER BY min_risk_score, model_id",
            (),
        )

    def upsert_model_portfolio(self, model: ModelPortfolio) -> None:
        query = """
            INSERT INTO model_portfolios (model_id, min_risk_score, payload_json)
            VALUES (?, ?, ?)
            ON CONFLICT(model_id) DO UPDATE SET
                min_risk_score=excluded.min_risk_score,
                payload_json=excluded.payload_json
        """
        self._execute(query, (model.model_id, model.min_risk_score, model.model_dump_json()))

    def _fetch_one(
        self, model: Type[_ModelT], query: str, params: tuple
    ) -> Optional[_ModelT]:
        with closing(self._connect()) as connection:
            row = connection.execute(query, params).fetchone()
        if row is None:
            return None
        return model.model_validate_json(row["payload_json"])

    def _fetch_all(self, model: Type[_ModelT], query: str, params: tuple) -> list[_ModelT]:
        with closing(self._connect()) as connection:
            rows = connection.execute(query, params).fetchall()
        return [model.model_validate_json(row["payload_json"]) for row in rows]

    def _execute(self, query: str, params: tuple) -> None:
        with self._lock, closing(self._connect()) as connection:
            connection.execute(query, params)
            connection.commit()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._database_path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        return connection

    def _init_db(self) -> None:
        Path(self._database_path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as connection:
            connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS instruments (
                    instrument_id TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS risk_profiles (
                    client_id TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS portfolios (
                    portfolio_id TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS holdings (
                    portfolio_id TEXT NOT NULL,
                    instrument_id TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    PRIMARY KEY (portfolio_id, instrument_id)
                );

                CREATE TABLE IF NOT EXISTS orders (
                    order_id TEXT PRIMARY KEY,
                    portfolio_id TEXT NOT NULL,
                    idempotency_key TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_orders_portfolio
                    ON orders (portfolio_id, created_at);

                CREATE TABLE IF NOT EXISTS transactions (
                    transaction_id TEXT PRIMARY KEY,
                    portfolio_id TEXT NOT NULL,
                    order_id TEXT NOT NULL UNIQUE,
                    timestamp TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS audit_events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL UNIQUE,
                    client_id TEXT NULL,
                    payload_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS model_portfolios (
                    model_id TEXT PRIMARY KEY,
                    min_risk_score INTEGER NOT NULL,
                    payload_json TEXT NOT NULL
                );
                """
            )
            connection.commit()


def _transition_pending_order(connection: sqlite3.Connection, order: Order) -> bool:
    cursor = connection.execute(
        """
        UPDATE orders SET status = ?, payload_json = ?
        WHERE order_id = ? AND status = ?
        """,
        (
            order.status.value,
            order.model_dump_json(),
            order.order_id,
            OrderStatus.PENDING.value,
        ),
    )
    return cursor.rowcount == 1


def _upsert_holding(connection: sqlite3.Connection, holding: Holding) -> None:
    connection.execute(
        """
        INSERT INTO holdings (portfolio_id, instrument_id, payload_json) VALUES (?, ?, ?)
        ON CONFLICT(portfolio_id, instrument_id) DO UPDATE SET
            payload_json=excluded.payload_json
        """,
        (holding.portfolio_id, holding.instrument_id, holding.model_dump_json()),
    )


def _insert_audit_event(connection: sqlite3.Connection, event: AuditEvent) -> None:
    connection.execute(
        "INSERT INTO audit_events (event_id, client_id, payload_json) VALUES (?, ?, ?)",
        (event.event_id, event.client_id, event.model_dump_json()),
    )
