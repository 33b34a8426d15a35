"""DuckDB-backed persistence for simulations, portfolios, snapshots and decisions.

Every read/write method accepts an optional ``cur`` so it can take part in a
transaction opened with ``TradingStore.transaction()``; without one it runs
on a fresh cursor in autocommit mode.

Timestamps are stored as naive UTC ``TIMESTAMP`` values and come back as
timezone-aware UTC datetimes.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator

import duckdb

from models.decision import BotDecision
from models.portfolio import Portfolio
from models.simulation import BotType, SimulationConfig, SimulationStatus
from models.snapshot import MarketSnapshot

logger = logging.getLogger(__name__)

Cursor = duckdb.DuckDBPyConnection

_TIMESTAMP_COLUMNS = frozenset({"timestamp", "created_at", "updated_at"})

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS simulation_configs (
        id VARCHAR PRIMARY KEY,
        symbol VARCHAR NOT NULL,
        start_capital DOUBLE NOT NULL,
        duration_days INTEGER NOT NULL,
        current_day INTEGER NOT NULL DEFAULT 0,
        status VARCHAR NOT NULL,
        cheap_model_id VARCHAR NOT NULL,
        premium_model_id VARCHAR NOT NULL,
        algo_weight_technical INTEGER NOT NULL DEFAULT 60,
        use_reddit BOOLEAN NOT NULL DEFAULT FALSE,
        created_by VARCHAR,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS portfolios (
        id VARCHAR PRIMARY KEY,
        simulation_id VARCHAR NOT NULL,
        bot_type VARCHAR NOT NULL,
        cash DOUBLE NOT NULL,
        shares DOUBLE NOT NULL,
        avg_buy_price DOUBLE,
        total_value DOUBLE NOT NULL,
        roi DOUBLE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS market_snapshots (
        id VARCHAR PRIMARY KEY,
        simulation_id VARCHAR NOT NULL,
        symbol VARCHAR NOT NULL,
        timestamp TIMESTAMP NOT NULL,
        created_at TIMESTAMP NOT NULL,
        price DOUBLE NOT NULL,
        sentiment_score DOUBLE NOT NULL,
        sentiment_reason VARCHAR,
        rsi DOUBLE,
        macd DOUBLE,
        macd_signal DOUBLE,
        macd_histogram DOUBLE,
        ema9 DOUBLE,
        ema21 DOUBLE,
        ema50 DOUBLE,
        ema_trend VARCHAR,
        bollinger_upper DOUBLE,
        bollinger_middle DOUBLE,
        bollinger_lower DOUBLE,
        bollinger_width DOUBLE,
        atr DOUBLE,
        atr_percent DOUBLE,
        reddit_hype DOUBLE,
        stocktwits_bulls INTEGER,
        stocktwits_bears INTEGER,
        fear_greed_index INTEGER,
        fear_greed_label VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bot_decisions (
        id VARCHAR PRIMARY KEY,
        snapshot_id VARCHAR NOT NULL,
        bot_type VARCHAR NOT NULL,
        action VARCHAR NOT NULL,
        quantity DOUBLE NOT NULL,
        price DOUBLE NOT NULL,
        reason VARCHAR NOT NULL,
        confidence DOUBLE NOT NULL,
        tokens INTEGER NOT NULL DEFAULT 0,
        cost DOUBLE NOT NULL DEFAULT 0,
        debug_data JSON,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tick_claims (
        bucket TIMESTAMP PRIMARY KEY,
        claimed_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_portfolios_sim ON portfolios(simulation_id)",
    "CREATE INDEX IF NOT EXISTS idx_snapshots_sim ON market_snapshots(simulation_id)",
    "CREATE INDEX IF NOT EXISTS idx_snapshots_ts ON market_snapshots(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_decisions_snapshot ON bot_decisions(snapshot_id)",
)


class TradingStore:
    """Repository over a single DuckDB database file (or ``:memory:``)."""

    def __init__(self, database_path: str = ":memory:") -> None:
        self._database_path = database_path
        self._conn = duckdb.connect(database_path)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        for statement in _SCHEMA:
            self._conn.execute(statement)

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Cursor]:
        """Yield a cursor inside ``BEGIN``; commit on success, roll back on any error."""
        cur = self._conn.cursor()
        cur.execute("BEGIN TRANSACTION")
        try:
            yield cur
        except BaseException:
            cur.execute("ROLLBACK")
            raise
        else:
            cur.execute("COMMIT")
        finally:
            cur.close()

    def _cursor(self, cur: Cursor | None) -> Cursor:
        return cur if cur is not None else self._conn.cursor()

    # ------------------------------------------------------------------
    # Simulations
    # ------------------------------------------------------------------

    def insert_simulation(self, config: SimulationConfig, cur: Cursor | None = None) -> None:
        _insert(self._cursor(cur), "simulation_configs", config.model_dump())

    def update_simulation(self, config: SimulationConfig, cur: Cursor | None = None) -> None:
        """Persist the mutable fields of *config* (day, status, weight, timestamps)."""
        self._cursor(cur).execute(
            """
            UPDATE simulation_configs
            SET current_day = ?, status = ?, algo_weight_technical = ?, updated_at = ?
            WHERE id = ?
            """,
            [
                config.current_day,
                config.status.value,
                config.algo_weight_technical,
                _to_db(config.updated_at),
                config.id,
            ],
        )

    def set_status(
        self,
        simulation_id: str,
        status: SimulationStatus,
        updated_at: datetime,
        cur: Cursor | None = None,
    ) -> None:
        """Change only the status, leaving the day a concurrent tick may be writing."""
        self._cursor(cur).execute(
            "UPDATE simulation_configs SET status = ?, updated_at = ? WHERE id = ?",
            [status.value, _to_db(updated_at), simulation_id],
        )

    def set_algo_weight(
        self,
        simulation_id: str,
        weight_technical: int,
        updated_at: datetime,
        cur: Cursor | None = None,
    ) -> None:
        self._cursor(cur).execute(
            "UPDATE simulation_configs SET algo_weight_technical = ?, updated_at = ? WHERE id = ?",
            [weight_technical, _to_db(updated_at), simulation_id],
        )

    def get_simulation(self, simulation_id: str, cur: Cursor | None = None) -> SimulationConfig | None:
        rows = _fetch(
            self._cursor(cur),
            "SELECT * FROM simulation_configs WHERE id = ?",
            [simulation_id],
        )
        return SimulationConfig(**rows[0]) if rows else None

    def get_running_simulation(self, cur: Cursor | None = None) -> SimulationConfig | None:
        rows = _fetch(
            self._cursor(cur),
            "SELECT * FROM simulation_configs WHERE status = ? ORDER BY created_at DESC LIMIT 1",
            [SimulationStatus.RUNNING.value],
        )
        return SimulationConfig(**rows[0]) if rows else None

    def count_running_simulations(self, cur: Cursor | None = None) -> int:
        row = self._cursor(cur).execute(
            "SELECT COUNT(*) FROM simulation_configs WHERE status = ?",
            [SimulationStatus.RUNNING.value],
        ).fetchone()
        return int(row[0]) if row else 0

    def list_finished_simulations(self, limit: int = 20, cur: Cursor | None = None) -> list[SimulationConfig]:
        """COMPLETED simulations, plus IDLE ones that ran at least one tick; newest first."""
        rows = _fetch(
            self._cursor(cur),
            """
            SELECT * FROM simulation_configs
            WHERE status = ? OR (status = ? AND current_day > 0)
            ORDER BY created_at DESC
            LIMIT ?
            """,
            [SimulationStatus.COMPLETED.value, SimulationStatus.IDLE.value, limit],
        )
        return [SimulationConfig(**row) for row in rows]

    # ------------------------------------------------------------------
    # Portfolios
    # ------------------------------------------------------------------

    def insert_portfolio(self, portfolio: Portfolio, cur: Cursor | None = None) -> None:
        _insert(self._cursor(cur), "portfolios", portfolio.model_dump())

    def save_portfolio(self, portfolio: Portfolio, cur: Cursor | None = None) -> None:
        self._cursor(cur).execute(
            """
            UPDATE portfolios
            SET cash = ?, shares = ?, avg_buy_price = ?, total_value = ?, roi = ?
            WHERE id = ?
            """,
            [
                portfolio.cash,
                portfolio.shares,
                portfolio.avg_buy_price,
                portfolio.total_value,
                portfolio.roi,
                portfolio.id,
            ],
        )

    def get_portfolios(self, simulation_id: str, cur: Cursor | None = None) -> dict[BotType, Portfolio]:
        rows = _fetch(
            self._cursor(cur),
            "SELECT * FROM portfolios WHERE simulation_id = ?",
            [simulation_id],
        )
        portfolios = [Portfolio(**row) for row in rows]
        return {p.bot_type: p for p in portfolios}

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def insert_snapshot(self, snapshot: MarketSnapshot, cur: Cursor | None = None) -> None:
        _insert(self._cursor(cur), "market_snapshots", snapshot.model_dump())

    def snapshot_exists_for_hour(self, bucket: datetime, cur: Cursor | None = None) -> bool:
        """True if any simulation already has a snapshot in the hour bucket."""
        row = self._cursor(cur).execute(
            "SELECT COUNT(*) FROM market_snapshots WHERE timestamp = ?",
            [_to_db(bucket)],
        ).fetchone()
        return bool(row and row[0])

    def claim_hour(self, bucket: datetime, claimed_at: datetime) -> bool:
        """Reserve the hour bucket for one tick.

        False if the bucket already has a snapshot or another tick holds the
        claim. The check and the insert commit together, and the primary key
        on ``tick_claims.bucket`` rejects a second concurrent claim.
        """
        try:
            with self.transaction() as cur:
                if self.snapshot_exists_for_hour(bucket, cur=cur):
                    return False
                cur.execute(
                    "INSERT INTO tick_claims (bucket, claimed_at) VALUES (?, ?)",
                    [_to_db(bucket), _to_db(claimed_at)],
                )
        except (duckdb.ConstraintException, duckdb.TransactionException) as exc:
            logger.info("Hour %s already claimed: %s", bucket.isoformat(), exc)
            return False
        return True

    def release_hour(self, bucket: datetime) -> None:
        """Drop the claim so a later call in the same hour can retry."""
        self._conn.cursor().execute("DELETE FROM tick_claims WHERE bucket = ?", [_to_db(bucket)])

    def get_snapshot(self, snapshot_id: str, cur: Cursor | None = None) -> MarketSnapshot | None:
        rows = _fetch(
            self._cursor(cur),
            "SELECT * FROM market_snapshots WHERE id = ?",
            [snapshot_id],
        )
        return MarketSnapshot(**rows[0]) if rows else None

    def latest_snapshot(self, simulation_id: str, cur: Cursor | None = None) -> MarketSnapshot | None:
        rows = _fetch(
            self._cursor(cur),
            """
            SELECT * FROM market_snapshots
            WHERE simulation_id = ?
            ORDER BY created_at DESC
            LIMIT 1
            """,
            [simulation_id],
        )
        return MarketSnapshot(**rows[0]) if rows else None

    def list_snapshots(self, simulation_id: str, cur: Cursor | None = None) -> list[MarketSnapshot]:
        """All snapshots of a simulation, oldest first."""
        rows = _fetch(
            self._cursor(cur),
            "SELECT * FROM market_snapshots WHERE simulation_id = ? ORDER BY created_at ASC",
            [simulation_id],
        )
        return [MarketSnapshot(**row) for row in rows]

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def insert_decision(self, decision: BotDecision, cur: Cursor | None = None) -> None:
        row = decision.model_dump()
        row["debug_data"] = json.dumps(row["debug_data"], default=str) if row["debug_data"] is not None else None
        _insert(self._cursor(cur), "bot_decisions", row)

    def decisions_for_snapshot(self, snapshot_id: str, cur: Cursor | None = None) -> list[BotDecision]:
        rows = _fetch(
            self._cursor(cur),
            "SELECT * FROM bot_decisions WHERE snapshot_id = ? ORDER BY created_at ASC, bot_type ASC",
            [snapshot_id],
        )
        return [_decision(row) for row in rows]

    def decisions_for_simulation(
        self,
        simulation_id: str,
        limit: int | None = None,
        cur: Cursor | None = None,
    ) -> list[BotDecision]:
        """Decisions of a simulation, newest first; all of them unless *limit* is given."""
        sql = """
            SELECT d.* FROM bot_decisions d
            JOIN market_snapshots s ON s.id = d.snapshot_id
            WHERE s.simulation_id = ?
            ORDER BY s.created_at DESC, d.created_at DESC, d.bot_type ASC
        """
        params: list[Any] = [simulation_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = _fetch(self._cursor(cur), sql, params)
        return [_decision(row) for row in rows]

    def recent_decisions(
        self,
        simulation_id: str,
        bot_type: BotType,
        limit: int = 3,
        cur: Cursor | None = None,
    ) -> list[BotDecision]:
        """The bot's last *limit* decisions in this simulation, newest first."""
        rows = _fetch(
            self._cursor(cur),
            """
            SELECT d.* FROM bot_decisions d
            JOIN market_snapshots s ON s.id = d.snapshot_id
            WHERE s.simulation_id = ? AND d.bot_type = ?
            ORDER BY s.created_at DESC, d.created_at DESC
            LIMIT ?
            """,
            [simulation_id, bot_type.value, limit],
        )
        return [_decision(row) for row in rows]


# ------------------------------------------------------------------
# Row helpers
# ------------------------------------------------------------------

def _to_db(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _to_db(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _insert(cur: Cursor, table: str, row: dict[str, Any]) -> None:
    columns = list(row)
    placeholders = ", ".join("?" for _ in columns)
    cur.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
        [_db_value(row[c]) for c in columns],
    )


def _fetch(cur: Cursor, sql: str, params: list[Any]) -> list[dict[str, Any]]:
    result = cur.execute(sql, params)
    columns = [d[0] for d in result.description]
    rows = []
    for values in result.fetchall():
        row = dict(zip(columns, values))
        for key in _TIMESTAMP_COLUMNS & row.keys():
            if isinstance(row[key], datetime) and row[key].tzinfo is None:
                row[key] = row[key].replace(tzinfo=timezone.utc)
        rows.append(row)
    return rows


def _decision(row: dict[str, Any]) -> BotDecision:
    if isinstance(row.get("debug_data"), str):
        row["debug_data"] = json.loads(row["debug_data"])
    return BotDecision(**row)
