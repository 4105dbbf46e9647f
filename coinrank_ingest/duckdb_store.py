"""
DuckDB persistence layer for the daily coin ingestion.

This module provides a DuckDBStore class that owns the coins dimension table,
the coin_data observation table and a small run-state row. A single store
(and connection) is created at startup and handed to the orchestrator.
"""

import duckdb
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Iterable, Union
from datetime import datetime
from contextlib import contextmanager

import pandas as pd

from .transform import records_to_frame, latest_coin_rows

logger = logging.getLogger(__name__)

RecordsLike = Union[pd.DataFrame, Iterable]


@dataclass
class Coin:
    """Dimension row: one per upstream uuid."""
    id: int
    uuid: str
    symbol: str
    name: str


@dataclass
class CoinObservation:
    """Fact row: one price/market-cap observation of a coin."""
    id: int
    coin_id: int
    price: float
    market_cap: float
    ts: datetime


@dataclass
class IngestionState:
    """Global ingestion process state."""
    run_status: str  # 'idle' | 'running' | 'error'
    last_updated_ts: Optional[datetime]
    last_record_count: Optional[int]


class DuckDBStore:
    """
    DuckDB-backed storage for coins and their observations.

    Handles schema initialization, bulk upserts of the coins dimension and
    appends to the coin_data fact table, with a transaction helper so a whole
    cycle can be committed or rolled back as one unit.
    """

    RUN_STATUS_IDLE = "idle"
    RUN_STATUS_RUNNING = "running"
    RUN_STATUS_ERROR = "error"

    def __init__(self, db_path: str = "coins.duckdb"):
        """
        Initialize DuckDB connection.

        :param db_path: Path to DuckDB database file. Use ':memory:' for in-memory DB.
        """
        self.db_path = db_path
        self.conn = duckdb.connect(db_path)
        self._initialize_schema()

    def _initialize_schema(self):
        """Create all required tables and indexes if they don't exist."""

        self.conn.execute("CREATE SEQUENCE IF NOT EXISTS coins_id_seq START 1")
        self.conn.execute("CREATE SEQUENCE IF NOT EXISTS coin_data_id_seq START 1")

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS coins (
                id INTEGER PRIMARY KEY DEFAULT nextval('coins_id_seq'),
                uuid VARCHAR NOT NULL UNIQUE,
                symbol VARCHAR,
                name VARCHAR
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS coin_data (
                id INTEGER PRIMARY KEY DEFAULT nextval('coin_data_id_seq'),
                coin_id INTEGER NOT NULL REFERENCES coins(id),
                price DOUBLE NOT NULL,
                market_cap DOUBLE NOT NULL,
                ts TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Run state (singleton row)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS ingestion_state (
                id INTEGER PRIMARY KEY DEFAULT 1,
                run_status VARCHAR DEFAULT 'idle',
                last_updated_ts TIMESTAMP,
                last_record_count INTEGER
            )
        """)

        self.conn.execute("""
            INSERT INTO ingestion_state (id, run_status)
            SELECT 1, 'idle'
            WHERE NOT EXISTS (SELECT 1 FROM ingestion_state WHERE id = 1)
        """)

        self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_coin_data_coin
            ON coin_data(coin_id)
        """)

        logger.info("DuckDB schema initialized successfully")

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    @contextmanager
    def transaction(self):
        """
        Context manager for transactional operations.

        Usage:
            with store.transaction():
                store.upsert_coins(records)
                store.append_observations(records)
        """
        try:
            self.conn.execute("BEGIN TRANSACTION")
            yield
            self.conn.execute("COMMIT")
        except Exception as e:
            self.conn.execute("ROLLBACK")
            logger.error(f"Transaction rolled back due to error: {e}")
            raise

    @contextmanager
    def _registered(self, name: str, df: pd.DataFrame):
        self.conn.register(name, df)
        try:
            yield name
        finally:
            self.conn.unregister(name)

    @staticmethod
    def _as_frame(records: RecordsLike) -> pd.DataFrame:
        if isinstance(records, pd.DataFrame):
            return records
        return records_to_frame(records)

    # ==================== Ingestion State Operations ====================

    def get_ingestion_state(self) -> IngestionState:
        """Get current ingestion state."""
        result = self.conn.execute("""
            SELECT run_status, last_updated_ts, last_record_count
            FROM ingestion_state
            WHERE id = 1
        """).fetchone()

        if result:
            return IngestionState(
                run_status=result[0] or self.RUN_STATUS_IDLE,
                last_updated_ts=result[1],
                last_record_count=result[2]
            )
        return IngestionState(self.RUN_STATUS_IDLE, None, None)

    def update_ingestion_state(
        self,
        run_status: Optional[str] = None,
        last_record_count: Optional[int] = None
    ):
        """
        Update global ingestion state.

        :param run_status: Current run status
        :param last_record_count: Number of records handled by the last cycle
        """
        updates = ["last_updated_ts = ?"]
        params = [datetime.now()]

        if run_status is not None:
            updates.append("run_status = ?")
            params.append(run_status)

        if last_record_count is not None:
            updates.append("last_record_count = ?")
            params.append(last_record_count)

        query = f"UPDATE ingestion_state SET {', '.join(updates)} WHERE id = 1"
        self.conn.execute(query, params)

    # ==================== Coin Operations ====================

    def upsert_coins(self, records: RecordsLike) -> int:
        """
        Insert coins keyed by uuid, updating symbol and name on conflict.

        Runs as a single bulk statement. A uuid repeated in ``records`` is
        written once with its last observed symbol/name.

        :param records: Fetched records or a frame from records_to_frame
        :return: Number of distinct coins written
        """
        df = self._as_frame(records)
        if df.empty:
            logger.debug("No coins to upsert")
            return 0

        coins = latest_coin_rows(df)

        with self._registered("incoming_coins", coins):
            self.conn.execute("""
                INSERT INTO coins (uuid, symbol, name)
                SELECT uuid, symbol, name FROM incoming_coins
                ON CONFLICT (uuid) DO UPDATE SET
                    symbol = EXCLUDED.symbol,
                    name = EXCLUDED.name
            """)

        logger.info(f"Upserted {len(coins)} coins")
        return len(coins)

    def get_coin(self, uuid: str) -> Optional[Coin]:
        """
        Get a coin by its upstream uuid.

        :param uuid: Upstream coin identifier
        :return: Coin or None if not found
        """
        result = self.conn.execute("""
            SELECT id, uuid, symbol, name FROM coins
            WHERE uuid = ?
        """, [uuid]).fetchone()

        if result:
            return Coin(id=result[0], uuid=result[1], symbol=result[2], name=result[3])
        return None

    def get_coin_id(self, uuid: str) -> Optional[int]:
        coin = self.get_coin(uuid)
        return coin.id if coin else None

    def get_all_coin_uuids(self) -> List[str]:
        """Get all coin uuids in the database."""
        result = self.conn.execute("""
            SELECT uuid FROM coins ORDER BY id
        """).fetchall()
        return [row[0] for row in result]

    def get_coin_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM coins").fetchone()[0]

    # ==================== Observation Operations ====================

    def append_observations(self, records: RecordsLike) -> int:
        """
        Append one coin_data row per record whose uuid resolves to a coin.

        Must run after upsert_coins for the same records. Records with an
        unknown uuid are skipped.

        :param records: Fetched records or a frame from records_to_frame
        :return: Number of observation rows inserted
        """
        df = self._as_frame(records)
        if df.empty:
            return 0

        observations = df[["uuid", "price", "market_cap"]].reset_index(drop=True)
        observations["seq"] = range(len(observations))

        with self._registered("incoming_observations", observations):
            coin_ids = self.conn.execute("""
                SELECT c.uuid, c.id AS coin_id
                FROM coins c
                WHERE c.uuid IN (SELECT uuid FROM incoming_observations)
            """).df()

        resolved = observations.merge(coin_ids, on="uuid", how="left")
        unresolved = resolved[resolved["coin_id"].isna()]
        if not unresolved.empty:
            logger.debug(f"Skipping {len(unresolved)} observations with unknown uuid: "
                         f"{sorted(set(unresolved['uuid']))}")

        rows = resolved.dropna(subset=["coin_id"]).sort_values("seq")
        if rows.empty:
            return 0

        rows = rows.assign(coin_id=rows["coin_id"].astype("int64"))[["coin_id", "price", "market_cap", "seq"]]

        with self._registered("resolved_observations", rows):
            self.conn.execute("""
                INSERT INTO coin_data (coin_id, price, market_cap)
                SELECT coin_id, price, market_cap FROM resolved_observations
                ORDER BY seq
            """)

        logger.info(f"Appended {len(rows)} observations")
        return len(rows)

    def persist_cycle(self, records: RecordsLike) -> Dict[str, int]:
        """
        Upsert coins and append observations for one cycle atomically.

        :return: {"coins_upserted": ..., "observations_appended": ...}
        """
        df = self._as_frame(records)

        with self.transaction():
            upserted = self.upsert_coins(df)
            appended = self.append_observations(df)

        return {"coins_upserted": upserted, "observations_appended": appended}

    def get_observations(self, uuid: str) -> List[CoinObservation]:
        """
        Get all observations for a coin, oldest first.

        :param uuid: Upstream coin identifier
        """
        result = self.conn.execute("""
            SELECT d.id, d.coin_id, d.price, d.market_cap, d.ts
            FROM coin_data d
            JOIN coins c ON c.id = d.coin_id
            WHERE c.uuid = ?
            ORDER BY d.id
        """, [uuid]).fetchall()

        return [
            CoinObservation(id=row[0], coin_id=row[1], price=row[2], market_cap=row[3], ts=row[4])
            for row in result
        ]

    def get_observation_count(self, uuid: Optional[str] = None) -> int:
        """
        Count observation rows, optionally for a single coin.

        :param uuid: Upstream coin identifier, or None for all coins
        """
        if uuid is None:
            return self.conn.execute("SELECT COUNT(*) FROM coin_data").fetchone()[0]

        result = self.conn.execute("""
            SELECT COUNT(*) FROM coin_data d
            JOIN coins c ON c.id = d.coin_id
            WHERE c.uuid = ?
        """, [uuid]).fetchone()
        return result[0] if result else 0

    # ==================== Utility Methods ====================

    def get_ingestion_summary(self) -> Dict[str, Any]:
        """
        Get summary statistics about the stored data.

        :return: Dictionary with summary statistics
        """
        state = self.get_ingestion_state()

        return {
            "total_coins": self.get_coin_count(),
            "total_observations": self.get_observation_count(),
            "run_status": state.run_status,
            "last_updated": state.last_updated_ts,
            "last_record_count": state.last_record_count
        }
