"""
Embedded relational storage backend.

Three tables, one per tier (raw, hourly, daily), each with an indexed text
timestamp column and a unit key column. A retained unit is the set of rows
sharing a unit key, so rotation deletes by key instead of removing files.
Timestamps are text with microseconds (YYYY-MM-DD HH:MM:SS.ffffff); rows
without the fraction from older stores are still read.
"""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError, QueryError, Result, WriteError
from .interfaces import Reading, StorageBackend, decode_timestamp, encode_range_start, encode_timestamp
from .logger import get_logger
from .tiers import Tier, UNIT_PREFIX, parse_unit_id


MEMORY_PATH = ":memory:"

TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    value REAL NOT NULL,
    timestamp TEXT NOT NULL,
    unit TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_{table}_timestamp ON {table}(timestamp);
CREATE INDEX IF NOT EXISTS idx_{table}_unit ON {table}(unit);
"""


class SQLiteBackend(StorageBackend):
    """SQLite database holding one table per tier."""

    def __init__(self, db_path: str = "data/telemetry.db"):
        self.db_path = db_path
        self.connection: Optional[sqlite3.Connection] = None
        self.active_units: Dict[Tier, str] = {}
        self._lock = threading.Lock()
        self.logger = get_logger("SQLiteBackend")

    @property
    def is_open(self) -> bool:
        return self.connection is not None

    @staticmethod
    def _table(tier: Tier) -> str:
        return UNIT_PREFIX[tier]

    def open(self) -> Result:
        with self._lock:
            if self.connection is not None:
                return Result.success()

            connection = None
            try:
                if self.db_path != MEMORY_PATH:
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                connection = sqlite3.connect(self.db_path, check_same_thread=False)
                for tier in Tier:
                    connection.executescript(TABLE_SCHEMA.format(table=self._table(tier)))
                connection.commit()
            except (OSError, sqlite3.Error) as e:
                if connection is not None:
                    connection.close()
                self.logger.error(f"Cannot open database {self.db_path}: {e}")
                return Result.failure(ConfigurationError(f"Cannot open database {self.db_path}: {e}"))

            self.connection = connection
            self.logger.info(f"Database initialized successfully: {self.db_path}")
            return Result.success()

    def close(self):
        with self._lock:
            if self.connection is not None:
                self.connection.close()
                self.connection = None
                self.logger.info(f"Database closed: {self.db_path}")
            self.active_units.clear()

    def open_unit(self, tier: Tier, unit_id: str) -> Result:
        with self._lock:
            if self.connection is None:
                return Result.failure(WriteError("Database is closed"))
            self.active_units[tier] = unit_id
            return Result.success()

    def close_unit(self, tier: Tier):
        with self._lock:
            self.active_units.pop(tier, None)

    def append(self, tier: Tier, reading: Reading) -> Result:
        with self._lock:
            if self.connection is None:
                return Result.failure(WriteError("Database is closed"))
            unit_id = self.active_units.get(tier)
            if unit_id is None:
                return Result.failure(WriteError(f"No active {tier.value} unit"))

            try:
                with self.connection:
                    self.connection.execute(
                        f"INSERT INTO {self._table(tier)} (value, timestamp, unit) VALUES (?, ?, ?)",
                        (reading.value, encode_timestamp(reading.timestamp), unit_id),
                    )
            except sqlite3.Error as e:
                self.logger.error(f"Failed to log reading to database: {e}")
                return Result.failure(WriteError(f"Insert into {self._table(tier)} failed: {e}"))
            return Result.success()

    def _select(self, sql: str, params: tuple) -> list:
        """Run a read query; caller holds the lock."""
        if self.connection is None:
            raise QueryError("Database is closed")
        try:
            return self.connection.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise QueryError(f"Query failed: {e}") from e

    def query_range(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> List[Reading]:
        with self._lock:
            rows = self._select(
                f"SELECT value, timestamp FROM {self._table(tier)} "
                f"WHERE timestamp BETWEEN ? AND ? ORDER BY timestamp, id",
                (encode_range_start(start), encode_timestamp(end)),
            )
        return [Reading(value, decode_timestamp(ts)) for value, ts in rows]

    def query_average(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> float:
        with self._lock:
            rows = self._select(
                f"SELECT AVG(value) FROM {self._table(tier)} WHERE timestamp BETWEEN ? AND ?",
                (encode_range_start(start), encode_timestamp(end)),
            )
        average = rows[0][0] if rows else None
        return float(average) if average is not None else 0.0

    def query_recent(self, n: int, tier: Tier = Tier.RAW) -> List[Reading]:
        if n <= 0:
            return []
        with self._lock:
            rows = self._select(
                f"SELECT value, timestamp FROM {self._table(tier)} ORDER BY timestamp DESC, id DESC LIMIT ?",
                (n,),
            )
        return [Reading(value, decode_timestamp(ts)) for value, ts in rows]

    def count(self, tier: Tier = Tier.RAW) -> int:
        with self._lock:
            rows = self._select(f"SELECT COUNT(*) FROM {self._table(tier)}", ())
        return rows[0][0]

    def list_units(self, tier: Tier) -> List[Tuple[str, Optional[datetime]]]:
        with self._lock:
            if self.connection is None:
                return []
            try:
                rows = self.connection.execute(
                    f"SELECT DISTINCT unit FROM {self._table(tier)} ORDER BY unit"
                ).fetchall()
            except sqlite3.Error as e:
                self.logger.error(f"Cannot list {tier.value} units: {e}")
                return []
        return [(unit, parse_unit_id(tier, unit)) for (unit,) in rows]

    def delete_unit(self, tier: Tier, unit_id: str) -> Result:
        with self._lock:
            if self.connection is None:
                return Result.failure(WriteError("Database is closed"))
            try:
                with self.connection:
                    self.connection.execute(f"DELETE FROM {self._table(tier)} WHERE unit = ?", (unit_id,))
            except sqlite3.Error as e:
                self.logger.error(f"Cannot delete unit {unit_id}: {e}")
                return Result.failure(WriteError(f"Cannot delete unit {unit_id}: {e}"))

            if self.active_units.get(tier) == unit_id:
                del self.active_units[tier]
            return Result.success()

    def get_stats(self) -> dict:
        stats = {"backend": "sqlite", "path": self.db_path}
        with self._lock:
            if self.connection is None:
                return stats
            for tier in Tier:
                table = self._table(tier)
                rows, units = self.connection.execute(
                    f"SELECT COUNT(*), COUNT(DISTINCT unit) FROM {table}"
                ).fetchone()
                stats[f"{tier.value}_rows"] = rows
                stats[f"{tier.value}_units"] = units
        return stats
