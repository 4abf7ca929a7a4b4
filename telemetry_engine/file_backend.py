"""
Flat-file storage backend: one append-only text file per retained unit.

Each unit starts with a short comment header followed by one
"timestamp, value" record per line. Units are read back with the Arrow CSV
reader and filtered/sorted with Arrow compute kernels.
"""

import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.csv as pv

from .errors import ConfigurationError, QueryError, Result, WriteError
from .interfaces import Reading, StorageBackend, decode_timestamp, encode_range_start, encode_timestamp
from .logger import get_logger
from .tiers import Tier, UNIT_PREFIX, parse_unit_id


UNIT_EXTENSION = ".txt"
HEADER_LINES = 3
COLUMN_NAMES = ["timestamp", "value"]

TIER_TITLES = {
    Tier.RAW: "Temperature",
    Tier.HOURLY: "Hourly Average",
    Tier.DAILY: "Daily Average",
}

EMPTY_SCHEMA = pa.schema([("timestamp", pa.string()), ("value", pa.float64())])


class UnitFile:
    """A single retained unit on disk."""

    def __init__(self, file_path: Path, tier: Tier, sync_writes: bool = False):
        self.file_path = file_path
        self.tier = tier
        self.sync_writes = sync_writes
        self.file_handle = None

    @property
    def unit_id(self) -> str:
        return self.file_path.stem

    @property
    def is_open(self) -> bool:
        return self.file_handle is not None

    def open_for_append(self, created: datetime):
        """Open the unit for appending, writing the header if the file is new."""
        is_new = not self.file_path.exists()
        self.file_handle = open(self.file_path, 'a', encoding='utf-8')

        if is_new:
            self.file_handle.write(f"# {TIER_TITLES[self.tier]} Log File\n")
            self.file_handle.write(f"# Created: {encode_timestamp(created)}\n")
            self.file_handle.write("# Format: Timestamp, Value\n")
            self.file_handle.flush()

    def write_reading(self, reading: Reading):
        if not self.is_open:
            raise WriteError(f"Unit {self.unit_id} not open for writing")

        self.file_handle.write(f"{encode_timestamp(reading.timestamp)}, {reading.value!r}\n")
        self.file_handle.flush()
        if self.sync_writes:
            os.fsync(self.file_handle.fileno())

    def read_table(self) -> pa.Table:
        """Read all records as a (timestamp: string, value: float64) table."""
        try:
            table = pv.read_csv(
                self.file_path,
                read_options=pv.ReadOptions(skip_rows=HEADER_LINES, column_names=COLUMN_NAMES),
                convert_options=pv.ConvertOptions(
                    column_types={"timestamp": pa.string(), "value": pa.string()}
                ),
            )
        except pa.ArrowInvalid:
            # A unit holding only its header has no CSV body at all
            if self._line_count() <= HEADER_LINES:
                return EMPTY_SCHEMA.empty_table()
            raise

        timestamps = pc.utf8_trim_whitespace(table.column("timestamp"))
        values = pc.cast(pc.utf8_trim_whitespace(table.column("value")), pa.float64())
        return pa.table({"timestamp": timestamps, "value": values}, schema=EMPTY_SCHEMA)

    def _line_count(self) -> int:
        with open(self.file_path, 'r', encoding='utf-8') as f:
            return sum(1 for _ in f)

    def close(self):
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None

    def delete(self):
        """Delete the unit file."""
        self.close()
        if self.file_path.exists():
            self.file_path.unlink()


class FileBackend(StorageBackend):
    """Directory of per-tier unit files with timestamp-encoded names."""

    def __init__(self, directory: str, sync_writes: bool = False):
        self.directory = Path(directory)
        self.sync_writes = sync_writes
        self.active_units: Dict[Tier, UnitFile] = {}
        self.is_open = False
        self._lock = threading.Lock()
        self.logger = get_logger("FileBackend")

    def open(self) -> Result:
        with self._lock:
            if self.is_open:
                return Result.success()
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                self.logger.error(f"Cannot create store directory {self.directory}: {e}")
                return Result.failure(ConfigurationError(f"Cannot create store directory {self.directory}: {e}"))
            if not os.access(self.directory, os.W_OK):
                self.logger.error(f"Store directory is not writable: {self.directory}")
                return Result.failure(ConfigurationError(f"Store directory is not writable: {self.directory}"))

            self.is_open = True
            self.logger.info(f"File store opened at {self.directory}")
            return Result.success()

    def close(self):
        with self._lock:
            for unit in self.active_units.values():
                unit.close()
            self.active_units.clear()
            if self.is_open:
                self.logger.info(f"File store closed at {self.directory}")
            self.is_open = False

    def _unit_path(self, unit_id: str) -> Path:
        return self.directory / f"{unit_id}{UNIT_EXTENSION}"

    def _discover_units(self, tier: Tier) -> List[Path]:
        """Find existing unit files of a tier, oldest name first."""
        pattern = f"{UNIT_PREFIX[tier]}_*{UNIT_EXTENSION}"
        return sorted(self.directory.glob(pattern))

    def open_unit(self, tier: Tier, unit_id: str) -> Result:
        with self._lock:
            if not self.is_open:
                return Result.failure(WriteError("File store is closed"))

            active = self.active_units.get(tier)
            if active is not None and active.unit_id == unit_id:
                return Result.success()
            if active is not None:
                active.close()

            unit = UnitFile(self._unit_path(unit_id), tier, self.sync_writes)
            try:
                unit.open_for_append(datetime.now(timezone.utc))
            except OSError as e:
                self.active_units.pop(tier, None)
                self.logger.error(f"Cannot open unit {unit_id}: {e}")
                return Result.failure(WriteError(f"Cannot open unit {unit_id}: {e}"))

            self.active_units[tier] = unit
            self.logger.debug(f"Opened unit {unit_id}")
            return Result.success()

    def close_unit(self, tier: Tier):
        with self._lock:
            unit = self.active_units.pop(tier, None)
            if unit is not None:
                unit.close()
                self.logger.debug(f"Closed unit {unit.unit_id}")

    def append(self, tier: Tier, reading: Reading) -> Result:
        with self._lock:
            unit = self.active_units.get(tier)
            if unit is None:
                return Result.failure(WriteError(f"No active {tier.value} unit"))
            try:
                unit.write_reading(reading)
            except (OSError, ValueError, WriteError) as e:
                self.logger.error(f"Write to {unit.unit_id} failed: {e}")
                return Result.failure(e if isinstance(e, WriteError) else WriteError(str(e)))
            return Result.success()

    def _read_tier(self, tier: Tier) -> pa.Table:
        """Combine every unit of a tier into one table."""
        if not self.is_open:
            raise QueryError("File store is closed")

        tables = []
        for path in self._discover_units(tier):
            try:
                tables.append(UnitFile(path, tier).read_table())
            except FileNotFoundError:
                continue  # deleted by a concurrent rotation
            except (OSError, pa.ArrowException) as e:
                raise QueryError(f"Cannot read unit {path.name}: {e}") from e

        if not tables:
            return EMPTY_SCHEMA.empty_table()
        return pa.concat_tables(tables)

    def _filter_range(self, table: pa.Table, start: datetime, end: datetime) -> pa.Table:
        col = table.column("timestamp")
        mask = pc.and_(
            pc.greater_equal(col, encode_range_start(start)),
            pc.less_equal(col, encode_timestamp(end)),
        )
        return table.filter(mask)

    @staticmethod
    def _to_readings(table: pa.Table) -> List[Reading]:
        timestamps = table.column("timestamp").to_pylist()
        values = table.column("value").to_pylist()
        return [Reading(float(v), decode_timestamp(ts)) for ts, v in zip(timestamps, values)]

    def query_range(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> List[Reading]:
        with self._lock:
            table = self._filter_range(self._read_tier(tier), start, end)
            table = table.sort_by([("timestamp", "ascending")])
            return self._to_readings(table)

    def query_average(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> float:
        with self._lock:
            table = self._filter_range(self._read_tier(tier), start, end)
            if table.num_rows == 0:
                return 0.0
            return pc.mean(table.column("value")).as_py()

    def query_recent(self, n: int, tier: Tier = Tier.RAW) -> List[Reading]:
        if n <= 0:
            return []
        with self._lock:
            table = self._read_tier(tier)
            # Arrow sort + slice for top-N
            table = table.sort_by([("timestamp", "descending")]).slice(0, n)
            return self._to_readings(table)

    def count(self, tier: Tier = Tier.RAW) -> int:
        with self._lock:
            return self._read_tier(tier).num_rows

    def list_units(self, tier: Tier) -> List[Tuple[str, Optional[datetime]]]:
        with self._lock:
            if not self.is_open:
                return []
            return [(path.stem, parse_unit_id(tier, path.stem)) for path in self._discover_units(tier)]

    def delete_unit(self, tier: Tier, unit_id: str) -> Result:
        with self._lock:
            active = self.active_units.get(tier)
            if active is not None and active.unit_id == unit_id:
                active.close()
                del self.active_units[tier]

            try:
                UnitFile(self._unit_path(unit_id), tier).delete()
            except OSError as e:
                self.logger.error(f"Cannot delete unit {unit_id}: {e}")
                return Result.failure(WriteError(f"Cannot delete unit {unit_id}: {e}"))

            self.logger.debug(f"Deleted unit {unit_id}")
            return Result.success()

    def get_stats(self) -> dict:
        with self._lock:
            stats = {"backend": "file", "path": str(self.directory)}
            if not self.is_open:
                return stats
            for tier in Tier:
                paths = self._discover_units(tier)
                stats[f"{tier.value}_units"] = len(paths)
                stats[f"{tier.value}_size_mb"] = sum(
                    p.stat().st_size for p in paths if p.exists()
                ) / (1024 * 1024)
            return stats
