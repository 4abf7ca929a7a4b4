"""
Telemetry engine coordinator.

Owns the virtual clock, the retention store and the aggregation buffers, and
is the only component producers and presentation layers talk to.
"""

import math
import threading
from datetime import datetime
from typing import List, Optional

from .buffers import AggregationBuffer, RecentReadings
from .clock import VirtualClock, HOUR, DAY, MONTH
from .config import EngineConfig, StorageConfig
from .errors import NotInitializedError, Result, WriteError
from .file_backend import FileBackend
from .interfaces import Reading, StorageBackend
from .logger import get_logger
from .retention import RetentionStore, RotationReport
from .sqlite_backend import SQLiteBackend
from .tiers import Tier, tier_policies


# Boundary span -> tier whose active unit rolls over (and is rotated) when it is crossed
ROLLOVER_TIERS = (
    (HOUR, Tier.RAW),
    (DAY, Tier.HOURLY),
    (MONTH, Tier.DAILY),
)


def create_backend(storage: StorageConfig) -> StorageBackend:
    """Instantiate the backend named by a storage config."""
    if storage.backend == "sqlite":
        return SQLiteBackend(storage.path)
    return FileBackend(storage.path)


class TelemetryEngine:
    """
    Ingests periodic scalar readings into tiered retention under a virtual clock.

    A single lock makes log_reading() and every query mutually exclusive.
    Rotation is lazy: it only happens inside log_reading() when a tier
    boundary has been crossed since the previous write, so long idle periods
    delay cleanup until the next write arrives.
    """

    def __init__(self, clock: Optional[VirtualClock] = None, recent_capacity: int = 100):
        self.clock = clock or VirtualClock()
        self.config: Optional[EngineConfig] = None
        self.store: Optional[RetentionStore] = None
        self.initialized = False
        self.logger = get_logger("TelemetryEngine")

        self._lock = threading.Lock()
        self._producers = []
        self._closing = False

        policies = tier_policies(self.clock)
        self.hourly_buffer = AggregationBuffer(policies[Tier.HOURLY].window)
        self.daily_buffer = AggregationBuffer(policies[Tier.DAILY].window)
        self.recent = RecentReadings(recent_capacity)

        self.current_value = 0.0
        self.last_write: Optional[datetime] = None
        self.measurement_interval = 1.0

        # Statistics
        self.readings_logged = 0
        self.write_failures = 0
        self.boundaries_crossed = {span: 0 for span, _ in ROLLOVER_TIERS}

    def initialize(self, config: Optional[EngineConfig] = None) -> Result:
        """
        Open (or create) the backing store.

        Returns a ConfigurationError failure if the store cannot be opened; the
        engine then stays uninitialized. Calling it again once initialized is a
        no-op success.
        """
        with self._lock:
            if self.initialized:
                return Result.success()

            config = config or EngineConfig()
            if config.clock is not None:
                self.clock.configure(config.clock)

            store = RetentionStore(create_backend(config.storage), self.clock)
            result = store.open()
            if not result:
                self.logger.error(f"Failed to initialize store: {result.error}")
                return result

            self.config = config
            self.store = store
            self.measurement_interval = config.measurement_interval

            # Windows follow the clock as configured now
            policies = store.policies
            self.hourly_buffer = AggregationBuffer(policies[Tier.HOURLY].window)
            self.daily_buffer = AggregationBuffer(policies[Tier.DAILY].window)
            self.last_write = None

            # Warm the recent ring from what the store already holds
            self.recent = RecentReadings(config.recent_capacity)
            for reading in reversed(store.query_recent(config.recent_capacity)):
                self.recent.append(reading)

            self._closing = False
            self.initialized = True
            self.logger.info(
                f"Telemetry engine initialized: backend={config.storage.backend}, "
                f"path={config.storage.path}, clock={self.clock.mode.value}, "
                f"recovered {len(self.recent)} recent reading(s)"
            )
            return Result.success()

    # --- ingestion ---------------------------------------------------------

    def log_reading(self, value: float, timestamp: Optional[datetime] = None) -> Result:
        """
        Record one reading.

        The reading is persisted to the RAW tier exactly once and always
        reaches the in-memory buffers, even when persistence fails. Returns
        the outcome of the persistent write.

        NaN and infinite values are rejected with a WriteError and leave no
        trace in the buffers or the store.
        """
        value = float(value)

        with self._lock:
            if not self.initialized:
                self.logger.warning("Engine not initialized, reading dropped")
                return Result.failure(NotInitializedError("Engine not initialized"))

            if not math.isfinite(value):
                self.write_failures += 1
                self.logger.warning(f"Non-finite reading rejected: {value}")
                return Result.failure(WriteError(f"Non-finite reading rejected: {value}"))

            # Read under the lock so clock order and apply order agree across producers
            if timestamp is None:
                timestamp = self.clock.now()
            reading = Reading(value, timestamp)

            crossed = self._crossed_boundaries(timestamp)
            if crossed:
                self._close_finished_buckets(crossed)

            result = self.store.append(Tier.RAW, reading)
            if not result:
                self.write_failures += 1
                self.logger.warning(f"Failed to persist reading {reading.value} at {timestamp}: {result.error}")

            self.hourly_buffer.add(reading)
            self.daily_buffer.add(reading)
            self.recent.append(reading)
            self.current_value = reading.value
            self.last_write = timestamp
            self.readings_logged += 1
            self.logger.debug(f"[{timestamp.isoformat()}] Reading: {reading.value}")

            for span, tier in crossed:
                self.store.rotate(tier)

            return result

    def _crossed_boundaries(self, timestamp: datetime) -> list:
        """(span, tier) pairs whose truncated bucket differs from the previous write's."""
        if self.last_write is None:
            return []
        crossed = []
        for span, tier in ROLLOVER_TIERS:
            if self.clock.bucket_start(timestamp, span) != self.clock.bucket_start(self.last_write, span):
                crossed.append((span, tier))
                self.boundaries_crossed[span] += 1
        return crossed

    def _close_finished_buckets(self, crossed: list):
        """Persist the finished hourly/daily averages, then roll the affected units over."""
        spans = {span for span, _ in crossed}
        previous = self.last_write

        if HOUR in spans and len(self.hourly_buffer):
            average = Reading(self.hourly_buffer.mean(), self.clock.bucket_start(previous, HOUR))
            self._append_aggregate(Tier.HOURLY, average)
        if DAY in spans and len(self.daily_buffer):
            average = Reading(self.daily_buffer.mean(), self.clock.bucket_start(previous, DAY))
            self._append_aggregate(Tier.DAILY, average)

        for span, tier in crossed:
            self.store.roll_over(tier)

    def _append_aggregate(self, tier: Tier, reading: Reading):
        result = self.store.append(tier, reading)
        if not result:
            self.write_failures += 1
            self.logger.warning(f"Failed to persist {tier.value} average: {result.error}")

    # --- queries -----------------------------------------------------------

    def get_current(self) -> float:
        """Last logged value; 0.0 if nothing has been logged."""
        with self._lock:
            return self.current_value

    def get_hourly_average(self) -> float:
        """Mean of the readings within the last virtual hour; 0.0 when there are none."""
        with self._lock:
            self.hourly_buffer.trim(self.clock.now())
            return self.hourly_buffer.mean()

    def get_daily_average(self) -> float:
        """Mean of the readings within the last virtual day; 0.0 when there are none."""
        with self._lock:
            self.daily_buffer.trim(self.clock.now())
            return self.daily_buffer.mean()

    def get_recent(self, n: int) -> List[Reading]:
        """Up to n most recent readings, newest first."""
        with self._lock:
            return self.recent.latest(n)

    def query_range(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> List[Reading]:
        """Persisted readings in [start, end], oldest first; [] if unavailable."""
        with self._lock:
            if self.store is None:
                return []
            return self.store.query_range(start, end, tier)

    def query_average(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> float:
        with self._lock:
            if self.store is None:
                return 0.0
            return self.store.query_average(start, end, tier)

    def rotate(self, tier: Tier) -> RotationReport:
        """Run rotation for one tier outside the write path."""
        with self._lock:
            if self.store is None:
                return RotationReport(tier)
            return self.store.rotate(tier)

    def set_measurement_interval(self, seconds: float):
        with self._lock:
            self.measurement_interval = seconds

    # --- producers ---------------------------------------------------------

    def attach(self, producer) -> Result:
        """Register and start a background producer; shutdown() stops and joins it."""
        with self._lock:
            if self._closing:
                return Result.failure(NotInitializedError("Engine is shutting down"))
            if not self.initialized:
                return Result.failure(NotInitializedError("Engine not initialized"))
            self._producers.append(producer)
            # Started under the lock so shutdown() always sees a running thread to join
            producer.start()
        self.logger.info(f"Producer attached: {producer.name}")
        return Result.success()

    # --- lifecycle ---------------------------------------------------------

    def shutdown(self):
        """Stop producers, flush final averages and close the store. Safe to call repeatedly."""
        # Producers call log_reading(), so they are joined before taking the lock
        with self._lock:
            self._closing = True
            producers, self._producers = self._producers, []
        for producer in producers:
            producer.stop()
        for producer in producers:
            producer.join()
            self.logger.info(f"Producer stopped: {producer.name} ({producer.produced} readings)")

        with self._lock:
            if not self.initialized:
                return

            stamp = self.last_write or self.clock.now()
            if len(self.hourly_buffer):
                self._append_aggregate(Tier.HOURLY, Reading(self.hourly_buffer.mean(), stamp))
            if len(self.daily_buffer):
                self._append_aggregate(Tier.DAILY, Reading(self.daily_buffer.mean(), stamp))

            self.store.close()
            self.initialized = False
            self.logger.info("Telemetry engine shutdown")

    def get_stats(self) -> dict:
        """Engine statistics, including the store's rotation counters."""
        with self._lock:
            stats = {
                "initialized": self.initialized,
                "readings_logged": self.readings_logged,
                "write_failures": self.write_failures,
                "current_value": self.current_value,
                "hourly_buffer_size": len(self.hourly_buffer),
                "daily_buffer_size": len(self.daily_buffer),
                "recent_size": len(self.recent),
                "boundaries_crossed": dict(self.boundaries_crossed),
                "producers": len(self._producers),
                "clock": repr(self.clock),
            }
            if self.store is not None:
                stats["store"] = self.store.get_stats()
            return stats

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
