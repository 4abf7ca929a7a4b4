"""
Virtual clock mapping real elapsed time onto a simulated timeline.

In SCALED mode the lengths of an hour, a day and a year are configurable so
that day/month/year retention policies can be exercised in seconds.
"""

import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Union

from .logger import get_logger


NOMINAL_HOUR = timedelta(hours=1)
NOMINAL_DAY = timedelta(days=1)
NOMINAL_YEAR = timedelta(days=365)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Bucket spans understood by VirtualClock.bucket_start
HOUR = "hour"
DAY = "day"
MONTH = "month"


class ClockMode(Enum):
    REAL = "real"
    SCALED = "scaled"


def _as_timedelta(value: Union[timedelta, float, int]) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=float(value))


@dataclass(frozen=True)
class ClockConfig:
    """Clock mode plus the real-time lengths of a virtual hour, day and year."""
    mode: ClockMode = ClockMode.REAL
    hour_duration: timedelta = NOMINAL_HOUR
    day_duration: timedelta = NOMINAL_DAY
    year_duration: timedelta = NOMINAL_YEAR
    time_scale: float = 1.0

    def __post_init__(self):
        # Accept plain seconds as well as timedeltas
        for name in ("hour_duration", "day_duration", "year_duration"):
            object.__setattr__(self, name, _as_timedelta(getattr(self, name)))
        if isinstance(self.mode, str):
            object.__setattr__(self, "mode", ClockMode(self.mode.lower()))
        for name in ("hour_duration", "day_duration", "year_duration"):
            if getattr(self, name) <= timedelta(0):
                raise ValueError(f"{name} must be positive")
        if self.time_scale <= 0:
            raise ValueError("time_scale must be positive")
        if self.mode is ClockMode.SCALED and self.year_duration / 12 <= timedelta(0):
            raise ValueError("year_duration too short for a month bucket")

    @classmethod
    def scaled(cls, hour, day, year, time_scale: float = 1.0) -> "ClockConfig":
        """Compressed clock; durations as timedeltas or seconds."""
        return cls(ClockMode.SCALED, hour, day, year, time_scale)

    @classmethod
    def real(cls) -> "ClockConfig":
        return cls()


@dataclass(frozen=True)
class _ClockSnapshot:
    """Immutable mapping state; replaced as a whole on configure/reset."""
    config: ClockConfig = field(default_factory=ClockConfig)
    real_origin: float = 0.0
    virtual_origin: float = 0.0

    @property
    def scaled(self) -> bool:
        return self.config.mode is ClockMode.SCALED


class VirtualClock:
    """
    Time source for the engine.

    now() is safe to call from any number of threads without locking: it
    reads a single snapshot reference that configure()/reset() swap.
    """

    def __init__(self, config: Optional[ClockConfig] = None,
                 real_clock: Callable[[], float] = time.time):
        self._real_clock = real_clock
        self._snapshot = _ClockSnapshot()
        self.logger = get_logger("VirtualClock")
        if config is not None:
            self.configure(config)

    def configure(self, config: ClockConfig):
        """Install a new mapping. SCALED time starts coincident with real time."""
        if config.mode is ClockMode.SCALED:
            origin = self._real_clock()
            self._snapshot = _ClockSnapshot(config, origin, origin)
            self.logger.info(
                f"Scaled clock configured: hour={config.hour_duration}, day={config.day_duration}, "
                f"year={config.year_duration}, scale={config.time_scale}"
            )
        else:
            self._snapshot = _ClockSnapshot(ClockConfig())
            self.logger.info("Real-time clock configured")

    def reset(self):
        """Return to real time."""
        self._snapshot = _ClockSnapshot(ClockConfig())
        self.logger.info("Clock reset to real time")

    # --- mapping -----------------------------------------------------------

    def _virtual_seconds(self, real_seconds: float, snap: _ClockSnapshot) -> float:
        if not snap.scaled:
            return real_seconds
        return snap.virtual_origin + snap.config.time_scale * (real_seconds - snap.real_origin)

    def now(self) -> datetime:
        """Current virtual time as an aware UTC datetime."""
        snap = self._snapshot
        return datetime.fromtimestamp(self._virtual_seconds(self._real_clock(), snap), timezone.utc)

    def to_virtual(self, real_time: datetime) -> datetime:
        snap = self._snapshot
        return datetime.fromtimestamp(self._virtual_seconds(real_time.timestamp(), snap), timezone.utc)

    def to_real(self, virtual_time: datetime) -> datetime:
        snap = self._snapshot
        if not snap.scaled:
            return virtual_time
        elapsed = (virtual_time.timestamp() - snap.virtual_origin) / snap.config.time_scale
        return datetime.fromtimestamp(snap.real_origin + elapsed, timezone.utc)

    # --- properties of the current snapshot --------------------------------

    @property
    def mode(self) -> ClockMode:
        return self._snapshot.config.mode

    @property
    def scaled(self) -> bool:
        return self._snapshot.scaled

    @property
    def scale(self) -> float:
        snap = self._snapshot
        return snap.config.time_scale if snap.scaled else 1.0

    @property
    def origin(self) -> datetime:
        """Virtual origin of the current mapping (the epoch in REAL mode)."""
        snap = self._snapshot
        if not snap.scaled:
            return EPOCH
        return datetime.fromtimestamp(snap.virtual_origin, timezone.utc)

    def hour_duration(self) -> timedelta:
        return self._snapshot.config.hour_duration

    def day_duration(self) -> timedelta:
        return self._snapshot.config.day_duration

    def year_duration(self) -> timedelta:
        return self._snapshot.config.year_duration

    def month_duration(self) -> timedelta:
        return self._snapshot.config.year_duration / 12

    def span_duration(self, span: str) -> timedelta:
        if span == HOUR:
            return self.hour_duration()
        if span == DAY:
            return self.day_duration()
        if span == MONTH:
            return self.month_duration()
        raise ValueError(f"Unknown span: {span}")

    def bucket_start(self, ts: datetime, span: str) -> datetime:
        """
        Truncate a timestamp to the start of its hour/day/month bucket.

        Real time truncates on the UTC calendar. A compressed clock does not
        line up with the calendar, so buckets are counted from the origin
        (floored to a whole second).
        """
        snap = self._snapshot
        ts = ts.astimezone(timezone.utc)
        if not snap.scaled:
            if span == HOUR:
                return ts.replace(minute=0, second=0, microsecond=0)
            if span == DAY:
                return ts.replace(hour=0, minute=0, second=0, microsecond=0)
            if span == MONTH:
                return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
            raise ValueError(f"Unknown span: {span}")

        anchor = datetime.fromtimestamp(math.floor(snap.virtual_origin), timezone.utc)
        period = self.span_duration(span)
        return anchor + period * ((ts - anchor) // period)

    def __repr__(self) -> str:
        return f"VirtualClock(mode={self.mode.value}, scale={self.scale})"
