"""
Retention tiers and the naming scheme of their retained units.

A unit id carries the truncated start of the bucket it covers, so the age of
a unit can be computed from its name without reading its contents.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional

from .clock import VirtualClock, HOUR, DAY, MONTH


class Tier(Enum):
    RAW = "raw"
    HOURLY = "hourly"
    DAILY = "daily"


UNIT_PREFIX = {
    Tier.RAW: "raw_temperature",
    Tier.HOURLY: "hourly_average",
    Tier.DAILY: "daily_average",
}

# Calendar stamp formats used with a real-time clock
CALENDAR_FORMAT = {
    Tier.RAW: "%Y%m%d_%H%M%S",
    Tier.HOURLY: "%Y%m%d",
    Tier.DAILY: "%Y%m",
}

# Compressed buckets start at arbitrary instants, so every tier keeps microseconds
SCALED_FORMAT = "%Y%m%d_%H%M%S_%f"

HOURLY_MAX_AGE_DAYS = 30


@dataclass(frozen=True)
class TierPolicy:
    """Aggregation window, retention horizon and unit span of one tier."""
    tier: Tier
    window: timedelta
    max_age: timedelta
    rollover: str  # bucket span covered by one retained unit

    @property
    def prefix(self) -> str:
        return UNIT_PREFIX[self.tier]


def tier_policies(clock: VirtualClock) -> Dict[Tier, TierPolicy]:
    """Build tier policies from the clock's (possibly compressed) durations."""
    hour = clock.hour_duration()
    day = clock.day_duration()
    year = clock.year_duration()
    return {
        Tier.RAW: TierPolicy(Tier.RAW, window=hour, max_age=day, rollover=HOUR),
        Tier.HOURLY: TierPolicy(Tier.HOURLY, window=hour, max_age=day * HOURLY_MAX_AGE_DAYS, rollover=DAY),
        Tier.DAILY: TierPolicy(Tier.DAILY, window=day, max_age=year, rollover=MONTH),
    }


def unit_id(tier: Tier, bucket_start: datetime, scaled: bool = False) -> str:
    """Unit id for the bucket starting at bucket_start, e.g. hourly_average_20240115."""
    fmt = SCALED_FORMAT if scaled else CALENDAR_FORMAT[tier]
    stamp = bucket_start.astimezone(timezone.utc).strftime(fmt)
    return f"{UNIT_PREFIX[tier]}_{stamp}"


def parse_unit_id(tier: Tier, uid: str) -> Optional[datetime]:
    """
    Infer the timestamp of a unit from its id.

    Returns None when the id cannot be decoded. Compressed-clock stamps are
    exact to the microsecond; date-only stamps resolve to noon and month-only
    stamps to the 15th at noon.
    """
    prefix = UNIT_PREFIX[tier] + "_"
    if not uid.startswith(prefix):
        return None
    stamp = uid[len(prefix):]

    try:
        if len(stamp) == 22:
            return datetime.strptime(stamp, SCALED_FORMAT).replace(tzinfo=timezone.utc)
        if len(stamp) == 15:
            return datetime.strptime(stamp, "%Y%m%d_%H%M%S").replace(tzinfo=timezone.utc)
        if len(stamp) == 8:
            parsed = datetime.strptime(stamp, "%Y%m%d")
            return parsed.replace(hour=12, tzinfo=timezone.utc)
        if len(stamp) == 6:
            parsed = datetime.strptime(stamp, "%Y%m")
            return parsed.replace(day=15, hour=12, tzinfo=timezone.utc)
    except ValueError:
        return None
    return None
