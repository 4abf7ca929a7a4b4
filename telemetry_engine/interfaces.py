"""
Storage backend interface for the retention store.
Both reference backends implement the same semantics for every operation.

Timestamps are stored as text with microseconds (YYYY-MM-DD HH:MM:SS.ffffff)
so readings logged within one second keep their order. Rows written without
the fraction are still read, and range queries start from a bound that
includes them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .errors import Result
from .tiers import Tier


# Text encoding of timestamps on disk and in the database; sorts lexicographically
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"
LEGACY_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def encode_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def encode_range_start(ts: datetime) -> str:
    """
    Lower bound for a text range query.

    On a whole second the fraction is dropped: "HH:MM:SS" sorts before both
    "HH:MM:SS" and "HH:MM:SS.000000", so rows stored either way are included.
    """
    if ts.microsecond == 0:
        return ts.astimezone(timezone.utc).strftime(LEGACY_TIMESTAMP_FORMAT)
    return encode_timestamp(ts)


def decode_timestamp(text: str) -> datetime:
    """Parse a stored timestamp; rows written without fractional seconds are accepted."""
    text = text.strip()
    fmt = TIMESTAMP_FORMAT if "." in text else LEGACY_TIMESTAMP_FORMAT
    return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Reading:
    """A single scalar observation."""
    value: float
    timestamp: datetime


class StorageBackend(ABC):
    """Base interface for tier-aware persistence."""

    @abstractmethod
    def open(self) -> Result:
        """
        Create or open the underlying storage.
        Returns a ConfigurationError failure if it cannot be created.
        """
        pass

    @abstractmethod
    def close(self):
        """Release all resources. Safe to call more than once."""
        pass

    @abstractmethod
    def open_unit(self, tier: Tier, unit_id: str) -> Result:
        """Make unit_id the active unit of a tier, creating it if needed."""
        pass

    @abstractmethod
    def close_unit(self, tier: Tier):
        """Close the tier's active unit, if any."""
        pass

    @abstractmethod
    def append(self, tier: Tier, reading: Reading) -> Result:
        """Append a reading to the tier's active unit."""
        pass

    @abstractmethod
    def query_range(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> List[Reading]:
        """Readings with start <= timestamp <= end, oldest first. Raises QueryError."""
        pass

    @abstractmethod
    def query_average(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> float:
        """Mean value in [start, end]; 0.0 if no rows. Raises QueryError."""
        pass

    @abstractmethod
    def query_recent(self, n: int, tier: Tier = Tier.RAW) -> List[Reading]:
        """The n newest readings, newest first. Raises QueryError."""
        pass

    @abstractmethod
    def list_units(self, tier: Tier) -> List[Tuple[str, Optional[datetime]]]:
        """(unit_id, inferred timestamp) pairs; timestamp is None if the id does not parse."""
        pass

    @abstractmethod
    def delete_unit(self, tier: Tier, unit_id: str) -> Result:
        """Delete a unit. Deleting a missing unit succeeds."""
        pass

    @abstractmethod
    def count(self, tier: Tier = Tier.RAW) -> int:
        """Number of stored readings in a tier. Raises QueryError."""
        pass

    def get_stats(self) -> dict:
        """Backend statistics (unit counts, sizes, ...)."""
        return {}
