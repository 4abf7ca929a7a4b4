"""
In-memory sliding windows backing the rolling-average and recent queries.
"""

import math
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, List

from .interfaces import Reading


class AggregationBuffer:
    """
    Time-bounded window of readings.

    Readings are appended at the back; anything older than now - window is
    trimmed from the front. Callers supply non-decreasing timestamps, the
    buffer does not reorder.
    """

    def __init__(self, window: timedelta):
        self.window = window
        self._readings: Deque[Reading] = deque()

    def add(self, reading: Reading):
        self._readings.append(reading)
        self.trim(reading.timestamp)

    def trim(self, now: datetime) -> int:
        """Drop entries older than now - window. Returns how many were dropped."""
        cutoff = now - self.window
        dropped = 0
        while self._readings and self._readings[0].timestamp < cutoff:
            self._readings.popleft()
            dropped += 1
        return dropped

    def mean(self) -> float:
        """
        Arithmetic mean of the window; 0.0 when empty.

        Summed exactly over the current window, so a value that has left the
        window never affects the result.
        """
        if not self._readings:
            return 0.0
        return math.fsum(r.value for r in self._readings) / len(self._readings)

    def clear(self):
        self._readings.clear()

    def snapshot(self) -> List[Reading]:
        return list(self._readings)

    def __len__(self) -> int:
        return len(self._readings)


class RecentReadings:
    """Fixed-capacity ring of the latest readings."""

    def __init__(self, capacity: int = 100):
        self._capacity = capacity
        self._data: Deque[Reading] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, reading: Reading):
        self._data.append(reading)

    def latest(self, n: int) -> List[Reading]:
        """Up to n readings, newest first."""
        if n <= 0:
            return []
        result = []
        for reading in reversed(self._data):
            if len(result) >= n:
                break
            result.append(reading)
        return result

    def __len__(self) -> int:
        return len(self._data)
