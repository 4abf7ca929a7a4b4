"""
Telemetry Engine

Time-series telemetry with tiered retention under a virtual clock:
- RAW tier: every reading, one unit per hour, kept for a day
- HOURLY tier: hourly averages, one unit per day, kept for 30 days
- DAILY tier: daily averages, one unit per month, kept for a year

Rotation runs lazily on writes. A scaled clock compresses hours, days and
years so that the retention policies can be exercised in seconds.
"""

from .clock import ClockConfig, ClockMode, VirtualClock
from .config import EngineConfig, LoggingConfig, StorageConfig, TelemetryConfig
from .engine import TelemetryEngine, create_backend
from .errors import (
    ConfigurationError,
    NotInitializedError,
    ParseError,
    QueryError,
    Result,
    TelemetryError,
    WriteError,
)
from .file_backend import FileBackend
from .interfaces import Reading, StorageBackend
from .producers import PollingReader, ProducerLoop, SyntheticGenerator
from .retention import RetentionStore, RotationReport, UnitState
from .sqlite_backend import SQLiteBackend
from .tiers import Tier, TierPolicy

__all__ = [
    'TelemetryEngine',
    'create_backend',
    'VirtualClock',
    'ClockConfig',
    'ClockMode',
    'EngineConfig',
    'StorageConfig',
    'LoggingConfig',
    'TelemetryConfig',
    'Reading',
    'StorageBackend',
    'FileBackend',
    'SQLiteBackend',
    'RetentionStore',
    'RotationReport',
    'UnitState',
    'Tier',
    'TierPolicy',
    'ProducerLoop',
    'SyntheticGenerator',
    'PollingReader',
    'Result',
    'TelemetryError',
    'ConfigurationError',
    'WriteError',
    'ParseError',
    'QueryError',
    'NotInitializedError',
]
