"""
Error kinds reported by the telemetry engine.

Public engine operations never raise these; they come back wrapped in a
Result (or as an empty/zero sentinel for queries).
"""

from dataclasses import dataclass
from typing import Optional


class TelemetryError(Exception):
    """Base class for all engine errors."""

    kind = "telemetry"


class ConfigurationError(TelemetryError):
    """Store directory, file or database cannot be created or opened."""

    kind = "configuration"


class WriteError(TelemetryError):
    """A single append or delete failed."""

    kind = "write"


class ParseError(TelemetryError):
    """A unit identifier could not be decoded into a timestamp."""

    kind = "parse"


class QueryError(TelemetryError):
    """Backend unavailable while answering a query."""

    kind = "query"


class NotInitializedError(TelemetryError):
    """Operation attempted on an engine or store that is not open."""

    kind = "not_initialized"


@dataclass(frozen=True)
class Result:
    """Outcome of a fallible operation. Truthy on success."""

    ok: bool
    error: Optional[TelemetryError] = None

    @classmethod
    def success(cls) -> "Result":
        return cls(True)

    @classmethod
    def failure(cls, error: TelemetryError) -> "Result":
        return cls(False, error)

    @property
    def kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    def __bool__(self) -> bool:
        return self.ok
