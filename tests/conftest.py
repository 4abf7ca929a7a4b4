"""Shared fixtures: a hand-driven real clock, scaled virtual clocks and both storage backends."""

import threading

import pytest

from telemetry_engine import (
    ClockConfig,
    EngineConfig,
    FileBackend,
    SQLiteBackend,
    StorageConfig,
    TelemetryEngine,
    VirtualClock,
)


START = 1_700_000_000.0  # whole second, so scaled buckets start on whole seconds


class ManualRealClock:
    """Stand-in for time.time() that only moves when told to."""

    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class SteppingRealClock:
    """Thread-safe stand-in for time.time() that moves forward on every call."""

    def __init__(self, step: float, start: float = START):
        self.step = step
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            self.now += self.step
            return self.now


@pytest.fixture
def real_clock():
    return ManualRealClock()


@pytest.fixture
def scaled_clock(real_clock):
    """hour = 5s, day = 10s, year = 20s."""
    return VirtualClock(ClockConfig.scaled(5, 10, 20), real_clock=real_clock)


@pytest.fixture(params=["file", "sqlite"])
def storage_config(request, tmp_path):
    if request.param == "file":
        return StorageConfig("file", str(tmp_path / "store"))
    return StorageConfig("sqlite", str(tmp_path / "telemetry.db"))


@pytest.fixture
def engine(scaled_clock, storage_config):
    engine = TelemetryEngine(clock=scaled_clock)
    assert engine.initialize(EngineConfig(storage=storage_config))
    yield engine
    engine.shutdown()


@pytest.fixture(params=["file", "sqlite"])
def backend(request, tmp_path):
    if request.param == "file":
        backend = FileBackend(str(tmp_path / "store"))
    else:
        backend = SQLiteBackend(str(tmp_path / "telemetry.db"))
    assert backend.open()
    yield backend
    backend.close()
