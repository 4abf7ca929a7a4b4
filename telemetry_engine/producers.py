"""
Background producers feeding readings into a TelemetryEngine.

Every loop checks a stop event on each iteration and waits on that same
event, so TelemetryEngine.shutdown() can stop and join it promptly.
"""

import math
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from .clock import DAY
from .logger import get_logger


class ProducerLoop(ABC):
    """Thread running step() until stopped."""

    def __init__(self, engine, name: str):
        self.engine = engine
        self.name = name
        self.produced = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = get_logger(name)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self):
        self.logger.debug(f"{self.name} started")
        while not self._stop_event.is_set():
            try:
                self.step()
            except Exception as e:
                # Keep the loop alive; the next iteration retries
                self.logger.error(f"{self.name} iteration failed: {e}")
                self._stop_event.wait(0.1)
        self.logger.debug(f"{self.name} stopped after {self.produced} readings")

    def _emit(self, value: float) -> bool:
        result = self.engine.log_reading(value)
        self.produced += 1
        if not result:
            self.logger.debug(f"{self.name}: reading {value} not persisted ({result.kind})")
        return bool(result)

    @abstractmethod
    def step(self):
        """One iteration of the loop. Must not block indefinitely."""
        pass


class SyntheticGenerator(ProducerLoop):
    """
    Emulated temperature sensor.

    Produces base +/- amplitude, either following a sinusoid over the virtual
    day or uniformly at random, plus gaussian noise. One reading per
    measurement interval (real seconds).
    """

    def __init__(self, engine, base: float = 20.0, amplitude: float = 5.0, noise: float = 0.5,
                 daily_cycle: bool = True, seed: Optional[int] = None,
                 interval: Optional[float] = None,
                 generator: Optional[Callable[[], float]] = None,
                 name: str = "SyntheticGenerator"):
        super().__init__(engine, name)
        self.base = base
        self.amplitude = amplitude
        self.noise = noise
        self.daily_cycle = daily_cycle
        self.interval = interval
        self.custom_generator = generator
        self.rng = np.random.default_rng(seed)

    def _daily_cycle_value(self) -> float:
        clock = self.engine.clock
        now = clock.now()
        phase = (now - clock.bucket_start(now, DAY)) / clock.day_duration()
        # Coldest at the start of the day, warmest half way through
        return self.base - self.amplitude * math.cos(2 * math.pi * phase)

    def next_value(self) -> float:
        if self.custom_generator is not None:
            return float(self.custom_generator())

        if self.daily_cycle:
            value = self._daily_cycle_value()
        else:
            value = self.base + self.rng.uniform(-self.amplitude, self.amplitude)

        if self.noise > 0:
            value += self.rng.normal(0.0, self.noise)
        return float(value)

    def step(self):
        self._emit(self.next_value())
        interval = self.interval if self.interval is not None else self.engine.measurement_interval
        self._stop_event.wait(interval)


class PollingReader(ProducerLoop):
    """
    Non-blocking transport reader.

    read_available() returns whatever text is available right now, or None.
    Complete lines are parsed as floats and logged exactly once; partial
    lines are kept until the rest arrives.
    """

    def __init__(self, engine, read_available: Callable[[], Optional[str]],
                 poll_interval: float = 0.05, name: str = "PollingReader"):
        super().__init__(engine, name)
        self.read_available = read_available
        self.poll_interval = poll_interval
        self.parse_errors = 0
        self._pending = ""

    def step(self):
        chunk = self.read_available()
        if not chunk:
            self._stop_event.wait(self.poll_interval)
            return

        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                value = float(line)
            except ValueError:
                self.parse_errors += 1
                self.logger.warning(f"Unparseable reading skipped: {line!r}")
                continue
            self._emit(value)
