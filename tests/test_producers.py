import queue
import time

import pytest

from telemetry_engine import PollingReader, SyntheticGenerator, TelemetryEngine


def wait_for(condition, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


def chunk_source(chunks):
    """read_available() over a fixed list of chunks; None once drained."""
    pending = queue.Queue()
    for chunk in chunks:
        pending.put(chunk)

    def read_available():
        try:
            return pending.get_nowait()
        except queue.Empty:
            return None
    return read_available


class TestSyntheticGenerator:

    def test_daily_cycle_starts_at_minimum(self, engine):
        generator = SyntheticGenerator(engine, base=20.0, amplitude=5.0, noise=0.0)
        assert generator.next_value() == pytest.approx(15.0)

    def test_daily_cycle_peaks_mid_day(self, engine, real_clock):
        generator = SyntheticGenerator(engine, base=20.0, amplitude=5.0, noise=0.0)
        real_clock.advance(5)  # half of a 10s day
        assert generator.next_value() == pytest.approx(25.0)

    def test_random_values_stay_in_range(self, engine):
        generator = SyntheticGenerator(engine, daily_cycle=False, noise=0.0, seed=7)
        values = [generator.next_value() for _ in range(200)]
        assert all(15.0 <= v <= 25.0 for v in values)

    def test_custom_generator(self, engine):
        generator = SyntheticGenerator(engine, generator=lambda: 42)
        assert generator.next_value() == 42.0

    def test_runs_until_shutdown(self, engine):
        generator = SyntheticGenerator(engine, noise=0.0, interval=0.01)
        assert engine.attach(generator)
        assert wait_for(lambda: generator.produced >= 5)

        engine.shutdown()
        assert not generator.is_running
        assert engine.get_stats()["readings_logged"] == generator.produced

    def test_attach_requires_initialized_engine(self, scaled_clock):
        engine = TelemetryEngine(clock=scaled_clock)
        generator = SyntheticGenerator(engine, interval=0.01)
        result = engine.attach(generator)
        assert result.kind == "not_initialized"
        assert not generator.is_running

    def test_attach_during_shutdown_rejected(self, engine):
        late = SyntheticGenerator(engine, interval=0.01)
        attempts = []

        class AttachOnStop(SyntheticGenerator):
            def stop(self):
                super().stop()
                attempts.append(engine.attach(late))

        assert engine.attach(AttachOnStop(engine, interval=0.01))
        engine.shutdown()

        assert [r.kind for r in attempts] == ["not_initialized"]
        assert not late.is_running
        assert engine.get_stats()["producers"] == 0


class TestPollingReader:

    def test_partial_lines_and_bad_input(self, engine):
        reader = PollingReader(
            engine,
            chunk_source(["21.5\n22", ".0\n", "bad\n", None, "\n23.5\n"]),
            poll_interval=0.01,
        )
        assert engine.attach(reader)
        assert wait_for(lambda: reader.produced == 3)
        engine.shutdown()

        assert reader.parse_errors == 1
        assert [r.value for r in engine.get_recent(3)] == [23.5, 22.0, 21.5]

    def test_idle_source(self, engine):
        reader = PollingReader(engine, lambda: None, poll_interval=0.01)
        engine.attach(reader)
        time.sleep(0.05)
        engine.shutdown()
        assert reader.produced == 0
        assert not reader.is_running

    def test_failing_source_keeps_loop_alive(self, engine):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise OSError("transport dropped")
            return "20.0\n" if len(calls) == 2 else None

        reader = PollingReader(engine, flaky, poll_interval=0.01)
        engine.attach(reader)
        assert wait_for(lambda: reader.produced == 1)
        engine.shutdown()
        assert engine.get_current() == 20.0
