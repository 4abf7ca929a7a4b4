import json
import logging
from datetime import timedelta

import pytest

from telemetry_engine import ClockMode, StorageConfig, TelemetryConfig
from telemetry_engine.logger import TelemetryLogger, get_logger


ENV_VARS = [
    "TELEMETRY_STORE_PATH", "TELEMETRY_BACKEND", "TELEMETRY_CLOCK_MODE",
    "TELEMETRY_HOUR_SECONDS", "TELEMETRY_DAY_SECONDS", "TELEMETRY_YEAR_SECONDS",
    "TELEMETRY_TIME_SCALE", "TELEMETRY_MEASUREMENT_INTERVAL", "TELEMETRY_LOG_LEVEL",
    "TELEMETRY_LOG_DIR", "TELEMETRY_LOG_CONSOLE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestTelemetryConfig:

    def test_defaults(self):
        config = TelemetryConfig()
        assert config.storage.backend == "file"
        assert config.clock.mode is ClockMode.REAL
        assert config.clock.hour_duration == timedelta(hours=1)
        assert config.measurement_interval == 1.0
        assert config.recent_capacity == 100
        assert config.logging.log_dir is None

    def test_custom_file_merges(self, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({
            "storage": {"backend": "sqlite"},
            "clock": {"mode": "scaled", "hour_seconds": 5},
        }))

        config = TelemetryConfig(str(path))
        assert config.storage.backend == "sqlite"
        assert config.storage.path == "data/telemetry"
        assert config.clock.mode is ClockMode.SCALED
        assert config.clock.hour_duration == timedelta(seconds=5)
        assert config.clock.day_duration == timedelta(days=1)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TelemetryConfig(str(tmp_path / "absent.json"))

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TELEMETRY_STORE_PATH", str(tmp_path / "db.sqlite"))
        monkeypatch.setenv("TELEMETRY_BACKEND", "sqlite")
        monkeypatch.setenv("TELEMETRY_CLOCK_MODE", "SCALED")
        monkeypatch.setenv("TELEMETRY_HOUR_SECONDS", "5")
        monkeypatch.setenv("TELEMETRY_DAY_SECONDS", "10")
        monkeypatch.setenv("TELEMETRY_YEAR_SECONDS", "20")
        monkeypatch.setenv("TELEMETRY_MEASUREMENT_INTERVAL", "0.1")
        monkeypatch.setenv("TELEMETRY_LOG_CONSOLE", "yes")

        config = TelemetryConfig()
        engine_config = config.engine_config()
        assert engine_config.storage == StorageConfig("sqlite", str(tmp_path / "db.sqlite"))
        assert engine_config.clock.mode is ClockMode.SCALED
        assert engine_config.clock.year_duration == timedelta(seconds=20)
        assert engine_config.measurement_interval == 0.1
        assert config.logging.console_output is True

    def test_unknown_backend_rejected(self, monkeypatch):
        monkeypatch.setenv("TELEMETRY_BACKEND", "postgres")
        with pytest.raises(ValueError):
            TelemetryConfig()

    def test_save_and_reload(self, tmp_path):
        config = TelemetryConfig()
        path = tmp_path / "saved.json"
        config.save_to_file(str(path))
        assert TelemetryConfig(str(path)).to_dict() == config.to_dict()


class TestLogger:

    def test_component_loggers_share_parent(self):
        assert get_logger("TelemetryEngine").name == "telemetry_engine.TelemetryEngine"

    def test_file_output(self, tmp_path):
        TelemetryLogger.reset()
        try:
            TelemetryLogger.setup(log_dir=str(tmp_path), log_level="DEBUG")
            get_logger("Sampler").debug("sampler message")
            log_file = TelemetryLogger.get_log_file()
            for handler in get_logger("Sampler").parent.handlers:
                handler.flush()
            assert log_file.parent == tmp_path
            assert "sampler message" in log_file.read_text()
        finally:
            TelemetryLogger.reset()

    def test_logging_section_applied(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TELEMETRY_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("TELEMETRY_LOG_CONSOLE", "true")
        monkeypatch.setenv("TELEMETRY_LOG_LEVEL", "DEBUG")
        try:
            TelemetryConfig().setup_logging()
            parent = get_logger("Sampler").parent
            assert TelemetryLogger.get_log_file().parent == tmp_path
            assert any(type(h) is logging.StreamHandler for h in parent.handlers)
            assert get_logger("Sampler").isEnabledFor(logging.DEBUG)
        finally:
            TelemetryLogger.reset()

    def test_set_level(self):
        TelemetryLogger.set_level("WARNING")
        try:
            assert not get_logger("Sampler").isEnabledFor(10)
        finally:
            TelemetryLogger.set_level("INFO")
