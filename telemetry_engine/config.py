"""
Telemetry engine configuration management.

Loads settings from JSON files and environment variables and turns them into
the explicit EngineConfig value handed to TelemetryEngine.initialize().
"""

import json
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from .clock import ClockConfig, ClockMode
from .logger import TelemetryLogger


DEFAULT_CONFIG_PATH = Path(__file__).parent / "telemetry_config.json"

BACKENDS = ("file", "sqlite")


@dataclass
class StorageConfig:
    """Storage-related configuration."""
    backend: str = "file"
    path: str = "data/telemetry"

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown storage backend: {self.backend!r} (expected one of {BACKENDS})")


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: Optional[str] = None
    console_output: bool = False


@dataclass
class EngineConfig:
    """Everything TelemetryEngine.initialize() needs."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    clock: Optional[ClockConfig] = None  # None keeps the engine clock as it is
    measurement_interval: float = 1.0  # real seconds between synthetic readings
    recent_capacity: int = 100


class TelemetryConfig:
    """Configuration loader: packaged defaults, optional JSON override, env overrides."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to JSON config file. If None, uses default config.
        """
        self.config_path = config_path
        self._config_data = {}
        self._load_config()
        self._create_config_objects()

    def _load_config(self):
        """Load configuration from JSON file and environment variables."""
        if DEFAULT_CONFIG_PATH.exists():
            with open(DEFAULT_CONFIG_PATH, 'r') as f:
                self._config_data = json.load(f)
        else:
            raise FileNotFoundError(f"Default config file not found: {DEFAULT_CONFIG_PATH}")

        # Override with custom config if provided
        if self.config_path:
            config_path = Path(self.config_path)
            if config_path.exists():
                with open(config_path, 'r') as f:
                    custom_config = json.load(f)
                    self._merge_configs(self._config_data, custom_config)
            else:
                raise FileNotFoundError(f"Config file not found: {config_path}")

        self._load_env_overrides()

    def _merge_configs(self, default: dict, custom: dict):
        """Recursively merge custom config into default config."""
        for key, value in custom.items():
            if key in default and isinstance(default[key], dict) and isinstance(value, dict):
                self._merge_configs(default[key], value)
            else:
                default[key] = value

    def _load_env_overrides(self):
        """Load configuration overrides from environment variables."""
        env_mappings = {
            'TELEMETRY_STORE_PATH': ('storage', 'path'),
            'TELEMETRY_BACKEND': ('storage', 'backend'),
            'TELEMETRY_CLOCK_MODE': ('clock', 'mode'),
            'TELEMETRY_HOUR_SECONDS': ('clock', 'hour_seconds'),
            'TELEMETRY_DAY_SECONDS': ('clock', 'day_seconds'),
            'TELEMETRY_YEAR_SECONDS': ('clock', 'year_seconds'),
            'TELEMETRY_TIME_SCALE': ('clock', 'time_scale'),
            'TELEMETRY_MEASUREMENT_INTERVAL': ('engine', 'measurement_interval'),
            'TELEMETRY_LOG_LEVEL': ('logging', 'level'),
            'TELEMETRY_LOG_DIR': ('logging', 'log_dir'),
            'TELEMETRY_LOG_CONSOLE': ('logging', 'console_output'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                # Convert string values to appropriate types
                if key in ['hour_seconds', 'day_seconds', 'year_seconds', 'time_scale', 'measurement_interval']:
                    value = float(value)
                elif key in ['console_output']:
                    value = value.lower() in ('true', '1', 'yes', 'on')

                if section not in self._config_data:
                    self._config_data[section] = {}
                self._config_data[section][key] = value

    def _create_config_objects(self):
        """Create typed configuration objects from loaded data."""
        self.storage = StorageConfig(**self._config_data['storage'])
        self.logging = LoggingConfig(**self._config_data['logging'])

        clock = self._config_data['clock']
        self.clock = ClockConfig(
            mode=ClockMode(clock['mode'].lower()),
            hour_duration=timedelta(seconds=clock['hour_seconds']),
            day_duration=timedelta(seconds=clock['day_seconds']),
            year_duration=timedelta(seconds=clock['year_seconds']),
            time_scale=clock.get('time_scale', 1.0),
        )

        engine = self._config_data['engine']
        self.measurement_interval = float(engine['measurement_interval'])
        self.recent_capacity = int(engine['recent_capacity'])

    def engine_config(self) -> EngineConfig:
        """Build the explicit value passed to TelemetryEngine.initialize()."""
        return EngineConfig(
            storage=StorageConfig(self.storage.backend, self.storage.path),
            clock=self.clock,
            measurement_interval=self.measurement_interval,
            recent_capacity=self.recent_capacity,
        )

    def setup_logging(self):
        """Apply the logging section, replacing any earlier logging setup."""
        TelemetryLogger.reset()
        TelemetryLogger.setup(
            log_dir=self.logging.log_dir,
            log_level=self.logging.level,
            console_output=self.logging.console_output,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return json.loads(json.dumps(self._config_data))

    def save_to_file(self, path: str):
        """Save current configuration to JSON file."""
        with open(path, 'w') as f:
            json.dump(self._config_data, f, indent=2)

    def __repr__(self) -> str:
        return f"TelemetryConfig(config_path={self.config_path})"
