"""
Centralized logging configuration for the telemetry engine.
Provides structured logging with optional file output and configurable levels.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional


LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL
}


class TelemetryLogger:
    """Centralized logger for telemetry engine components."""

    _loggers = {}
    _initialized = False
    _log_dir = None
    _log_file = None
    _log_level = logging.INFO

    @classmethod
    def setup(cls, log_dir: Optional[str] = None, log_level: str = "INFO", console_output: bool = False):
        """
        Setup logging configuration for all engine components.

        Args:
            log_dir: Directory for log files. No file handler is installed if None.
            log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            console_output: Mirror WARNING+ messages to stdout
        """
        if cls._initialized:
            return

        cls._log_level = LEVEL_MAP.get(log_level.upper(), logging.INFO)

        detailed_formatter = logging.Formatter(
            '%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        simple_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(message)s',
            datefmt='%H:%M:%S'
        )

        # Engine loggers live under one parent so the host application's root logger is left alone
        parent = logging.getLogger("telemetry_engine")
        parent.setLevel(cls._log_level)
        parent.handlers.clear()

        if log_dir is not None:
            cls._log_dir = Path(log_dir)
            cls._log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            cls._log_file = cls._log_dir / f"telemetry_{timestamp}.log"
            file_handler = logging.FileHandler(cls._log_file)
            file_handler.setLevel(cls._log_level)
            file_handler.setFormatter(detailed_formatter)
            parent.addHandler(file_handler)

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.WARNING)  # Only warnings/errors to console
            console_handler.setFormatter(simple_formatter)
            parent.addHandler(console_handler)

        cls._initialized = True

        init_logger = cls.get_logger("TelemetryLogger")
        init_logger.info(f"Logging initialized - Level: {log_level}, File: {cls._log_file}")
        if console_output:
            init_logger.info("Console output enabled for WARNING+ messages")

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger for a specific component."""
        if not cls._initialized:
            cls.setup()  # Initialize with defaults if not already done

        if name not in cls._loggers:
            logger = logging.getLogger(f"telemetry_engine.{name}")
            logger.setLevel(cls._log_level)
            cls._loggers[name] = logger

        return cls._loggers[name]

    @classmethod
    def set_level(cls, level: str):
        """Change logging level for all loggers."""
        new_level = LEVEL_MAP.get(level.upper(), logging.INFO)

        logging.getLogger("telemetry_engine").setLevel(new_level)
        for logger in cls._loggers.values():
            logger.setLevel(new_level)

        cls._log_level = new_level

    @classmethod
    def get_log_file(cls) -> Optional[Path]:
        """Get the current log file path."""
        if not cls._initialized:
            return None
        return cls._log_file

    @classmethod
    def reset(cls):
        """Drop handlers and cached loggers (mainly for testing)."""
        parent = logging.getLogger("telemetry_engine")
        for handler in list(parent.handlers):
            handler.close()
        parent.handlers.clear()
        # Loggers handed out earlier fall back to the parent level of the next setup
        for logger in cls._loggers.values():
            logger.setLevel(logging.NOTSET)
        cls._loggers = {}
        cls._initialized = False
        cls._log_dir = None
        cls._log_file = None
        cls._log_level = logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Convenience function to get a logger."""
    return TelemetryLogger.get_logger(name)
