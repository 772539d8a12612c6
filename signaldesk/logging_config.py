"""
Logging Configuration Module
============================

Centralized logging setup for the signal desk.

Features:
- Consistent format and verbosity across modules
- Module-specific log level overrides
- Optional log file alongside the console handler
- Sampling for per-tick messages
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class LogLevel(str, Enum):
    """Standard log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


MODULE_LOG_LEVELS = {
    # Per-tick modules - keep quiet unless debugging
    "signaldesk.price_simulator": logging.INFO,
    "signaldesk.event_bus": logging.INFO,

    # Alert pipeline - INFO so fired alerts are visible
    "signaldesk.alert_evaluator": logging.INFO,
    "signaldesk.notifications": logging.INFO,

    # External capability
    "signaldesk.llm_client": logging.INFO,
    "signaldesk.analysis": logging.INFO,

    # Third-party noise
    "aiohttp": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


@dataclass
class LoggingConfig:
    """
    Centralized logging configuration.

    Provides consistent verbosity across the service.
    """
    root_level: int = logging.INFO
    format_string: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    log_file: str | None = None
    module_levels: dict[str, int] = field(default_factory=lambda: MODULE_LOG_LEVELS.copy())

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        """Build from the `logging` section of config.yaml."""
        data = data or {}
        config = cls(
            root_level=_parse_level(data.get("level", "INFO")),
            log_file=data.get("file"),
        )
        if "format" in data:
            config.format_string = data["format"]
        for module_name, level in (data.get("modules") or {}).items():
            config.module_levels[module_name] = _parse_level(level)
        return config

    def apply(self) -> None:
        """Apply logging configuration to the root logger."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.root_level)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        formatter = logging.Formatter(self.format_string, self.date_format)

        handler = logging.StreamHandler()
        handler.setLevel(self.root_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

        if self.log_file:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_file, encoding="utf-8")
            file_handler.setLevel(self.root_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        for module_name, level in self.module_levels.items():
            logging.getLogger(module_name).setLevel(level)

    def set_module_level(self, module_name: str, level: int) -> None:
        """Set log level for a specific module."""
        self.module_levels[module_name] = level
        logging.getLogger(module_name).setLevel(level)

    def set_all_debug(self) -> None:
        """Set all configured loggers to DEBUG."""
        for module_name in self.module_levels:
            self.set_module_level(module_name, logging.DEBUG)


def _parse_level(level: Any) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, LogLevel(str(level).upper()).value)


class SampledLogger:
    """
    Logger wrapper that emits one message in every N for a call site.

    Used for per-tick messages, which would otherwise log once a second
    per running simulator.
    """

    def __init__(self, logger: logging.Logger, every_n: int = 60):
        if every_n < 1:
            raise ValueError("every_n must be >= 1")
        self.logger = logger
        self.every_n = every_n
        self._count = 0
        self._lock = threading.Lock()

    def _should_log(self) -> bool:
        with self._lock:
            self._count += 1
            return (self._count - 1) % self.every_n == 0

    def debug(self, message: str, *args, **kwargs) -> None:
        if self.logger.isEnabledFor(logging.DEBUG) and self._should_log():
            self.logger.debug(message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs) -> None:
        if self.logger.isEnabledFor(logging.INFO) and self._should_log():
            self.logger.info(message, *args, **kwargs)
