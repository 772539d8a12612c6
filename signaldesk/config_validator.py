"""
Configuration Validation Module
===============================

Validates config.yaml at startup, before any component is built.

Features:
- Schema-based validation (type, required, range, allowed values, pattern)
- Cross-field validation
- Strict mode that refuses to start on errors
- Clear error messages
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from signaldesk.errors import ConfigValidationError


logger = logging.getLogger(__name__)


class ValidationSeverity(str, Enum):
    """Validation issue severity."""
    ERROR = "error"  # Must fix before running
    WARNING = "warning"  # Should review
    INFO = "info"


@dataclass
class ValidationIssue:
    """Single validation issue."""
    severity: ValidationSeverity
    path: str  # Config path (e.g., "simulator.interval_seconds")
    message: str
    suggestion: str | None = None

    def __str__(self) -> str:
        msg = f"[{self.severity.value.upper()}] {self.path}: {self.message}"
        if self.suggestion:
            msg += f" Suggestion: {self.suggestion}"
        return msg


@dataclass
class ValidationResult:
    """Complete validation result."""
    valid: bool = True
    issues: list[ValidationIssue] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add_error(self, path: str, message: str, suggestion: str | None = None) -> None:
        self.issues.append(ValidationIssue(ValidationSeverity.ERROR, path, message, suggestion))
        self.valid = False

    def add_warning(self, path: str, message: str, suggestion: str | None = None) -> None:
        self.issues.append(ValidationIssue(ValidationSeverity.WARNING, path, message, suggestion))

    def get_errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    def summary(self) -> str:
        status = "VALID" if self.valid else "INVALID"
        return f"Config validation: {status} ({len(self.get_errors())} errors, {len(self.get_warnings())} warnings)"

    def format_errors_for_display(self, include_warnings: bool = True) -> str:
        """Numbered list of issues for console/log output."""
        lines = ["", "=" * 60, "CONFIGURATION VALIDATION REPORT", "=" * 60, ""]

        errors = self.get_errors()
        warnings = self.get_warnings() if include_warnings else []

        if not errors and not warnings:
            lines.append("[OK] Configuration is valid!")
            return "\n".join(lines)

        if errors:
            lines.append(f"ERRORS ({len(errors)} issues that must be fixed):")
            lines.append("-" * 40)
            for i, issue in enumerate(errors, 1):
                lines.append(f"  {i}. [{issue.path}]")
                lines.append(f"     Problem: {issue.message}")
                if issue.suggestion:
                    lines.append(f"     Fix: {issue.suggestion}")
            lines.append("")

        if warnings:
            lines.append(f"WARNINGS ({len(warnings)} issues to review):")
            lines.append("-" * 40)
            for i, issue in enumerate(warnings, 1):
                lines.append(f"  {i}. [{issue.path}]")
                lines.append(f"     Note: {issue.message}")
            lines.append("")

        return "\n".join(lines)


@dataclass
class FieldSchema:
    """Schema for a single config field."""
    path: str
    field_type: type | tuple[type, ...]
    required: bool = False
    min_value: float | None = None
    max_value: float | None = None
    allowed_values: list | None = None
    pattern: str | None = None  # Regex pattern
    validator: Callable[[Any], bool] | None = None
    description: str = ""


NUMBER = (int, float)


class ConfigValidator:
    """
    Configuration validator with schema support.

    Every section is optional; defaults apply when a key is absent.
    """

    def __init__(self):
        self._schemas: list[FieldSchema] = []
        self._cross_validators: list[Callable[[dict, ValidationResult], None]] = []
        self._register_default_schemas()
        self.add_cross_validator(_validate_instruments)
        self.add_cross_validator(_validate_watchlist_coverage)

    def _register_default_schemas(self) -> None:
        # Logging
        self.add_schema(FieldSchema(
            path="logging.level",
            field_type=str,
            allowed_values=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            description="Root log level",
        ))
        self.add_schema(FieldSchema(path="logging.file", field_type=str, description="Optional log file"))

        # Simulator
        self.add_schema(FieldSchema(
            path="simulator.interval_seconds",
            field_type=NUMBER,
            min_value=0.05,
            max_value=60,
            description="Tick period",
        ))
        self.add_schema(FieldSchema(path="simulator.seed", field_type=int, description="Random seed"))
        self.add_schema(FieldSchema(path="simulator.instruments", field_type=list))

        # Watchlist
        self.add_schema(FieldSchema(
            path="watchlist.symbols",
            field_type=list,
            validator=lambda v: len(v) > 0 and all(isinstance(s, str) and s for s in v),
            description="Tracked symbols",
        ))

        # Analysis
        self.add_schema(FieldSchema(path="analysis.model", field_type=str))
        self.add_schema(FieldSchema(
            path="analysis.api_key_env",
            field_type=str,
            pattern=r"^[A-Z_][A-Z0-9_]*$",
            description="Environment variable holding the API key",
        ))
        self.add_schema(FieldSchema(path="analysis.timeout_seconds", field_type=NUMBER, min_value=1, max_value=300))
        self.add_schema(FieldSchema(path="analysis.max_retries", field_type=int, min_value=1, max_value=10))
        self.add_schema(FieldSchema(path="analysis.calls_per_minute", field_type=int, min_value=1, max_value=1000))

        # Auto-scan
        self.add_schema(FieldSchema(path="auto_scan.enabled", field_type=bool))
        self.add_schema(FieldSchema(path="auto_scan.interval_seconds", field_type=NUMBER, min_value=1))
        self.add_schema(FieldSchema(path="auto_scan.cooldown_seconds", field_type=NUMBER, min_value=0))

        # Notifications
        self.add_schema(FieldSchema(path="notifications.file", field_type=str, description="JSONL alert log"))

        # Auth
        self.add_schema(FieldSchema(path="auth.store_path", field_type=str))

        # Dashboard
        self.add_schema(FieldSchema(path="dashboard.enabled", field_type=bool))
        self.add_schema(FieldSchema(path="dashboard.host", field_type=str))
        self.add_schema(FieldSchema(path="dashboard.port", field_type=int, min_value=1, max_value=65535))

    def add_schema(self, schema: FieldSchema) -> None:
        self._schemas.append(schema)

    def add_cross_validator(self, validator: Callable[[dict, ValidationResult], None]) -> None:
        self._cross_validators.append(validator)

    def validate(self, config: dict, strict: bool = False) -> ValidationResult:
        """
        Validate configuration against schemas.

        Raises:
            ConfigValidationError: If strict=True and validation fails
        """
        result = ValidationResult()

        if not isinstance(config, dict):
            result.add_error("<root>", f"Configuration must be a mapping, got {type(config).__name__}")
        else:
            for schema in self._schemas:
                self._validate_field(config, schema, result)
            for validator in self._cross_validators:
                validator(config, result)

        if result.valid:
            logger.info(result.summary())
        else:
            logger.error(result.summary())
            for issue in result.get_errors():
                logger.error(str(issue))
        for issue in result.get_warnings():
            logger.warning(str(issue))

        if strict and not result.valid:
            raise ConfigValidationError(
                f"Configuration validation failed.\n{result.format_errors_for_display(include_warnings=False)}",
                result.issues,
            )
        return result

    def _validate_field(self, config: dict, schema: FieldSchema, result: ValidationResult) -> None:
        value = get_nested_value(config, schema.path)

        if value is None:
            if schema.required:
                result.add_error(schema.path, "Required field is missing", f"Add '{schema.path}' to config.yaml")
            return

        expected = schema.field_type
        # bool is an int subclass; only accept it where bool is expected
        if isinstance(value, bool) and bool not in (expected if isinstance(expected, tuple) else (expected,)):
            result.add_error(schema.path, f"Invalid type: expected {_type_name(expected)}, got bool")
            return
        if not isinstance(value, expected):
            result.add_error(schema.path, f"Invalid type: expected {_type_name(expected)}, got {type(value).__name__}")
            return

        if schema.min_value is not None and isinstance(value, NUMBER) and value < schema.min_value:
            result.add_error(schema.path, f"Value {value} is below minimum {schema.min_value}")

        if schema.max_value is not None and isinstance(value, NUMBER) and value > schema.max_value:
            result.add_error(schema.path, f"Value {value} is above maximum {schema.max_value}")

        if schema.allowed_values is not None and value not in schema.allowed_values:
            result.add_error(schema.path, f"Value '{value}' not in allowed values: {schema.allowed_values}")

        if schema.pattern is not None and isinstance(value, str) and not re.match(schema.pattern, value):
            result.add_error(schema.path, f"Value '{value}' does not match required pattern: {schema.pattern}")

        if schema.validator is not None:
            try:
                if not schema.validator(value):
                    result.add_error(schema.path, "Failed custom validation")
            except Exception as e:
                result.add_error(schema.path, f"Validation error: {e}")


def _type_name(field_type: type | tuple[type, ...]) -> str:
    if isinstance(field_type, tuple):
        return " or ".join(t.__name__ for t in field_type)
    return field_type.__name__


def get_nested_value(config: dict, path: str) -> Any:
    """Get value from nested dict using dot notation."""
    value: Any = config
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
        if value is None:
            return None
    return value


def _validate_instruments(config: dict, result: ValidationResult) -> None:
    instruments = get_nested_value(config, "simulator.instruments")
    if not isinstance(instruments, list):
        return
    seen = set()
    for i, item in enumerate(instruments):
        path = f"simulator.instruments[{i}]"
        if not isinstance(item, dict):
            result.add_error(path, "Instrument must be a mapping")
            continue
        symbol = item.get("symbol")
        if not isinstance(symbol, str) or not symbol:
            result.add_error(f"{path}.symbol", "Required field is missing")
        elif symbol in seen:
            result.add_error(f"{path}.symbol", f"Duplicate symbol '{symbol}'")
        else:
            seen.add(symbol)
        price = item.get("initial_price")
        if isinstance(price, bool) or not isinstance(price, NUMBER) or price <= 0:
            result.add_error(f"{path}.initial_price", "initial_price must be a positive number")


def _validate_watchlist_coverage(config: dict, result: ValidationResult) -> None:
    symbols = get_nested_value(config, "watchlist.symbols")
    instruments = get_nested_value(config, "simulator.instruments")
    if not isinstance(symbols, list) or not isinstance(instruments, list):
        return
    simulated = {i.get("symbol") for i in instruments if isinstance(i, dict)}
    for symbol in symbols:
        if symbol not in simulated:
            result.add_warning(
                "watchlist.symbols",
                f"'{symbol}' is not simulated and will stay pending",
                "Add it to simulator.instruments",
            )


def validate_config_at_startup(config: dict, strict: bool = True) -> ValidationResult:
    """
    Validate config at startup.

    Raises:
        ConfigValidationError: If strict=True and validation fails
    """
    return ConfigValidator().validate(config, strict=strict)
