"""
Errors
======

Exception hierarchy for the signal desk.

Analysis failures are converted into outcomes at the orchestrator boundary;
the classes here exist so adapters can report what went wrong.
"""

from __future__ import annotations


class SignalDeskError(Exception):
    """Base class for all signal desk errors."""


class AnalysisError(SignalDeskError):
    """The external analysis capability failed (timeout, bad response, service error)."""


class QuotaExceededError(AnalysisError):
    """The external analysis capability is rate limited."""

    def __init__(self, message: str = "QUOTA_EXCEEDED", retry_after_seconds: float | None = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class InvalidAlertTargetError(SignalDeskError, ValueError):
    """Alert target price is missing or not a finite number."""


class AuthError(SignalDeskError):
    """Authentication or account operation failed."""

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or f"auth/{code}")
        self.code = code


class ConfigValidationError(SignalDeskError):
    """Configuration failed validation at startup."""

    def __init__(self, message: str, issues: list | None = None):
        super().__init__(message)
        self.issues = issues or []
