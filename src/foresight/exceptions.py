"""Foresight exception hierarchy.

Provides a structured exception tree so catch blocks can be specific
and callers can distinguish between different failure modes.
"""

from __future__ import annotations


class ForesightError(Exception):
    """Base for all Foresight exceptions."""


class ConfigError(ForesightError):
    """Raised when configuration loading or validation fails."""


class ModelError(ForesightError):
    """Provider connection, timeout, parse failures."""


class PredictionCancelledError(ForesightError):
    """Raised inside a prediction when its cancellation token fires."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class PredictionTimeoutError(PredictionCancelledError):
    """A cancellation caused by the request deadline expiring."""

    def __init__(self, message: str = "timed out"):
        super().__init__("timeout")
        self.message = message

    def __str__(self) -> str:
        return self.message
