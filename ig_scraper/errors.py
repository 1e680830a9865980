from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class FetchError(RuntimeError):
    """Raised when an HTTP request or browser navigation fails at the transport level."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SinkError(RuntimeError):
    """Raised when records cannot be written to the configured dataset."""
