"""Client-specific exceptions."""

from __future__ import annotations

from enum import Enum


class CancelKind(str, Enum):
    CALLER = "caller"
    TOTAL_TIMEOUT = "total_timeout"
    CONNECTION_TIMEOUT = "connection_timeout"


class HttpClientError(Exception):
    """Base exception for all resilient-http failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause

    @property
    def message(self) -> str:
        return str(self.args[0])

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if not self.status_code:
            return self.message
        return f"{self.status_code}: {self.message}"


class ConfigurationError(HttpClientError):
    """Raised when request options, bodies or URLs are invalid."""


class HttpError(HttpClientError):
    """Raised by the JSON convenience calls when no value can be produced."""

    def __init__(self, status_code: int, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message, status_code=status_code, cause=cause)


class TransportError(HttpClientError):
    """A failed attempt, as recorded by the executor."""


class RetriableTransportError(TransportError):
    """5xx, 408, 429 or a timeout/network failure."""


class NonRetriableTransportError(TransportError):
    """Any other 4xx or an unclassified failure."""


class CancellationError(HttpClientError):
    """Raised when a call was canceled by the caller or hit its total timeout."""

    def __init__(self, kind: CancelKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class DecodeError(HttpClientError):
    """Raised when a successful response body cannot be decoded."""
