"""HTTP verbs understood by the executor."""

from __future__ import annotations

from enum import Enum

from .exceptions import ConfigurationError


class HttpMethod(str, Enum):
    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    # Defined for completeness; the client has no dedicated call for these.
    OPTIONS = "OPTIONS"
    CONNECT = "CONNECT"
    TRACE = "TRACE"

    @classmethod
    def parse(cls, value: str | HttpMethod) -> HttpMethod:
        if isinstance(value, HttpMethod):
            return value
        try:
            return cls(value.upper())
        except ValueError:
            raise ConfigurationError(f"Unsupported HTTP method: {value}") from None

    @property
    def allows_body(self) -> bool:
        return self in {HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH, HttpMethod.DELETE}
