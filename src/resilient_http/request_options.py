"""Per-call request configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping

from .cancellation import CancellationToken
from .exceptions import ConfigurationError

DEFAULT_USER_AGENT = "resilient-http/0.1.0"
ENV_PREFIX = "RESILIENT_HTTP_"


def _freeze_headers(headers: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType({str(k): str(v) for k, v in (headers or {}).items()})


@dataclass(frozen=True)
class RequestOptions:
    timeout: float = 60.0
    connection_timeout: float = 50.0
    max_retries: int = 3
    retry_delay_ms: int = 1000
    exponential_backoff: bool = False
    streaming_timeout: bool = False
    disable_cache: bool = True
    headers: Mapping[str, str] = field(default_factory=dict)
    user_agent: str | None = DEFAULT_USER_AGENT
    cancellation: CancellationToken | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _freeze_headers(self.headers))

    def validate(self) -> RequestOptions:
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be greater than 0")
        if self.connection_timeout <= 0:
            raise ConfigurationError("connection_timeout must be greater than 0")
        if self.connection_timeout > self.timeout:
            raise ConfigurationError("connection_timeout must not exceed timeout")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be non-negative")
        if self.retry_delay_ms < 0:
            raise ConfigurationError("retry_delay_ms must be non-negative")
        seen: set[str] = set()
        for name in self.headers:
            if not name:
                raise ConfigurationError("header names cannot be empty")
            if name.lower() in seen:
                raise ConfigurationError(f"duplicate header: {name}")
            seen.add(name.lower())
        return self

    def clone(self) -> RequestOptions:
        return replace(self, headers=dict(self.headers))

    def with_timeout(self, seconds: float) -> RequestOptions:
        return replace(self, timeout=seconds)

    def with_connection_timeout(self, seconds: float) -> RequestOptions:
        return replace(self, connection_timeout=seconds)

    def with_max_retries(self, retries: int) -> RequestOptions:
        return replace(self, max_retries=retries)

    def with_retry_delay(self, milliseconds: int) -> RequestOptions:
        return replace(self, retry_delay_ms=milliseconds)

    def with_exponential_backoff(self, enable: bool = True) -> RequestOptions:
        return replace(self, exponential_backoff=enable)

    def with_streaming_timeout(self, enable: bool = True) -> RequestOptions:
        return replace(self, streaming_timeout=enable)

    def with_caching(self, enable_caching: bool = True) -> RequestOptions:
        return replace(self, disable_cache=not enable_caching)

    def with_caching_disabled(self, disable: bool = True) -> RequestOptions:
        return replace(self, disable_cache=disable)

    def with_user_agent(self, user_agent: str | None) -> RequestOptions:
        return replace(self, user_agent=user_agent)

    def with_header(self, name: str, value: str) -> RequestOptions:
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        headers[name] = value
        return replace(self, headers=headers)

    def with_cancellation(self, token: CancellationToken | None) -> RequestOptions:
        return replace(self, cancellation=token)

    @classmethod
    def for_large_download(cls) -> RequestOptions:
        """Long total budget, patient retries, transport caching allowed."""
        return cls(
            timeout=600.0,
            connection_timeout=180.0,
            max_retries=3,
            retry_delay_ms=5000,
            streaming_timeout=True,
            disable_cache=False,
        )

    @classmethod
    def for_api(cls) -> RequestOptions:
        return cls(
            timeout=30.0,
            connection_timeout=10.0,
            max_retries=3,
            retry_delay_ms=500,
            disable_cache=True,
        )

    @classmethod
    def from_env(cls, base: RequestOptions | None = None, *, prefix: str = ENV_PREFIX) -> RequestOptions:
        options = base or cls()
        overrides: dict[str, object] = {}
        for name, env_name, kind in (
            ("timeout", "TIMEOUT", float),
            ("connection_timeout", "CONNECTION_TIMEOUT", float),
            ("max_retries", "MAX_RETRIES", int),
            ("retry_delay_ms", "RETRY_DELAY_MS", int),
        ):
            raw = os.getenv(prefix + env_name)
            if raw is None or not raw.strip():
                continue
            try:
                overrides[name] = kind(raw)
            except ValueError:
                raise ConfigurationError(f"{prefix + env_name} must be a number, got {raw!r}") from None
        user_agent = os.getenv(prefix + "USER_AGENT")
        if user_agent:
            overrides["user_agent"] = user_agent
        return replace(options, **overrides) if overrides else options
