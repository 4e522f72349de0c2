"""URL validation and log redaction helpers."""

from __future__ import annotations

from typing import Mapping
from urllib.parse import urlparse, urlunparse

from .exceptions import ConfigurationError

SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
}


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return headers with sensitive values redacted for logging/telemetry."""
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted


def redact_url(url: str) -> str:
    """Strip user:password credentials from a URL before it is logged."""
    parsed = urlparse(url)
    if not parsed.username and not parsed.password:
        return url
    host = parsed.hostname or ""
    if parsed.port:
        host = f"{host}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=f"[REDACTED]@{host}"))


def validate_url(url: str) -> str:
    """Reject URLs the transport should never be handed."""
    if not url or not url.strip():
        raise ConfigurationError("url is required")
    if "\x00" in url:
        raise ConfigurationError("Invalid url characters")
    try:
        parsed = urlparse(url)
        parsed.port  # raises on a malformed port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid url: {exc}", cause=exc) from exc
    if parsed.scheme not in {"http", "https"}:
        raise ConfigurationError(f"Unsupported url scheme: {parsed.scheme or '(none)'}")
    if not parsed.netloc:
        raise ConfigurationError("url must include a host")
    return url
