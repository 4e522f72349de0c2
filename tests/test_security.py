from __future__ import annotations

import io
import json
import logging

import pytest

from resilient_http.exceptions import ConfigurationError
from resilient_http.logging import bind_call_context, clear_call_context, configure_logging, get_logger
from resilient_http.methods import HttpMethod
from resilient_http.security import redact_url, sanitize_headers, validate_url


def test_sanitize_headers_redacts_credentials() -> None:
    headers = {"Authorization": "Bearer x", "X-Api-Key": "k", "Accept": "*/*"}

    assert sanitize_headers(headers) == {
        "Authorization": "[REDACTED]",
        "X-Api-Key": "[REDACTED]",
        "Accept": "*/*",
    }


def test_redact_url_strips_userinfo() -> None:
    assert redact_url("https://user:pw@example.com:8443/p?q=1") == "https://[REDACTED]@example.com:8443/p?q=1"
    assert redact_url("https://example.com/p") == "https://example.com/p"


@pytest.mark.parametrize(
    "url",
    ["", "   ", "file:///etc/passwd", "http://", "https://exa\x00mple.com", "http://[::1", "http://host:port/"],
)
def test_validate_url_rejects(url: str) -> None:
    with pytest.raises(ConfigurationError):
        validate_url(url)


def test_http_method_parse() -> None:
    assert HttpMethod.parse("patch") is HttpMethod.PATCH
    assert HttpMethod.POST.allows_body
    assert not HttpMethod.GET.allows_body
    with pytest.raises(ConfigurationError, match="Unsupported HTTP method"):
        HttpMethod.parse("BREW")


def test_json_logging_includes_bound_context() -> None:
    output = io.StringIO()
    configure_logging(level=logging.INFO, output=output, json_format=True)
    bind_call_context(request_id="r-1")
    try:
        get_logger("test").info("request_complete", status_code=200)
        get_logger("test").debug("hidden")
    finally:
        clear_call_context("request_id")

    lines = [json.loads(line) for line in output.getvalue().splitlines()]
    assert len(lines) == 1
    assert lines[0]["event"] == "request_complete"
    assert lines[0]["request_id"] == "r-1"
    assert lines[0]["level"] == "info"
