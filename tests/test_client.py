from __future__ import annotations

import asyncio
import io
import json
from urllib.parse import parse_qs

import httpx
import pytest
from PIL import Image
from pydantic import BaseModel

from resilient_http.client import HttpClient
from resilient_http.cancellation import CancellationToken
from resilient_http.exceptions import CancelKind, CancellationError, ConfigurationError, DecodeError, HttpError
from resilient_http.headers import FORM_CONTENT_TYPE, JSON_CONTENT_TYPE
from resilient_http.request_options import RequestOptions

BASE = "https://api.example.com"
FAST = RequestOptions(max_retries=1, retry_delay_ms=0)


class Widget(BaseModel):
    id: int
    name: str
    tags: list[str] = []


def _client(handler, **kwargs) -> HttpClient:
    kwargs.setdefault("default_options", FAST)
    return HttpClient(transport=httpx.MockTransport(handler), **kwargs)


def test_post_round_trips_pydantic_models() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["content_type"] = request.headers["Content-Type"]
        payload = json.loads(request.content)
        return httpx.Response(201, json={**payload, "id": 9})

    async def run() -> Widget:
        async with _client(handler) as client:
            return await client.post(f"{BASE}/widgets", Widget(id=0, name="bolt", tags=["a"]), Widget)

    widget = asyncio.run(run())

    assert widget == Widget(id=9, name="bolt", tags=["a"])
    assert captured["content_type"] == JSON_CONTENT_TYPE


def test_get_put_patch_delete_use_their_methods() -> None:
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return httpx.Response(200, json={"method": request.method})

    async def run() -> list[object]:
        async with _client(handler) as client:
            return [
                await client.get(f"{BASE}/w/1"),
                await client.put(f"{BASE}/w/1", {"name": "x"}),
                await client.patch(f"{BASE}/w/1", {"name": "y"}),
                await client.delete(f"{BASE}/w/1"),
            ]

    results = asyncio.run(run())

    assert methods == ["GET", "PUT", "PATCH", "DELETE"]
    assert results == [{"method": m} for m in methods]


def test_api_call_raises_http_error_on_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "missing"})

    async def run() -> None:
        async with _client(handler) as client:
            await client.get(f"{BASE}/missing", Widget)

    with pytest.raises(HttpError) as excinfo:
        asyncio.run(run())

    assert excinfo.value.status_code == 404
    assert "404" in str(excinfo.value)


def test_api_call_raises_on_undecodable_json() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    async def run() -> None:
        async with _client(handler) as client:
            await client.get(f"{BASE}/w", Widget)

    with pytest.raises(HttpError, match="JSON deserialization failed") as excinfo:
        asyncio.run(run())

    assert isinstance(excinfo.value.cause, DecodeError)


def test_empty_body_returns_none() -> None:
    async def run() -> object:
        async with _client(lambda request: httpx.Response(204)) as client:
            return await client.delete(f"{BASE}/w/1")

    assert asyncio.run(run()) is None


def test_post_form_encodes_fields() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["content_type"] = request.headers["Content-Type"]
        captured["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"ok": True})

    async def run() -> object:
        async with _client(handler) as client:
            return await client.post_form(f"{BASE}/login", {"user": "a b", "pin": 1234})

    assert asyncio.run(run()) == {"ok": True}
    assert captured["content_type"] == FORM_CONTENT_TYPE
    assert captured["form"] == {"user": ["a b"], "pin": ["1234"]}


def test_header_precedence_global_then_options_then_call() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    async def run() -> None:
        async with _client(handler, headers={"X-Tier": "global", "X-Global": "1"}) as client:
            client.set_global_header("Authorization", "Bearer token")
            options = FAST.with_header("X-Tier", "options").with_header("X-Options", "1")
            await client.request("GET", f"{BASE}/a", options=options)
            await client.request("GET", f"{BASE}/b", options=options, headers={"x-tier": "call"})
            client.remove_global_header("authorization")
            await client.request("GET", f"{BASE}/c")

    asyncio.run(run())

    first, second, third = seen
    assert first.headers["X-Tier"] == "options"
    assert first.headers["X-Global"] == "1"
    assert first.headers["X-Options"] == "1"
    assert first.headers["Authorization"] == "Bearer token"
    assert second.headers["X-Tier"] == "call"
    assert "Authorization" not in third.headers
    assert third.headers["X-Tier"] == "global"


def test_default_options_can_be_replaced() -> None:
    async def run() -> HttpClient:
        client = _client(lambda request: httpx.Response(200))
        client.set_default_options(RequestOptions.for_api())
        await client.aclose()
        return client

    client = asyncio.run(run())

    assert client.default_options == RequestOptions.for_api()
    with pytest.raises(ConfigurationError):
        client.set_default_options(RequestOptions(timeout=1, connection_timeout=5))


def test_invalid_urls_are_rejected() -> None:
    async def run(url: str) -> None:
        async with _client(lambda request: httpx.Response(200)) as client:
            await client.request("GET", url)

    for url in ["", "ftp://example.com/file", "https://", "not a url"]:
        with pytest.raises(ConfigurationError):
            asyncio.run(run(url))


def test_get_response_keeps_metadata() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": 1, "name": "w"}, headers={"X-Request-Id": "abc"})

    async def run():
        async with _client(handler) as client:
            return await client.get_response(f"{BASE}/w/1", Widget)

    response = asyncio.run(run())

    assert response.is_success
    assert response.parsed_data == Widget(id=1, name="w")
    assert response.get_header("X-Request-Id") == "abc"


def test_head_returns_plain_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "HEAD"
        return httpx.Response(200, headers={"Content-Length": "42"})

    async def run():
        async with _client(handler) as client:
            return await client.head(f"{BASE}/file")

    response = asyncio.run(run())

    assert response.is_success
    assert response.get_header("content-length") == "42"


def test_get_text_service_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok":
            return httpx.Response(200, text="plain text")
        return httpx.Response(400)

    async def run():
        async with _client(handler) as client:
            return await client.get_text(f"{BASE}/ok"), await client.get_text(f"{BASE}/bad")

    ok, bad = asyncio.run(run())

    assert ok.is_success and ok.data == "plain text"
    assert bad.is_success is False
    assert bad.status_code == 400
    assert "HTTP error: 400" in (bad.error_message or "")


def test_get_bytes_and_image() -> None:
    buffer = io.BytesIO()
    Image.new("L", (2, 2)).save(buffer, format="PNG")
    png = buffer.getvalue()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=png, headers={"Content-Type": "image/png"})

    async def run():
        async with _client(handler) as client:
            return await client.get_bytes(f"{BASE}/img"), await client.get_image(f"{BASE}/img")

    raw, image = asyncio.run(run())

    assert raw.data == png
    assert image.is_success
    assert image.data is not None and image.data.size == (2, 2)


def test_get_streaming_collects_chunks() -> None:
    body = b"0123456789" * 50
    chunks: list[bytes] = []
    fractions: list[float] = []
    completed: list[bool] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body)

    async def run():
        async with _client(handler) as client:
            return await client.get_streaming(
                f"{BASE}/download",
                chunks.append,
                on_completed=lambda: completed.append(True),
                on_progress=fractions.append,
            )

    result = asyncio.run(run())

    assert result.is_success
    assert result.data == body
    assert b"".join(chunks) == body
    assert completed == [True]
    assert fractions[-1] == 1.0


def test_get_streaming_failure() -> None:
    async def run():
        async with _client(lambda request: httpx.Response(403)) as client:
            return await client.get_streaming(f"{BASE}/download")

    result = asyncio.run(run())

    assert result.is_success is False
    assert result.status_code == 403


def test_injected_httpx_client_is_not_closed() -> None:
    async def run() -> bool:
        inner = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        async with HttpClient(httpx_client=inner, default_options=FAST) as client:
            await client.request("GET", f"{BASE}/ping")
        closed = inner.is_closed
        await inner.aclose()
        return closed

    assert asyncio.run(run()) is False


def test_json_data_and_content_are_exclusive() -> None:
    async def run() -> None:
        async with _client(lambda request: httpx.Response(200)) as client:
            await client.request("POST", f"{BASE}/x", json_data={"a": 1}, content=b"raw")

    with pytest.raises(ConfigurationError):
        asyncio.run(run())


def test_caller_cancel_is_reported_as_cancellation_cause() -> None:
    token = CancellationToken()
    token.cancel()

    async def run() -> None:
        async with _client(lambda request: httpx.Response(200, json={})) as client:
            await client.get(f"{BASE}/w", cancellation=token)

    with pytest.raises(HttpError) as excinfo:
        asyncio.run(run())

    assert excinfo.value.status_code == 0
    assert isinstance(excinfo.value.cause, CancellationError)
    assert excinfo.value.cause.kind is CancelKind.CALLER


def test_total_timeout_is_reported_as_cancellation_cause() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, text="late")

    options = RequestOptions(timeout=0.2, connection_timeout=0.05, max_retries=20, retry_delay_ms=0)

    async def run():
        async with _client(handler) as client:
            return await client.get_text(f"{BASE}/slow", options=options)

    result = asyncio.run(run())

    assert result.is_success is False
    assert isinstance(result.error, HttpError)
    assert isinstance(result.error.cause, CancellationError)
    assert result.error.cause.kind is CancelKind.TOTAL_TIMEOUT


def test_malformed_urls_and_methods_raise_configuration_errors() -> None:
    async def run(method: str, url: str) -> None:
        async with _client(lambda request: httpx.Response(200)) as client:
            await client.request(method, url)

    with pytest.raises(ConfigurationError):
        asyncio.run(run("GET", "http://[::1"))
    with pytest.raises(ConfigurationError):
        asyncio.run(run("GET", "http://example.com:notaport/"))
    with pytest.raises(ConfigurationError):
        asyncio.run(run("BREW", f"{BASE}/pot"))
