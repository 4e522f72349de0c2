"""Runs one logical call: timeout scopes, retry loop, outcome classification."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

import httpx

from .cancellation import AttemptScope, CallScope, CancellationToken, ScopeCanceled
from .envelope import ResponseEnvelope
from .exceptions import CancelKind, NonRetriableTransportError, RetriableTransportError
from .headers import CACHE_BUSTING_HEADERS, HeaderSet
from .logging import get_logger
from .methods import HttpMethod
from .request_options import RequestOptions
from .security import redact_url, sanitize_headers
from .sink import StreamingSink

ProgressCallback = Callable[[float], None]

MAX_BACKOFF_MS = 30_000
RETRIABLE_STATUS_CODES = frozenset({408, 429})
RETRIABLE_ERROR_PATTERNS = ("timeout", "network", "connection")
PROGRESS_STEP = 0.01
CACHE_BUSTING_PARAM = "_nocache"

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestSpec:
    method: HttpMethod
    url: str
    headers: HeaderSet
    options: RequestOptions
    body: bytes | None = None
    content_type: str | None = None
    sink: StreamingSink | None = None
    on_progress: ProgressCallback | None = None
    cancellation: CancellationToken | None = None

    @property
    def streaming(self) -> bool:
        return self.sink is not None


@dataclass(frozen=True)
class Success:
    envelope: ResponseEnvelope


@dataclass(frozen=True)
class Retriable:
    envelope: ResponseEnvelope
    error: RetriableTransportError


@dataclass(frozen=True)
class Terminal:
    envelope: ResponseEnvelope
    error: NonRetriableTransportError


@dataclass(frozen=True)
class Canceled:
    envelope: ResponseEnvelope
    kind: CancelKind


AttemptOutcome = Union[Success, Retriable, Terminal, Canceled]


class Action(str, Enum):
    RETURN = "return"
    RETRY = "retry"
    STOP = "stop"


def is_retriable(status_code: int, error: str | None) -> bool:
    if status_code >= 500 or status_code in RETRIABLE_STATUS_CODES:
        return True
    lowered = (error or "").lower()
    return any(pattern in lowered for pattern in RETRIABLE_ERROR_PATTERNS)


def classify(envelope: ResponseEnvelope) -> AttemptOutcome:
    if envelope.is_success:
        return Success(envelope)
    message = envelope.error or f"HTTP error: {envelope.status_code}"
    if is_retriable(envelope.status_code, envelope.error):
        return Retriable(envelope, RetriableTransportError(message, status_code=envelope.status_code))
    return Terminal(envelope, NonRetriableTransportError(message, status_code=envelope.status_code))


def decide(outcome: AttemptOutcome, attempt: int, max_retries: int) -> Action:
    """Next step after attempt number `attempt` (1-based)."""
    if isinstance(outcome, (Success, Terminal)):
        return Action.RETURN
    if isinstance(outcome, Canceled) and outcome.kind is not CancelKind.CONNECTION_TIMEOUT:
        return Action.STOP
    # A connection timeout on the final attempt ends like any other exhausted retry.
    return Action.RETRY if attempt <= max_retries else Action.RETURN


def backoff_delay_ms(attempt: int, retry_delay_ms: int, exponential: bool) -> int:
    if not exponential:
        return retry_delay_ms
    return min(retry_delay_ms * 2 ** max(0, attempt - 1), MAX_BACKOFF_MS)


class StreamAborted(Exception):
    """The sink refused further chunks."""


class RequestExecutor:
    """Sends a `RequestSpec` through httpx with retries and layered timeouts."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client
        self._log = logger.bind(component="executor")

    async def execute(self, spec: RequestSpec) -> ResponseEnvelope:
        options = spec.options.validate()
        log = self._log.bind(method=spec.method.value, url=redact_url(spec.url))
        scope = CallScope(options.timeout, (options.cancellation, spec.cancellation))

        attempt = 0
        last: ResponseEnvelope | None = None
        canceled: CancelKind | None = None
        while attempt <= options.max_retries:
            canceled = scope.cancel_kind()
            if canceled is not None:
                break
            remaining = scope.remaining
            if remaining <= 0:
                scope.expire()
                canceled = CancelKind.TOTAL_TIMEOUT
                log.warning("no_time_left", attempt=attempt)
                break

            attempt += 1
            log.debug("attempt_start", attempt=attempt, remaining_s=round(remaining, 3))
            outcome = await self._attempt(spec, scope, attempt)
            last = outcome.envelope
            action = decide(outcome, attempt, options.max_retries)

            if isinstance(outcome, Retriable):
                log.warning(
                    "attempt_retriable",
                    attempt=attempt,
                    status_code=outcome.error.status_code,
                    error=outcome.error.message,
                    cause=repr(outcome.error.cause) if outcome.error.cause else None,
                )
            elif isinstance(outcome, Terminal):
                log.warning(
                    "attempt_terminal",
                    attempt=attempt,
                    status_code=outcome.error.status_code,
                    error=outcome.error.message,
                )
            elif isinstance(outcome, Canceled):
                log.warning("attempt_canceled", attempt=attempt, kind=outcome.kind.value)
                if action is Action.STOP:
                    canceled = outcome.kind

            if action is not Action.RETRY:
                break

            delay_ms = backoff_delay_ms(attempt, options.retry_delay_ms, options.exponential_backoff)
            log.info("retry_backoff", attempt=attempt, delay_ms=delay_ms)
            if delay_ms > 0 and not await scope.sleep(delay_ms / 1000.0):
                canceled = scope.cancel_kind()
                break

        if canceled is not None:
            envelope = self._canceled_envelope(canceled, scope)
            log.warning("request_canceled", kind=canceled.value, attempts=attempt, elapsed_s=round(scope.elapsed, 3))
        else:
            envelope = last or ResponseEnvelope.failure("Unknown error")
        envelope.elapsed_ms = int(scope.elapsed * 1000)
        if spec.sink is not None and not spec.sink.is_finished and not envelope.is_success:
            spec.sink.fail(envelope.error or "Request failed")

        log.info(
            "request_complete",
            status_code=envelope.status_code,
            success=envelope.is_success,
            attempts=attempt,
            bytes=envelope.content_length,
            duration_ms=envelope.elapsed_ms,
        )
        return envelope

    def _canceled_envelope(self, kind: CancelKind, scope: CallScope) -> ResponseEnvelope:
        if kind is CancelKind.TOTAL_TIMEOUT:
            return ResponseEnvelope.canceled(f"Total timeout after {scope.elapsed:.1f}s", kind)
        return ResponseEnvelope.canceled("User canceled request", kind)

    async def _attempt(self, spec: RequestSpec, scope: CallScope, attempt: int) -> AttemptOutcome:
        if spec.sink is not None and attempt > 1:
            spec.sink.reset()
        async with scope.attempt(spec.options.connection_timeout) as attempt_scope:
            request = self._build_request(spec, attempt_scope)
            bounded = not spec.streaming or spec.options.streaming_timeout
            try:
                envelope = await attempt_scope.run(self._send(request, spec), bounded=bounded)
            except ScopeCanceled as exc:
                if exc.kind is CancelKind.CONNECTION_TIMEOUT:
                    envelope = ResponseEnvelope.failure(f"Connection timeout after {attempt_scope.timeout:.1f}s")
                else:
                    envelope = self._canceled_envelope(exc.kind, scope)
                return Canceled(envelope, exc.kind)
            except StreamAborted as exc:
                envelope = ResponseEnvelope.failure(str(exc))
                return Terminal(envelope, NonRetriableTransportError(str(exc)))
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                kind = "Connection timeout" if isinstance(exc, httpx.TimeoutException) else "Network error"
                envelope = ResponseEnvelope.failure(f"{kind}: {exc or type(exc).__name__}")
                return Retriable(envelope, RetriableTransportError(envelope.error or kind, cause=exc))
            except httpx.HTTPError as exc:
                envelope = ResponseEnvelope.failure(f"Request failed: {exc or type(exc).__name__}")
                return classify(envelope)
        return classify(envelope)

    def _build_request(self, spec: RequestSpec, attempt_scope: AttemptScope) -> httpx.Request:
        options = spec.options
        url = httpx.URL(spec.url)
        headers = httpx.Headers()
        if options.disable_cache:
            url = url.copy_add_param(CACHE_BUSTING_PARAM, uuid.uuid4().hex)
            headers.update(dict(CACHE_BUSTING_HEADERS))
        for name, value in spec.headers.items():
            headers[name] = value
        if spec.body is not None and spec.content_type and "content-type" not in headers:
            headers["Content-Type"] = spec.content_type

        if spec.streaming and not options.streaming_timeout:
            timeout = httpx.Timeout(attempt_scope.timeout, read=None, write=None)
        else:
            timeout = httpx.Timeout(attempt_scope.timeout)
        self._log.debug("request_built", method=spec.method.value, headers=sanitize_headers(headers))
        return self._client.build_request(
            spec.method.value,
            url,
            headers=headers,
            content=spec.body,
            timeout=timeout,
        )

    async def _send(self, request: httpx.Request, spec: RequestSpec) -> ResponseEnvelope:
        response = await self._client.send(request, stream=True)
        try:
            is_success = response.status_code < 400
            if spec.sink is not None and is_success:
                data = await self._stream_body(response, spec.sink)
            else:
                data = await self._read_body(response, spec.on_progress if spec.sink is None else None)
        finally:
            await response.aclose()
        error = None if is_success else f"{response.http_version} {response.status_code} {response.reason_phrase}"
        return ResponseEnvelope.from_httpx(response, data=data or None, is_success=is_success, error=error)

    async def _stream_body(self, response: httpx.Response, sink: StreamingSink) -> bytes | None:
        content_length = response.headers.get("Content-Length", "")
        if content_length.isdigit():
            sink.on_content_length(int(content_length))
        await sink.pump(response.aiter_bytes())
        if sink.has_error:
            raise StreamAborted(sink.session.error or "Stream aborted")
        sink.complete()
        return sink.get_data()

    async def _read_body(self, response: httpx.Response, on_progress: ProgressCallback | None) -> bytes:
        if on_progress is None:
            return await response.aread()
        content_length = response.headers.get("Content-Length", "")
        total = int(content_length) if content_length.isdigit() else 0
        buffer = bytearray()
        last = 0.0
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if total <= 0:
                continue
            fraction = min(1.0, len(buffer) / total)
            if abs(fraction - last) > PROGRESS_STEP:
                last = fraction
                self._report_progress(on_progress, fraction)
        if last < 1.0 and buffer:
            self._report_progress(on_progress, 1.0)
        return bytes(buffer)

    def _report_progress(self, on_progress: ProgressCallback, fraction: float) -> None:
        try:
            on_progress(fraction)
        except Exception as exc:
            self._log.error("progress_callback_failed", error=str(exc))
