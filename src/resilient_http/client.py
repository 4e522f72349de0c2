"""Asynchronous verb-oriented client."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, TypeVar
from urllib.parse import quote, urlencode

import httpx
from pydantic_core import PydanticSerializationError, to_json

from .cancellation import CancellationToken
from .envelope import ResponseEnvelope
from .exceptions import CancelKind, CancellationError, ConfigurationError, DecodeError, HttpError
from .executor import ProgressCallback, RequestExecutor, RequestSpec
from .headers import FORM_CONTENT_TYPE, JSON_CONTENT_TYPE, HeaderRegistry, HeaderSet, HeadersInput
from .logging import get_logger
from .mapper import TypedResponseMapper
from .methods import HttpMethod
from .request_options import RequestOptions
from .responses import BytesResponse, ClientResponse, JsonResponse, ServiceResult
from .security import redact_url, validate_url
from .sink import ChunkCallback, CompletedCallback, ProgressChangedCallback, StreamingSink

if TYPE_CHECKING:
    from PIL import Image

T = TypeVar("T")

logger = get_logger(__name__)


def _encode_json_body(body: Any) -> bytes | None:
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    try:
        return to_json(body)
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise ConfigurationError("Invalid JSON body", cause=exc) from exc


def _failure(status_code: int, message: str, cancel_kind: CancelKind | None = None) -> HttpError:
    cause = CancellationError(cancel_kind, message) if cancel_kind is not None else None
    return HttpError(status_code, message, cause=cause)


def _encode_form_body(form: Mapping[str, Any] | None) -> bytes | None:
    if not form:
        return None
    return urlencode({str(k): "" if v is None else str(v) for k, v in form.items()}, quote_via=quote).encode("ascii")


class HttpClient:
    """Resilient asynchronous HTTP client.

    Every call resolves headers (client-wide registry, then options, then the
    call's own headers), runs through the retrying executor, and maps the
    result onto a typed response.
    """

    def __init__(
        self,
        *,
        default_options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        follow_redirects: bool = True,
        httpx_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._registry = HeaderRegistry(headers)
        self._default_options = (default_options or RequestOptions()).validate().clone()
        self._owns_client = httpx_client is None
        self._httpx = httpx_client or httpx.AsyncClient(
            transport=transport,
            follow_redirects=follow_redirects,
            trust_env=False,
        )
        self._executor = RequestExecutor(self._httpx)
        self._mapper = TypedResponseMapper()
        self._log = logger.bind(component="client")

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._httpx.aclose()

    @property
    def default_options(self) -> RequestOptions:
        return self._default_options

    def set_default_options(self, options: RequestOptions | None) -> None:
        self._default_options = (options or RequestOptions()).validate().clone()

    @property
    def global_headers(self) -> Mapping[str, str]:
        return self._registry.snapshot()

    def set_global_header(self, name: str, value: str) -> None:
        self._registry.set(name, value)

    def remove_global_header(self, name: str) -> None:
        self._registry.remove(name)

    def clear_global_headers(self) -> None:
        self._registry.clear()

    def _spec(
        self,
        method: HttpMethod | str,
        url: str,
        *,
        options: RequestOptions | None,
        headers: HeadersInput | None,
        body: bytes | None = None,
        content_type: str | None = None,
        sink: StreamingSink | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> RequestSpec:
        validate_url(url)
        request_options = (options or self._default_options).clone()
        header_set = HeaderSet.resolve(
            global_headers=self._registry.snapshot(),
            user_agent=request_options.user_agent,
            option_headers=request_options.headers,
            call_headers=headers,
        )
        return RequestSpec(
            method=HttpMethod.parse(method),
            url=url,
            headers=header_set,
            options=request_options,
            body=body,
            content_type=content_type,
            sink=sink,
            on_progress=on_progress,
            cancellation=cancellation,
        )

    async def request(
        self,
        method: HttpMethod | str,
        url: str,
        *,
        json_data: Any | None = None,
        content: bytes | None = None,
        content_type: str | None = None,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ResponseEnvelope:
        if json_data is not None and content is not None:
            raise ConfigurationError("Pass either json_data or content, not both")
        if json_data is not None:
            content = _encode_json_body(json_data)
            content_type = content_type or JSON_CONTENT_TYPE
        spec = self._spec(
            method,
            url,
            options=options,
            headers=headers,
            body=content,
            content_type=content_type,
            on_progress=on_progress,
            cancellation=cancellation,
        )
        return await self._executor.execute(spec)

    async def _send_api(
        self,
        method: HttpMethod,
        url: str,
        response_type: Any,
        *,
        body: bytes | None = None,
        content_type: str | None = None,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Any:
        envelope = await self.request(
            method,
            url,
            content=body,
            content_type=content_type,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )
        if not envelope.is_success:
            response = self._mapper.to_response(envelope)
            self._log.error(
                "api_request_failed",
                url=redact_url(url),
                status_code=response.status_code,
                error=response.error_message,
            )
            raise _failure(response.status_code, response.error_message or "request failed", response.cancel_kind)
        if not envelope.data:
            self._log.warning("empty_response", url=redact_url(url))
            return None
        parsed = self._mapper.to_json(envelope, response_type)
        if not parsed.is_success:
            raise HttpError(
                envelope.status_code,
                "JSON deserialization failed",
                cause=DecodeError(parsed.error_message or "invalid JSON", status_code=envelope.status_code),
            )
        return parsed.parsed_data

    async def get(
        self,
        url: str,
        response_type: type[T] | Any = Any,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> T:
        return await self._send_api(
            HttpMethod.GET,
            url,
            response_type,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )

    async def post(
        self,
        url: str,
        body: Any | None = None,
        response_type: type[T] | Any = Any,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> T:
        return await self._send_api(
            HttpMethod.POST,
            url,
            response_type,
            body=_encode_json_body(body),
            content_type=JSON_CONTENT_TYPE,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )

    async def post_form(
        self,
        url: str,
        form: Mapping[str, Any] | None,
        response_type: type[T] | Any = Any,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> T:
        return await self._send_api(
            HttpMethod.POST,
            url,
            response_type,
            body=_encode_form_body(form),
            content_type=FORM_CONTENT_TYPE,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )

    async def put(
        self,
        url: str,
        body: Any | None = None,
        response_type: type[T] | Any = Any,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> T:
        return await self._send_api(
            HttpMethod.PUT,
            url,
            response_type,
            body=_encode_json_body(body),
            content_type=JSON_CONTENT_TYPE,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )

    async def patch(
        self,
        url: str,
        body: Any | None = None,
        response_type: type[T] | Any = Any,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> T:
        return await self._send_api(
            HttpMethod.PATCH,
            url,
            response_type,
            body=_encode_json_body(body),
            content_type=JSON_CONTENT_TYPE,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )

    async def delete(
        self,
        url: str,
        response_type: type[T] | Any = Any,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> T:
        return await self._send_api(
            HttpMethod.DELETE,
            url,
            response_type,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )

    async def get_response(
        self,
        url: str,
        response_type: type[T] | Any = Any,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> JsonResponse[T]:
        envelope = await self.request(
            HttpMethod.GET,
            url,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )
        return self._mapper.to_json(envelope, response_type)

    async def post_response(
        self,
        url: str,
        body: Any | None = None,
        response_type: type[T] | Any = Any,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> JsonResponse[T]:
        envelope = await self.request(
            HttpMethod.POST,
            url,
            content=_encode_json_body(body),
            content_type=JSON_CONTENT_TYPE,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )
        return self._mapper.to_json(envelope, response_type)

    async def head(
        self,
        url: str,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ClientResponse:
        envelope = await self.request(
            HttpMethod.HEAD,
            url,
            options=options,
            headers=headers,
            cancellation=cancellation,
        )
        return self._mapper.to_response(envelope)

    async def get_text(
        self,
        url: str,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ServiceResult[str]:
        envelope = await self.request(
            HttpMethod.GET,
            url,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )
        response = self._mapper.to_text(envelope)
        if response.is_success:
            return ServiceResult.ok(response.text_data)
        return ServiceResult.fail(
            _failure(response.status_code, response.error_message or "request failed", response.cancel_kind)
        )

    async def get_bytes(
        self,
        url: str,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> BytesResponse:
        envelope = await self.request(
            HttpMethod.GET,
            url,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )
        return self._mapper.to_bytes(envelope)

    async def get_image(
        self,
        url: str,
        *,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ServiceResult[Image.Image]:
        envelope = await self.request(
            HttpMethod.GET,
            url,
            options=options,
            headers=headers,
            on_progress=on_progress,
            cancellation=cancellation,
        )
        response = self._mapper.to_image(envelope)
        if response.is_success and response.image is not None:
            return ServiceResult.ok(response.image)
        return ServiceResult.fail(
            _failure(response.status_code, response.error_message or "Failed to load image data", response.cancel_kind)
        )

    async def stream(
        self,
        url: str,
        sink: StreamingSink,
        *,
        method: HttpMethod | str = HttpMethod.GET,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ResponseEnvelope:
        spec = self._spec(
            method,
            url,
            options=options,
            headers=headers,
            sink=sink,
            cancellation=cancellation,
        )
        return await self._executor.execute(spec)

    async def get_streaming(
        self,
        url: str,
        on_chunk: ChunkCallback | None = None,
        on_progress_changed: ProgressChangedCallback | None = None,
        on_completed: CompletedCallback | None = None,
        *,
        accumulate: bool = True,
        options: RequestOptions | None = None,
        headers: HeadersInput | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ServiceResult[bytes]:
        def progress_changed(received: int, total: int) -> None:
            if on_progress is not None and total > 0:
                on_progress(received / total)
            if on_progress_changed is not None:
                on_progress_changed(received, total)

        sink = StreamingSink(on_chunk, progress_changed, on_completed, accumulate=accumulate)
        envelope = await self.stream(url, sink, options=options, headers=headers, cancellation=cancellation)
        if envelope.is_success:
            return ServiceResult.ok(sink.get_data())
        return ServiceResult.fail(_failure(envelope.status_code, envelope.error or "stream failed", envelope.cancel_kind))
