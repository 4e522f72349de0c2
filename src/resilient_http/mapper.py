"""Maps response envelopes onto typed responses."""

from __future__ import annotations

import io
from functools import lru_cache
from typing import Any, TypeVar

from PIL import Image, UnidentifiedImageError
from pydantic import TypeAdapter, ValidationError

from .envelope import ResponseEnvelope
from .logging import get_logger
from .responses import BytesResponse, ClientResponse, ImageResponse, JsonResponse, TextResponse

T = TypeVar("T")

NO_RESPONSE_STATUS = "No response (timeout or connection failure)"
NO_RESPONSE_ERROR = "Request timed out or no response received"

HTML_SNIFF_LIMIT = 1000

logger = get_logger(__name__)


@lru_cache(maxsize=256)
def _adapter(response_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(response_type)


def transport_error_message(envelope: ResponseEnvelope) -> str:
    message = f"HTTP error: {envelope.status_code}"
    if envelope.error:
        message += f" - {envelope.error}"
    return message


class TypedResponseMapper:
    """Builds typed responses; decoding only happens for transport-level successes.

    Decode problems never raise: they produce an unsuccessful response whose
    `error_message` says what went wrong.
    """

    def __init__(self) -> None:
        self._log = logger.bind(component="mapper")

    def _fields(self, envelope: ResponseEnvelope | None, kind: str) -> dict[str, Any]:
        if envelope is None:
            self._log.error("no_response", kind=kind)
            return {
                "is_success": False,
                "status_code": 0,
                "status_message": NO_RESPONSE_STATUS,
                "error_message": NO_RESPONSE_ERROR,
            }
        fields: dict[str, Any] = {
            "is_success": envelope.is_success,
            "status_code": envelope.status_code,
            "status_message": envelope.status_message,
            "headers": dict(envelope.headers),
            "raw_text": envelope.text,
            "error_message": envelope.error,
            "is_cached": envelope.is_cached,
            "is_canceled": envelope.is_canceled,
            "cancel_kind": envelope.cancel_kind,
            "elapsed_ms": envelope.elapsed_ms,
        }
        if not envelope.is_success:
            fields["error_message"] = transport_error_message(envelope)
            self._log.warning(
                "response_failed",
                kind=kind,
                status_code=envelope.status_code,
                error=envelope.error,
                canceled=envelope.is_canceled,
            )
        return fields

    def _decode_failed(self, fields: dict[str, Any], kind: str, message: str) -> dict[str, Any]:
        self._log.warning("decode_failed", kind=kind, status_code=fields["status_code"], error=message)
        fields["is_success"] = False
        fields["error_message"] = message
        return fields

    def to_response(self, envelope: ResponseEnvelope | None) -> ClientResponse:
        return ClientResponse(**self._fields(envelope, "response"))

    def to_text(self, envelope: ResponseEnvelope | None) -> TextResponse:
        fields = self._fields(envelope, "text")
        if not fields["is_success"] or envelope is None:
            return TextResponse(**fields)
        if not envelope.data:
            return TextResponse(**self._decode_failed(fields, "text", "Response contained no data"))
        try:
            text = envelope.data.decode(envelope.encoding)
        except (UnicodeDecodeError, LookupError) as exc:
            return TextResponse(**self._decode_failed(fields, "text", f"Failed to decode text: {exc}"))
        fields["raw_text"] = text
        return TextResponse(data=envelope.data, text_data=text, **fields)

    def to_bytes(self, envelope: ResponseEnvelope | None) -> BytesResponse:
        fields = self._fields(envelope, "bytes")
        if not fields["is_success"] or envelope is None:
            return BytesResponse(**fields)
        data = envelope.data or b""
        if 0 < len(data) < HTML_SNIFF_LIMIT:
            preview = data[:100].decode("utf-8", errors="replace")
            if "<html" in preview or "<!DOCTYPE" in preview:
                self._log.warning("html_instead_of_binary", preview=preview)
        return BytesResponse(data=data, **fields)

    def to_image(self, envelope: ResponseEnvelope | None) -> ImageResponse:
        fields = self._fields(envelope, "image")
        if not fields["is_success"] or envelope is None:
            return ImageResponse(**fields)
        if not envelope.data:
            return ImageResponse(**self._decode_failed(fields, "image", "No image data received"))
        try:
            image = Image.open(io.BytesIO(envelope.data))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            return ImageResponse(**self._decode_failed(fields, "image", f"Error processing image: {exc}"))
        return ImageResponse(data=envelope.data, image=image, **fields)

    def to_json(self, envelope: ResponseEnvelope | None, response_type: type[T] | Any = Any) -> JsonResponse[T]:
        fields = self._fields(envelope, "json")
        if not fields["is_success"] or envelope is None:
            return JsonResponse(**fields)
        if not envelope.data:
            return JsonResponse(**self._decode_failed(fields, "json", "Response contained no JSON data"))
        try:
            parsed = _adapter(response_type).validate_json(envelope.data)
        except ValidationError as exc:
            preview = envelope.data[:200].decode("utf-8", errors="replace")
            self._log.debug("json_preview", preview=preview)
            return JsonResponse(**self._decode_failed(fields, "json", f"JSON deserialization failed: {exc}"))
        return JsonResponse(data=envelope.data, parsed_data=parsed, **fields)
