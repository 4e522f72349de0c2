"""Transport-agnostic result of one request attempt."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from .exceptions import CancelKind, DecodeError


def status_message_for(status_code: int) -> str:
    if status_code <= 0:
        return "Unknown"
    phrase = httpx.codes.get_reason_phrase(status_code)
    return phrase or "Unknown"


@dataclass
class ResponseEnvelope:
    """Normalized response.

    `is_success` is transport-level success as decided by the executor;
    the status helpers below are independent queries on `status_code`.
    """

    status_code: int = 0
    status_message: str = "Unknown"
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    data: bytes | None = None
    text: str | None = None
    is_success: bool = False
    error: str | None = None
    is_canceled: bool = False
    cancel_kind: CancelKind | None = None
    is_cached: bool = False
    elapsed_ms: int = 0
    encoding: str = "utf-8"

    @classmethod
    def from_httpx(
        cls,
        response: httpx.Response,
        *,
        data: bytes | None,
        is_success: bool,
        error: str | None = None,
        elapsed_ms: int = 0,
    ) -> ResponseEnvelope:
        return cls(
            status_code=response.status_code,
            status_message=response.reason_phrase or status_message_for(response.status_code),
            headers=httpx.Headers(response.headers),
            data=data,
            is_success=is_success,
            error=error,
            is_cached=response.status_code == httpx.codes.NOT_MODIFIED,
            elapsed_ms=elapsed_ms,
            encoding=response.charset_encoding or "utf-8",
        )

    @classmethod
    def success(cls, content: str | bytes | None = None, status_code: int = 200) -> ResponseEnvelope:
        data = content.encode("utf-8") if isinstance(content, str) else content
        return cls(
            status_code=status_code,
            status_message=status_message_for(status_code),
            data=data,
            text=content if isinstance(content, str) else None,
            is_success=True,
        )

    @classmethod
    def failure(cls, error: str, status_code: int = 0, *, is_canceled: bool = False) -> ResponseEnvelope:
        return cls(
            status_code=status_code,
            status_message=status_message_for(status_code),
            error=error,
            is_success=False,
            is_canceled=is_canceled,
        )

    @classmethod
    def timeout(cls, message: str = "Request timeout") -> ResponseEnvelope:
        return cls.failure(message, 408)

    @classmethod
    def canceled(cls, message: str = "Request was canceled", kind: CancelKind = CancelKind.CALLER) -> ResponseEnvelope:
        envelope = cls.failure(message, 0, is_canceled=True)
        envelope.cancel_kind = kind
        return envelope

    @property
    def is_success_status_code(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_redirection(self) -> bool:
        return 300 <= self.status_code < 400

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600

    @property
    def is_timeout(self) -> bool:
        return self.status_code == 408 or "timeout" in (self.error or "").lower()

    @property
    def is_network_error(self) -> bool:
        return not self.is_success and (self.status_code == 0 or "network" in (self.error or "").lower())

    @property
    def content_length(self) -> int:
        return len(self.data) if self.data is not None else 0

    @property
    def content_type(self) -> str | None:
        return self.get_header("Content-Type")

    def get_header(self, name: str) -> str | None:
        return self.headers.get(name)

    def get_headers(self, name: str) -> list[str]:
        return self.headers.get_list(name)

    def has_header(self, name: str) -> bool:
        return name in self.headers

    def get_text(self) -> str | None:
        if self.text:
            return self.text
        if self.data:
            self.text = self.data.decode(self.encoding, errors="replace")
            return self.text
        return None

    def json(self) -> Any:
        content = self.get_text()
        if not content:
            return None
        try:
            return json.loads(content)
        except ValueError as exc:
            raise DecodeError(
                f"Failed to deserialize JSON response: {exc}", status_code=self.status_code, cause=exc
            ) from exc

    def try_json(self) -> tuple[bool, Any]:
        try:
            return True, self.json()
        except DecodeError:
            return False, None

    def save_to_file(self, path: str | Path) -> Path:
        if self.data is None:
            raise ValueError("No data to save")
        target = Path(path)
        target.write_bytes(self.data)
        return target

    def __str__(self) -> str:
        lines = [
            "ResponseEnvelope:",
            f"  Status: {self.status_code} {self.status_message}",
            f"  Success: {self.is_success}",
            f"  ContentLength: {self.content_length} bytes",
            f"  ContentType: {self.content_type or 'N/A'}",
            f"  ResponseTime: {self.elapsed_ms}ms",
        ]
        if self.error:
            lines.append(f"  Error: {self.error}")
        if self.is_canceled:
            lines.append(f"  Canceled: {self.cancel_kind.value if self.cancel_kind else 'true'}")
        if self.is_cached:
            lines.append("  Cached: true")
        return "\n".join(lines)
