"""Typed responses returned by the client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, Mapping, TypeVar

from .exceptions import CancelKind

if TYPE_CHECKING:
    from PIL import Image

T = TypeVar("T")


@dataclass(frozen=True)
class ClientResponse:
    """Common fields of every typed response. Built by the mapper, never mutated."""

    is_success: bool
    status_code: int = 0
    status_message: str = "Unknown"
    headers: Mapping[str, str] = field(default_factory=dict)
    raw_text: str | None = None
    data: bytes | None = field(default=None, repr=False)
    error_message: str | None = None
    is_cached: bool = False
    is_canceled: bool = False
    cancel_kind: CancelKind | None = None
    elapsed_ms: int = 0

    def get_header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


@dataclass(frozen=True)
class TextResponse(ClientResponse):
    text_data: str | None = None


@dataclass(frozen=True)
class BytesResponse(ClientResponse):
    pass


@dataclass(frozen=True)
class ImageResponse(ClientResponse):
    image: Image.Image | None = field(default=None, repr=False)

    @property
    def size(self) -> tuple[int, int] | None:
        return self.image.size if self.image is not None else None

    @property
    def format(self) -> str | None:
        return self.image.format if self.image is not None else None


@dataclass(frozen=True)
class JsonResponse(ClientResponse, Generic[T]):
    parsed_data: T | None = None


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    is_success: bool
    data: T | None = None
    error: Exception | None = None

    @property
    def error_message(self) -> str | None:
        if self.error is None:
            return None
        return str(self.error.args[0]) if self.error.args else str(self.error)

    @property
    def status_code(self) -> int:
        return int(getattr(self.error, "status_code", 0) or 0)

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        return cls(True, data, None)

    @classmethod
    def fail(cls, error: Exception | str) -> ServiceResult[T]:
        if isinstance(error, str):
            error = Exception(error)
        return cls(False, None, error)
