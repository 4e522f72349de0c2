"""Request header values, the header builder, and the tiered header set."""

from __future__ import annotations

import base64
import threading
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, NamedTuple

JSON_CONTENT_TYPE = "application/json; charset=UTF-8"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

CACHE_BUSTING_HEADERS = (
    ("Cache-Control", "no-cache, no-store, must-revalidate"),
    ("Pragma", "no-cache"),
    ("Expires", "0"),
)


class Header(NamedTuple):
    name: str
    value: str

    @classmethod
    def defaults(cls) -> list[Header]:
        return [
            cls("Accept-Language", "en-US,en;q=0.9"),
            cls("User-Agent", "resilient-http/0.1.0"),
        ]

    @classmethod
    def text_content(cls) -> Header:
        return cls("Content-Type", "text/plain")

    @classmethod
    def json_content(cls) -> Header:
        return cls("Content-Type", JSON_CONTENT_TYPE)

    @classmethod
    def binary_content(cls) -> Header:
        return cls("Content-Type", "application/octet-stream")

    @classmethod
    def form_content(cls) -> Header:
        return cls("Content-Type", FORM_CONTENT_TYPE)

    @classmethod
    def accept_pdf(cls) -> Header:
        return cls("Accept", "application/pdf")

    @classmethod
    def accept_word(cls) -> Header:
        return cls(
            "Accept",
            "application/msword,application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        )

    @classmethod
    def accept_zip(cls) -> Header:
        return cls("Accept", "application/zip")

    @classmethod
    def bearer_auth(cls, token: str) -> Header:
        return cls("Authorization", f"Bearer {token}")

    @classmethod
    def basic_auth(cls, username: str, password: str) -> Header:
        credentials = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        return cls("Authorization", f"Basic {credentials}")

    @classmethod
    def disable_cache(cls) -> list[Header]:
        return [cls(name, value) for name, value in CACHE_BUSTING_HEADERS]


HeadersInput = Mapping[str, str] | Iterable[Header] | Iterable[tuple[str, str]]


def iter_headers(headers: HeadersInput | None) -> Iterator[tuple[str, str]]:
    if headers is None:
        return
    items = headers.items() if isinstance(headers, (Mapping, HeaderSet)) else headers
    for name, value in items:
        yield str(name), str(value)


def has_header(headers: HeadersInput | None, name: str) -> bool:
    wanted = name.lower()
    return any(key.lower() == wanted for key, _ in iter_headers(headers))


class HeaderBuilder:
    """Fluent builder for a list of request headers."""

    def __init__(self) -> None:
        self._headers: list[Header] = []

    @classmethod
    def create(cls) -> HeaderBuilder:
        return cls()

    @classmethod
    def create_with_defaults(cls) -> HeaderBuilder:
        return cls().with_defaults()

    def with_defaults(self) -> HeaderBuilder:
        self._headers.extend(Header.defaults())
        return self

    def with_header(self, name: str | Header, value: str | None = None) -> HeaderBuilder:
        if isinstance(name, Header):
            self._headers.append(name)
        else:
            self._headers.append(Header(name, "" if value is None else value))
        return self

    def with_headers(self, headers: HeadersInput) -> HeaderBuilder:
        self._headers.extend(Header(name, value) for name, value in iter_headers(headers))
        return self

    def as_json(self) -> HeaderBuilder:
        return self.with_header(Header.json_content())

    def as_text(self) -> HeaderBuilder:
        return self.with_header(Header.text_content())

    def as_binary(self) -> HeaderBuilder:
        return self.with_header(Header.binary_content())

    def with_bearer_token(self, token: str) -> HeaderBuilder:
        return self.with_header(Header.bearer_auth(token))

    def with_basic_auth(self, username: str, password: str) -> HeaderBuilder:
        return self.with_header(Header.basic_auth(username, password))

    def with_caching_disabled(self) -> HeaderBuilder:
        self._headers.extend(Header.disable_cache())
        return self

    def build(self) -> list[Header]:
        return list(self._headers)

    def build_dict(self) -> dict[str, str]:
        return {header.name: header.value for header in self._headers}


class HeaderSet:
    """Ordered headers with case-insensitive names; a later `set` overrides an earlier one."""

    def __init__(self, headers: HeadersInput | None = None) -> None:
        self._items: dict[str, tuple[str, str]] = {}
        self._frozen = False
        self.update(headers)

    @classmethod
    def resolve(
        cls,
        *,
        global_headers: HeadersInput | None = None,
        option_headers: HeadersInput | None = None,
        user_agent: str | None = None,
        call_headers: HeadersInput | None = None,
        explicit: HeadersInput | None = None,
    ) -> HeaderSet:
        resolved = cls(global_headers)
        if user_agent and user_agent.strip():
            resolved.set("User-Agent", user_agent)
        resolved.update(option_headers)
        resolved.update(call_headers)
        resolved.update(explicit)
        return resolved.freeze()

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("HeaderSet is frozen once the request is built")

    def set(self, name: str, value: str) -> HeaderSet:
        if not name:
            raise ValueError("Header name cannot be empty")
        self._check_mutable()
        key = name.lower()
        self._items.pop(key, None)
        self._items[key] = (name, value)
        return self

    def setdefault(self, name: str, value: str) -> HeaderSet:
        if name.lower() not in self._items:
            self.set(name, value)
        return self

    def update(self, headers: HeadersInput | None) -> HeaderSet:
        for name, value in iter_headers(headers):
            self.set(name, value)
        return self

    def remove(self, name: str) -> HeaderSet:
        self._check_mutable()
        self._items.pop(name.lower(), None)
        return self

    def get(self, name: str, default: str | None = None) -> str | None:
        item = self._items.get(name.lower())
        return item[1] if item is not None else default

    def freeze(self) -> HeaderSet:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def items(self) -> list[tuple[str, str]]:
        return list(self._items.values())

    def to_dict(self) -> dict[str, str]:
        return dict(self._items.values())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"HeaderSet({self.to_dict()!r})"


class HeaderRegistry:
    """Client-wide headers added to every call; safe for concurrent writers (last write wins)."""

    def __init__(self, headers: HeadersInput | None = None) -> None:
        self._lock = threading.Lock()
        self._headers: dict[str, tuple[str, str]] = {}
        for name, value in iter_headers(headers):
            self.set(name, value)

    def set(self, name: str, value: str) -> None:
        if not name:
            raise ValueError("Header name cannot be empty")
        with self._lock:
            self._headers[name.lower()] = (name, value)

    def remove(self, name: str) -> None:
        with self._lock:
            self._headers.pop(name.lower(), None)

    def clear(self) -> None:
        with self._lock:
            self._headers.clear()

    def snapshot(self) -> Mapping[str, str]:
        with self._lock:
            return MappingProxyType(dict(self._headers.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._headers)
