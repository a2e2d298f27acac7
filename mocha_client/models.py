"""
Immutable request/response model.

``Request`` and ``Response`` are frozen dataclasses; every transformation
(interceptors included) produces a new instance, so a request can be shared
between concurrently running pipelines without locking.
"""

import json as jsonlib
import mimetypes
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, NamedTuple, Optional, Union

import httpx

from .exceptions import InvalidURLError

HeaderTypes = Union["Headers", Mapping[str, str], Iterable[tuple[str, str]], None]
ParamTypes = Union[Mapping[str, Any], Iterable[tuple[str, Any]], None]

DEFAULT_PORTS = {"http": 80, "https": 443}


class Headers(Mapping[str, str]):
    """
    Immutable, case-insensitive multi-mapping of HTTP headers.

    Names compare case-insensitively, every value of a repeated header is
    kept in order, and the original insertion order (and casing) is preserved
    for sending. ``headers["accept"]`` joins repeated values with ``", "``.
    """

    __slots__ = ("_items",)

    def __init__(self, headers: HeaderTypes = None):
        if headers is None:
            items: tuple[tuple[str, str], ...] = ()
        elif isinstance(headers, Headers):
            items = headers._items
        elif isinstance(headers, Mapping):
            items = tuple((str(k), str(v)) for k, v in headers.items())
        else:
            items = tuple((str(k), str(v)) for k, v in headers)
        self._items = items

    def __getitem__(self, key: str) -> str:
        values = self.get_list(key)
        if not values:
            raise KeyError(key)
        return ", ".join(values)

    def __iter__(self) -> Iterator[str]:
        seen: list[str] = []
        for name, _ in self._items:
            lowered = name.lower()
            if lowered not in seen:
                seen.append(lowered)
        return iter(seen)

    def __len__(self) -> int:
        return len({name.lower() for name, _ in self._items})

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        lowered = key.lower()
        return any(name.lower() == lowered for name, _ in self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return self._normalized() == other._normalized()
        if isinstance(other, Mapping):
            return self == Headers(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._normalized())

    def __repr__(self) -> str:
        return f"Headers({list(self._items)!r})"

    def _normalized(self) -> tuple[tuple[str, str], ...]:
        return tuple((name.lower(), value) for name, value in self._items)

    def get_list(self, key: str) -> list[str]:
        """All values for ``key``, in the order they were added."""
        lowered = key.lower()
        return [value for name, value in self._items if name.lower() == lowered]

    def multi_items(self) -> list[tuple[str, str]]:
        """Every (name, value) pair with original casing, in order."""
        return list(self._items)

    def with_header(self, name: str, value: str) -> "Headers":
        """Return new headers with every value of ``name`` replaced by ``value``."""
        return Headers(self.without(name)._items + ((name, str(value)),))

    def add(self, name: str, value: str) -> "Headers":
        """Return new headers with ``value`` appended to ``name``."""
        return Headers(self._items + ((name, str(value)),))

    def without(self, name: str) -> "Headers":
        lowered = name.lower()
        return Headers(tuple(item for item in self._items if item[0].lower() != lowered))

    def merge(self, other: HeaderTypes) -> "Headers":
        """Return new headers where each name in ``other`` replaces ours."""
        merged = self
        for name, value in Headers(other)._items:
            merged = merged.with_header(name, value)
        return merged


@dataclass(frozen=True)
class Timeouts:
    """Per-phase timeouts in seconds. ``None`` falls back to the client default."""

    connect: Optional[float] = None
    read: Optional[float] = None
    write: Optional[float] = None


class Route(NamedTuple):
    """Identity used to scope pooled connections and circuit breaker state."""

    scheme: str
    host: str
    port: int

    @classmethod
    def from_url(cls, url: Union[str, httpx.URL]) -> "Route":
        parsed = url if isinstance(url, httpx.URL) else httpx.URL(url)
        scheme = parsed.scheme.lower()
        if not scheme or not parsed.host:
            raise InvalidURLError(f"Cannot derive a route from URL without scheme and host: {url}")
        port = parsed.port or DEFAULT_PORTS.get(scheme)
        if port is None:
            raise InvalidURLError(f"No default port for scheme '{scheme}' in URL: {url}")
        return cls(scheme, parsed.host.lower(), port)

    def __str__(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


def _normalize_params(params: ParamTypes) -> tuple[tuple[str, str], ...]:
    if params is None:
        return ()
    pairs = params.items() if isinstance(params, Mapping) else params
    normalized: list[tuple[str, str]] = []
    for key, value in pairs:
        if isinstance(value, (list, tuple)):
            normalized.extend((str(key), _param_value(v)) for v in value)
        else:
            normalized.append((str(key), _param_value(value)))
    return tuple(normalized)


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


@dataclass(frozen=True)
class FilePart:
    """One file field of a multipart/form-data body, held in memory so retries can resend it."""

    name: str
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(
        cls,
        name: str,
        path: Union[str, Path],
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> "FilePart":
        path = Path(path)
        if content_type is None:
            content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(name, filename or path.name, path.read_bytes(), content_type)

    def to_httpx(self) -> tuple[str, tuple[str, bytes, str]]:
        return self.name, (self.filename, self.content, self.content_type)


@dataclass(frozen=True)
class Request:
    """
    An outbound call.

    Attributes:
        method: HTTP method, upper-cased on construction
        url: Absolute URL, or a path resolved against the client's base_url
        headers: Case-insensitive, ordered header multi-mapping
        params: Query parameters as ordered (name, value) pairs
        body: Optional payload; ``str`` is sent UTF-8 encoded, ``bytes`` as-is
        json: Optional JSON payload, encoded by the transport
        form: Form fields; sent url-encoded, or as multipart parts with ``files``
        files: File parts, which make the body multipart/form-data
        timeouts: Per-phase timeout overrides
    """

    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    params: tuple[tuple[str, str], ...] = ()
    body: Optional[Union[str, bytes]] = None
    json: Any = None
    form: tuple[tuple[str, str], ...] = ()
    files: tuple[FilePart, ...] = ()
    timeouts: Timeouts = field(default_factory=Timeouts)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "url", str(self.url))
        if not isinstance(self.headers, Headers):
            object.__setattr__(self, "headers", Headers(self.headers))
        object.__setattr__(self, "params", _normalize_params(self.params))
        object.__setattr__(self, "form", _normalize_params(self.form))
        object.__setattr__(self, "files", tuple(self.files))
        payloads = [self.body is not None, self.json is not None, self.is_form]
        if sum(payloads) > 1:
            raise ValueError("A request carries one of body, json or form/files, not several")

    @property
    def is_form(self) -> bool:
        return bool(self.form or self.files)

    @property
    def is_multipart(self) -> bool:
        return bool(self.files)

    @property
    def content(self) -> Optional[bytes]:
        if self.body is None:
            return None
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    @property
    def route(self) -> Route:
        return Route.from_url(self.url)

    @property
    def full_url(self) -> str:
        """The URL with query params merged in, as it goes on the wire."""
        url = httpx.URL(self.url)
        if self.params:
            url = url.copy_merge_params(list(self.params))
        return str(url)

    def with_url(self, url: str) -> "Request":
        return replace(self, url=url)

    def with_header(self, name: str, value: str) -> "Request":
        return replace(self, headers=self.headers.with_header(name, value))

    def with_headers(self, headers: HeaderTypes) -> "Request":
        return replace(self, headers=self.headers.merge(headers))

    def without_header(self, name: str) -> "Request":
        return replace(self, headers=self.headers.without(name))

    def with_param(self, name: str, value: Any) -> "Request":
        return replace(self, params=self.params + _normalize_params([(name, value)]))

    def with_body(self, body: Optional[Union[str, bytes]]) -> "Request":
        return replace(self, body=body, json=None, form=(), files=())

    def with_json(self, payload: Any) -> "Request":
        return replace(self, body=None, json=payload, form=(), files=())

    def with_field(self, name: str, value: Any) -> "Request":
        form = self.form + _normalize_params([(name, value)])
        return replace(self, body=None, json=None, form=form)

    def with_file(self, part: FilePart) -> "Request":
        return replace(self, body=None, json=None, files=self.files + (part,))

    def with_timeouts(self, timeouts: Timeouts) -> "Request":
        return replace(self, timeouts=timeouts)


@dataclass(frozen=True)
class Response:
    """
    The outcome of a request.

    Attributes:
        status_code: HTTP status code
        headers: Response headers
        content: Raw body bytes
        elapsed: Time from send to full body receipt
        request: The Request (after interceptors) that produced this response
    """

    status_code: int
    headers: Headers = field(default_factory=Headers)
    content: bytes = b""
    elapsed: timedelta = timedelta(0)
    request: Optional[Request] = None

    def __post_init__(self) -> None:
        if not isinstance(self.headers, Headers):
            object.__setattr__(self, "headers", Headers(self.headers))
        if isinstance(self.content, str):
            object.__setattr__(self, "content", self.content.encode("utf-8"))

    @classmethod
    def from_httpx(
        cls, response: httpx.Response, request: Request, elapsed: Optional[timedelta] = None
    ) -> "Response":
        return cls(
            status_code=response.status_code,
            headers=Headers(response.headers.multi_items()),
            content=response.content,
            elapsed=elapsed if elapsed is not None else response.elapsed,
            request=request,
        )

    @property
    def encoding(self) -> str:
        content_type = self.headers.get("content-type", "")
        for param in content_type.split(";")[1:]:
            key, _, value = param.strip().partition("=")
            if key.lower() == "charset" and value:
                return value.strip("\"'")
        return "utf-8"

    @property
    def text(self) -> str:
        try:
            return self.content.decode(self.encoding, errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return jsonlib.loads(self.content)

    @property
    def reason_phrase(self) -> str:
        return httpx.codes.get_reason_phrase(self.status_code)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status_code < 400

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    def with_header(self, name: str, value: str) -> "Response":
        return replace(self, headers=self.headers.with_header(name, value))

    def with_body(self, content: Union[str, bytes]) -> "Response":
        return replace(self, content=content)

    def with_status(self, status_code: int) -> "Response":
        return replace(self, status_code=status_code)
