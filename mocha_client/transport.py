"""
httpx-backed transport connections.

A ``Connection`` is the unit the pool leases out: one keep-alive channel to
one route. ``HttpxConnection`` wraps an ``httpx.AsyncClient`` limited to a
single socket, so reusing the pooled entry reuses the underlying TCP/TLS
connection.
"""

import itertools
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Any, Callable, Optional

import httpx

from .config import ClientConfig, TimeoutConfig
from .exceptions import MochaClientError, TransportError, TransportTimeoutError
from .logging_config import get_logger
from .models import Headers, Request, Response, Route

logger = get_logger(__name__)

TransportFactory = Callable[[Route], httpx.AsyncBaseTransport]

_connection_ids = itertools.count(1)


def map_httpx_exception(
    exc: Exception, request: Optional[Request] = None, route: Optional[Route] = None
) -> MochaClientError:
    """
    Map httpx exceptions to our exception hierarchy.

    Args:
        exc: The original httpx exception
        request: The request being sent
        route: The route of the connection

    Returns:
        Mapped exception from our hierarchy
    """
    if isinstance(exc, httpx.TimeoutException):
        return TransportTimeoutError(
            f"{type(exc).__name__}: request timed out", request=request, route=route
        )

    if isinstance(exc, httpx.TransportError):
        return TransportError(
            f"Network error ({type(exc).__name__}): {exc}", request=request, route=route
        )

    return MochaClientError(f"HTTP client error: {exc}", request=request, route=route)


class BodyStream(ABC):
    """The unread body of a response whose headers have arrived."""

    @abstractmethod
    def aiter_bytes(self, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        """Yield the body in chunks.

        Raises:
            TransportError: the connection failed mid-body
        """

    @abstractmethod
    async def aclose(self) -> None:
        """Stop reading and free the underlying stream."""

    async def aread(self) -> bytes:
        return b"".join([chunk async for chunk in self.aiter_bytes()])


class Connection(ABC):
    """A reusable channel to a single route."""

    def __init__(self, route: Route):
        self.route = route
        self.id = next(_connection_ids)
        self.closed = False

    @abstractmethod
    async def send(self, request: Request) -> Response:
        """Send ``request`` and read the full response.

        Raises:
            TransportError: connect/read/write failure or phase timeout
        """

    @abstractmethod
    async def open_stream(self, request: Request) -> tuple[Response, BodyStream]:
        """Send ``request`` and return once the response headers arrive.

        The returned ``Response`` has no content; the body is read from the
        ``BodyStream``, which must be closed before the connection is reused.
        """

    @abstractmethod
    async def aclose(self) -> None:
        """Close the channel."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} #{self.id} {self.route}>"


class Connector(ABC):
    """Opens new connections for the pool."""

    @abstractmethod
    async def connect(self, route: Route) -> Connection:
        """Open a connection to ``route``."""


class HttpxBodyStream(BodyStream):
    def __init__(self, raw: httpx.Response, request: Request, route: Route):
        self._raw = raw
        self._request = request
        self._route = route

    async def aiter_bytes(self, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._raw.aiter_bytes(chunk_size):
                yield chunk
        except httpx.HTTPError as e:
            raise map_httpx_exception(e, request=self._request, route=self._route) from e

    async def aclose(self) -> None:
        await self._raw.aclose()


class HttpxConnection(Connection):
    def __init__(self, route: Route, client: httpx.AsyncClient, timeout: TimeoutConfig):
        super().__init__(route)
        self._client = client
        self._timeout = timeout

    def _build(self, request: Request) -> httpx.Request:
        if self.closed:
            raise TransportError(f"Connection {self.id} is closed", request=request)

        data: Optional[dict[str, list[str]]] = None
        if request.form:
            data = {}
            for name, value in request.form:
                data.setdefault(name, []).append(value)

        timeouts = request.timeouts
        return self._client.build_request(
            request.method,
            request.url,
            params=list(request.params) or None,
            headers=request.headers.multi_items(),
            content=request.content,
            json=request.json,
            data=data,
            files=[part.to_httpx() for part in request.files] or None,
            timeout=self._timeout.to_httpx_timeout(
                connect=timeouts.connect, read=timeouts.read, write=timeouts.write
            ),
        )

    async def send(self, request: Request) -> Response:
        raw_request = self._build(request)
        started = time.perf_counter()
        try:
            raw = await self._client.send(raw_request)
        except httpx.HTTPError as e:
            raise map_httpx_exception(e, request=request, route=self.route) from e

        elapsed = timedelta(seconds=time.perf_counter() - started)
        return Response.from_httpx(raw, request, elapsed=elapsed)

    async def open_stream(self, request: Request) -> tuple[Response, BodyStream]:
        raw_request = self._build(request)
        started = time.perf_counter()
        try:
            raw = await self._client.send(raw_request, stream=True)
        except httpx.HTTPError as e:
            raise map_httpx_exception(e, request=request, route=self.route) from e

        head = Response(
            status_code=raw.status_code,
            headers=Headers(raw.headers.multi_items()),
            elapsed=timedelta(seconds=time.perf_counter() - started),
            request=request,
        )
        return head, HttpxBodyStream(raw, request, self.route)

    async def aclose(self) -> None:
        if not self.closed:
            self.closed = True
            await self._client.aclose()


class HttpxConnector(Connector):
    """
    Opens ``HttpxConnection``s.

    Args:
        timeout: Default per-phase timeouts
        keep_alive: Keep-alive expiry handed to httpx for the socket
        follow_redirects: Whether httpx follows redirects
        verify_ssl: Whether TLS certificates are verified
        user_agent: Default User-Agent header
        transport_factory: Builds the httpx transport per route; tests pass
            ``httpx.MockTransport`` here
    """

    def __init__(
        self,
        timeout: Optional[TimeoutConfig] = None,
        keep_alive: float = 30.0,
        follow_redirects: bool = True,
        verify_ssl: bool = True,
        user_agent: Optional[str] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.timeout = timeout or TimeoutConfig()
        self.keep_alive = keep_alive
        self.follow_redirects = follow_redirects
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.transport_factory = transport_factory

    @classmethod
    def from_config(
        cls, config: ClientConfig, transport_factory: Optional[TransportFactory] = None
    ) -> "HttpxConnector":
        return cls(
            timeout=config.timeout,
            keep_alive=config.pool.keep_alive,
            follow_redirects=config.follow_redirects,
            verify_ssl=config.verify_ssl,
            user_agent=config.user_agent,
            transport_factory=transport_factory,
        )

    def _client_kwargs(self, route: Route) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "timeout": self.timeout.to_httpx_timeout(),
            "follow_redirects": self.follow_redirects,
            "headers": {"User-Agent": self.user_agent} if self.user_agent else None,
        }
        if self.transport_factory is not None:
            kwargs["transport"] = self.transport_factory(route)
        else:
            kwargs["verify"] = self.verify_ssl
            kwargs["limits"] = httpx.Limits(
                max_connections=1,
                max_keepalive_connections=1,
                keepalive_expiry=self.keep_alive,
            )
        return kwargs

    async def connect(self, route: Route) -> Connection:
        connection = HttpxConnection(
            route, httpx.AsyncClient(**self._client_kwargs(route)), self.timeout
        )
        logger.debug("Opened connection", connection_id=connection.id, route=str(route))
        return connection
