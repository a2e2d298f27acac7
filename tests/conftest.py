"""Shared fixtures and fakes for the mocha client tests."""

import dataclasses
import inspect
from collections.abc import AsyncIterator
from typing import Any, Callable, Optional

import httpx
import pytest

from mocha_client.models import Request, Response, Route
from mocha_client.transport import BodyStream, Connection, Connector, HttpxConnector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeBodyStream(BodyStream):
    """Serves ``content`` in fixed-size chunks."""

    def __init__(self, content: bytes, chunk_size: int = 4):
        self.content = content
        self.chunk_size = chunk_size
        self.closed = False

    async def aiter_bytes(self, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        size = chunk_size or self.chunk_size
        for start in range(0, len(self.content), size):
            yield self.content[start : start + size]

    async def aclose(self) -> None:
        self.closed = True


class FakeConnection(Connection):
    def __init__(self, route: Route, handler: Callable[[Request], Any]):
        super().__init__(route)
        self.handler = handler
        self.sent: list[Request] = []
        self.streams: list[FakeBodyStream] = []

    async def send(self, request: Request) -> Response:
        self.sent.append(request)
        result = self.handler(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def open_stream(self, request: Request) -> tuple[Response, BodyStream]:
        response = await self.send(request)
        body = FakeBodyStream(response.content)
        self.streams.append(body)
        return dataclasses.replace(response, content=b""), body

    async def aclose(self) -> None:
        self.closed = True


class FakeConnector(Connector):
    """Connector handing out ``FakeConnection``s driven by ``handler``."""

    def __init__(self, handler: Optional[Callable[[Request], Any]] = None):
        self.handler = handler or (lambda request: Response(200, request=request))
        self.connections: list[FakeConnection] = []
        self.connect_error: Optional[BaseException] = None

    async def connect(self, route: Route) -> Connection:
        if self.connect_error is not None:
            raise self.connect_error
        connection = FakeConnection(route, self.handler)
        self.connections.append(connection)
        return connection


def mock_connector(handler: Callable[[httpx.Request], Any], **kwargs: Any) -> HttpxConnector:
    """Real httpx connections whose transport is ``httpx.MockTransport(handler)``."""
    return HttpxConnector(transport_factory=lambda route: httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def route():
    return Route("https", "api.example.com", 443)
