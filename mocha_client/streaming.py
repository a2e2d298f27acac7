"""
Streamed response bodies.

A ``StreamingResponse`` keeps its pooled connection leased until the body has
been read to the end or the stream is closed. Every read runs on the client's
executor loop, where the connection lives, so the stream can be consumed from
any thread or event loop.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Iterator
from datetime import timedelta
from typing import Any, Callable, Optional

from .executor import AsyncExecutor
from .logging_config import get_logger
from .models import Headers, Request, Response
from .transport import BodyStream

logger = get_logger(__name__)

ReleaseFunc = Callable[[bool], Awaitable[None]]


class StreamingResponse:
    """
    A successful response whose body has not been read yet.

    Use it as a context manager (``with`` or ``async with``) so the
    connection goes back to the pool even when reading stops early. A body
    read to the end returns its connection for reuse; a stream closed early
    or broken by a transport error discards it.
    """

    def __init__(
        self,
        head: Response,
        body: BodyStream,
        release: ReleaseFunc,
        executor: AsyncExecutor,
    ):
        self._head = head
        self._body = body
        self._release = release
        self._executor = executor
        self._chunks: Optional[AsyncIterator[bytes]] = None
        self._finished = False

    @property
    def status_code(self) -> int:
        return self._head.status_code

    @property
    def headers(self) -> Headers:
        return self._head.headers

    @property
    def request(self) -> Optional[Request]:
        return self._head.request

    @property
    def elapsed(self) -> timedelta:
        return self._head.elapsed

    @property
    def closed(self) -> bool:
        return self._finished

    async def aiter_bytes(self, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._executor.run_async(lambda: self._next_chunk(chunk_size))
            if chunk is None:
                return
            yield chunk

    def iter_bytes(self, chunk_size: Optional[int] = None) -> Iterator[bytes]:
        while True:
            chunk = self._executor.run(lambda: self._next_chunk(chunk_size))
            if chunk is None:
                return
            yield chunk

    async def aread(self) -> bytes:
        return b"".join([chunk async for chunk in self.aiter_bytes()])

    def read(self) -> bytes:
        return b"".join(self.iter_bytes())

    async def aclose(self) -> None:
        await self._executor.run_async(lambda: self._finish(healthy=False))

    def close(self) -> None:
        self._executor.run(lambda: self._finish(healthy=False))

    def discard(self) -> None:
        """Schedule closing without waiting; safe from any thread."""
        asyncio.run_coroutine_threadsafe(self._finish(healthy=False), self._executor.loop)

    async def __aenter__(self) -> "StreamingResponse":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def __enter__(self) -> "StreamingResponse":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    async def _next_chunk(self, chunk_size: Optional[int]) -> Optional[bytes]:
        if self._finished:
            return None
        if self._chunks is None:
            self._chunks = self._body.aiter_bytes(chunk_size).__aiter__()
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            await self._finish(healthy=True)
            return None
        except BaseException:
            await self._finish(healthy=False)
            raise

    async def _finish(self, healthy: bool) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            await self._body.aclose()
        finally:
            await self._release(healthy)
        logger.debug(
            "Stream closed",
            status_code=self.status_code,
            request_id=self.request.headers.get("X-Request-ID") if self.request else None,
            drained=healthy,
        )

    def __repr__(self) -> str:
        return f"<StreamingResponse [{self.status_code}]>"
