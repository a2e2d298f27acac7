"""
Resilient HTTP client implementation.

This module contains the ``ResilientClient`` orchestrator: one execution
pipeline (interceptors, circuit breaker, retries, pooled connections) shared
by the blocking, task-based and ``async`` entry points.
"""

import asyncio
import os
import tempfile
import time
import uuid
from collections.abc import AsyncGenerator, Awaitable
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional, Union

from tenacity import RetryError

from .cache import ResponseCache
from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from .config import ClientConfig
from .exceptions import (
    DownloadError,
    HttpStatusError,
    MochaClientError,
    RetryExhaustedError,
    TransportError,
)
from .executor import AsyncExecutor, TaskHandle, TaskState
from .interceptors import InterceptorChain
from .logging_config import configure_logging, get_logger
from .models import FilePart, Request, Response, Route, Timeouts
from .pool import ConnectionPool, PoolEntry
from .retry_policies import RetryPolicy, SleepFunc
from .streaming import StreamingResponse
from .transport import Connector, HttpxConnector
from .urls import resolve_url

REQUEST_ID_HEADER = "X-Request-ID"

AttemptFunc = Callable[[Request, Route, CircuitBreaker, int], Awaitable[Any]]


class ResilientClient:
    """
    An HTTP client executing every request through one resilient pipeline.

    Pipeline per request:

    1. Stamp ``X-Request-ID`` (kept identical across retries)
    2. Request interceptors, in registration order
    3. Resolve against ``base_url`` and validate the URL
    4. Response cache lookup (when enabled)
    5. Retry loop: breaker admission → lease connection → send → release
       (healthy iff no transport error) → record outcome with the breaker →
       stop, or wait ``delay_for(attempt)``
    6. Response interceptors (success path)
    7. Cache store, return

    Entry points:

    - ``execute(request)``: blocking, returns the Response
    - ``submit(request)``: returns a cancellable ``TaskHandle`` immediately
    - ``await send(request)`` and ``await get/post/...``: for asyncio callers
    - ``download(request, path)`` / ``await adownload(...)``: stream the body
      to a file
    - ``async with stream(request)`` / ``with open_stream(request)``: read the
      body incrementally

    All of them run the pipeline as a task on the client's executor loop.
    Streamed calls skip the response cache and the response interceptors; a
    non-2xx outcome raises ``HttpStatusError``.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        connector: Optional[Connector] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self.config = config or ClientConfig()
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._closed = False

        configure_logging(self.config.logging)
        self.logger = get_logger(self.config.logging.logger_name)

        self._chain = InterceptorChain(
            self.config.request_interceptors, self.config.response_interceptors
        )
        self._retry_policy = RetryPolicy(self.config.retry)
        self._breakers = CircuitBreakerRegistry(self.config.circuit_breaker, clock=self._clock)
        self._pool = ConnectionPool(
            self.config.pool,
            connector or HttpxConnector.from_config(self.config),
            clock=self._clock,
        )
        self._cache = ResponseCache(self.config.cache) if self.config.cache.enabled else None
        self._executor = AsyncExecutor(self.config.bulkhead)

        self.logger.info(
            "ResilientClient initialized",
            base_url=self.config.base_url,
            max_attempts=self.config.retry.max_attempts,
            failure_threshold=self.config.circuit_breaker.failure_threshold,
        )

    def __enter__(self) -> "ResilientClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    async def __aenter__(self) -> "ResilientClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close pooled connections and stop the executor."""
        if self._closed:
            return
        self._closed = True
        if self._executor.running:
            self._executor.run(self._pool.close)
        self._executor.shutdown()
        self.logger.info("ResilientClient closed")

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._executor.running:
            await self._executor.run_async(self._pool.close)
        await asyncio.to_thread(self._executor.shutdown)
        self.logger.info("ResilientClient closed")

    def build_request(
        self,
        method: str,
        url: str,
        *,
        headers: Any = None,
        params: Any = None,
        body: Optional[Union[str, bytes]] = None,
        json: Any = None,
        form: Any = None,
        files: Optional[list[FilePart]] = None,
        timeouts: Optional[Timeouts] = None,
        request_id: Optional[str] = None,
    ) -> Request:
        request = Request(
            method,
            url,
            headers=headers,
            params=params,
            body=body,
            json=json,
            form=form,
            files=tuple(files or ()),
            timeouts=timeouts or Timeouts(),
        )
        if request_id is not None:
            request = request.with_header(REQUEST_ID_HEADER, request_id)
        return request

    def submit(self, request: Request) -> TaskHandle[Response]:
        """Schedule ``request`` on the executor and return its handle."""
        return self._submit(lambda: self._execute(request), request)

    def execute(self, request: Request, timeout: Optional[float] = None) -> Response:
        """
        Execute ``request`` and block until it completes.

        Raises:
            MochaClientError: any terminal pipeline failure
            RuntimeError: called from the client's own executor thread
        """
        self._check_blocking_call("execute()", "await send()")
        return self._block(self.submit(request), timeout)

    def download(
        self,
        request: Request,
        destination: Union[str, Path],
        timeout: Optional[float] = None,
    ) -> Path:
        """
        Stream the body of ``request`` into ``destination`` and block until done.

        Parent directories are created. The file only appears once the body
        has been received completely.

        Raises:
            HttpStatusError: the final response was not 2xx
            DownloadError: the file could not be written
            MochaClientError: any other terminal pipeline failure
        """
        self._check_blocking_call("download()", "await adownload()")
        target = Path(destination)
        return self._block(self._submit(lambda: self._download(request, target), request), timeout)

    async def adownload(self, request: Request, destination: Union[str, Path]) -> Path:
        target = Path(destination)
        return await self._submit(lambda: self._download(request, target), request)

    @asynccontextmanager
    async def stream(self, request: Request) -> AsyncGenerator[StreamingResponse, None]:
        """
        Open ``request`` as a stream::

            async with client.stream(request) as response:
                async for chunk in response.aiter_bytes():
                    ...
        """
        handle = self._submit(lambda: self._open_stream(request), request)
        try:
            response = await handle
        except BaseException:
            handle.add_done_callback(_discard_unclaimed_stream)
            raise
        async with response:
            yield response

    def open_stream(self, request: Request, timeout: Optional[float] = None) -> StreamingResponse:
        """Blocking counterpart of ``stream()``. Close the result, ideally with ``with``."""
        self._check_blocking_call("open_stream()", "stream()")
        handle = self._submit(lambda: self._open_stream(request), request)
        try:
            return self._block(handle, timeout)
        except BaseException:
            handle.add_done_callback(_discard_unclaimed_stream)
            raise

    async def send(self, request: Request) -> Response:
        """Execute ``request`` without blocking the caller's event loop."""
        return await self.submit(request)

    async def request(
        self, method: str, url: str, request_id: Optional[str] = None, **kwargs: Any
    ) -> Response:
        return await self.send(self.build_request(method, url, request_id=request_id, **kwargs))

    async def get(self, url: str, request_id: Optional[str] = None, **kwargs: Any) -> Response:
        return await self.request("GET", url, request_id=request_id, **kwargs)

    async def post(self, url: str, request_id: Optional[str] = None, **kwargs: Any) -> Response:
        return await self.request("POST", url, request_id=request_id, **kwargs)

    async def put(self, url: str, request_id: Optional[str] = None, **kwargs: Any) -> Response:
        return await self.request("PUT", url, request_id=request_id, **kwargs)

    async def patch(self, url: str, request_id: Optional[str] = None, **kwargs: Any) -> Response:
        return await self.request("PATCH", url, request_id=request_id, **kwargs)

    async def delete(self, url: str, request_id: Optional[str] = None, **kwargs: Any) -> Response:
        return await self.request("DELETE", url, request_id=request_id, **kwargs)

    def circuit_state(self, target: Union[str, Route]) -> CircuitState:
        route = target if isinstance(target, Route) else Route.from_url(self._resolve(target))
        return self._breakers.state(route)

    def pool_stats(self) -> dict:
        return self._pool.stats()

    def _submit(self, factory: Callable[[], Awaitable[Any]], request: Request) -> TaskHandle:
        if self._closed:
            raise RuntimeError("Client is closed")
        return self._executor.submit(factory, name=f"{request.method} {request.url}")

    def _block(self, handle: TaskHandle, timeout: Optional[float]) -> Any:
        try:
            return handle.result(timeout)
        except TimeoutError:
            handle.cancel()
            raise

    def _check_blocking_call(self, name: str, alternative: str) -> None:
        if self._executor.in_executor_thread():
            raise RuntimeError(
                f"{name} would deadlock on the client's executor thread; use {alternative}"
            )

    def _resolve(self, url: str) -> str:
        return resolve_url(url, self.config.base_url, allow_localhost=self.config.allow_localhost)

    def _stamp_request_id(self, request: Request) -> Request:
        if not self.config.logging.include_request_id or REQUEST_ID_HEADER in request.headers:
            return request
        request_id = str(uuid.uuid4())
        self.logger.debug(
            "Generated new idempotency key", request_id=request_id, method=request.method
        )
        return request.with_header(REQUEST_ID_HEADER, request_id)

    async def _prepare(self, request: Request) -> Request:
        request = self._stamp_request_id(request)
        request = await self._chain.apply_request(request)
        return request.with_url(self._resolve(request.url))

    async def _execute(self, request: Request) -> Response:
        """The request execution pipeline. Runs on the executor loop."""
        request = await self._prepare(request)

        if self._cache is not None:
            cached = await self._cache.get(request)
            if cached is not None:
                return await self._chain.apply_response(cached)

        route = request.route
        breaker = self._breakers.get(route)

        try:
            response = await self._execute_with_retries(request, route, breaker)
        except RetryExhaustedError as e:
            if self.config.run_response_interceptors_on_failure and e.response is not None:
                try:
                    e.response = await self._chain.apply_response(e.response)
                except MochaClientError as step_error:
                    raise step_error from e
            raise

        if self._cache is not None:
            await self._cache.put(response)
        return await self._chain.apply_response(response)

    async def _open_stream(self, request: Request) -> StreamingResponse:
        """Streaming pipeline: request side as usual, the body stays unread."""
        request = await self._prepare(request)
        route = request.route
        outcome = await self._execute_with_retries(
            request, route, self._breakers.get(route), self._stream_attempt
        )
        if isinstance(outcome, StreamingResponse):
            return outcome
        raise HttpStatusError.from_response(outcome)

    async def _download(self, request: Request, destination: Path) -> Path:
        response = await self._open_stream(request)
        async with response:
            try:
                await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
                fd, part_name = await asyncio.to_thread(
                    tempfile.mkstemp,
                    dir=destination.parent,
                    prefix=f".{destination.name}.",
                    suffix=".part",
                )
            except OSError as e:
                raise DownloadError(
                    f"Cannot write {destination}: {e}", request=response.request
                ) from e

            size = 0
            try:
                with os.fdopen(fd, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await asyncio.to_thread(f.write, chunk)
                        size += len(chunk)
                await asyncio.to_thread(os.replace, part_name, destination)
            except OSError as e:
                Path(part_name).unlink(missing_ok=True)
                raise DownloadError(
                    f"Cannot write {destination}: {e}", request=response.request
                ) from e
            except BaseException:
                Path(part_name).unlink(missing_ok=True)
                raise

        prepared = response.request
        self.logger.info(
            "Download complete",
            destination=str(destination),
            size=size,
            request_id=prepared.headers.get(REQUEST_ID_HEADER) if prepared else None,
        )
        return destination

    async def _execute_with_retries(
        self,
        request: Request,
        route: Route,
        breaker: CircuitBreaker,
        attempt_func: Optional[AttemptFunc] = None,
    ) -> Any:
        attempt_func = attempt_func or self._attempt
        request_id = request.headers.get(REQUEST_ID_HEADER)
        retrying = self._retry_policy.create_retrying(sleep=self._sleep, request_id=request_id)
        response: Any

        try:
            async for attempt in retrying:
                with attempt:
                    response = await attempt_func(
                        request, route, breaker, attempt.retry_state.attempt_number
                    )
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(response)
        except RetryError as e:
            last = e.last_attempt
            attempts = last.attempt_number
            if last.failed:
                last_error = last.exception()
                raise RetryExhaustedError(
                    f"Request to {route} failed after {attempts} attempts: {last_error}",
                    last_error=last_error,
                    request=request,
                    route=route,
                    attempts=attempts,
                ) from last_error
            last_response = last.result()
            raise RetryExhaustedError(
                f"Request to {route} failed after {attempts} attempts: "
                f"HTTP {last_response.status_code}",
                response=last_response,
                request=request,
                route=route,
                attempts=attempts,
            ) from e

        return response

    async def _lease(
        self, request: Request, route: Route, breaker: CircuitBreaker, attempt: int
    ) -> PoolEntry:
        """Breaker admission, then a pooled connection for ``route``."""
        try:
            await breaker.acquire()
        except MochaClientError as e:
            e.attempts = attempt - 1
            e.request = request
            raise

        try:
            return await self._pool.acquire(route)
        except TransportError as e:
            await breaker.record_failure()
            e.attempts = attempt
            raise
        except BaseException:
            await breaker.release()
            raise

    async def _attempt(
        self, request: Request, route: Route, breaker: CircuitBreaker, attempt: int
    ) -> Response:
        """One transport attempt: admission, lease, send, release, record."""
        entry = await self._lease(request, route, breaker, attempt)

        healthy = False
        try:
            response = await entry.connection.send(request)
            healthy = True
        except TransportError as e:
            await breaker.record_failure()
            e.attempts = attempt
            self.logger.debug(
                "Attempt failed",
                request_id=request.headers.get(REQUEST_ID_HEADER),
                route=str(route),
                attempt=attempt,
                error=str(e),
            )
            raise
        except BaseException:
            await breaker.release()
            raise
        finally:
            await self._pool.release(entry, healthy=healthy)

        await breaker.record_response(response)
        return response

    async def _stream_attempt(
        self, request: Request, route: Route, breaker: CircuitBreaker, attempt: int
    ) -> Union[Response, StreamingResponse]:
        """
        One streamed attempt. A 2xx keeps its connection leased inside the
        returned ``StreamingResponse``; any other status is read in full and
        returned as a plain ``Response`` for the retry policy to judge.
        """
        entry = await self._lease(request, route, breaker, attempt)

        try:
            head, body = await entry.connection.open_stream(request)
        except TransportError as e:
            await breaker.record_failure()
            await self._pool.release(entry, healthy=False)
            e.attempts = attempt
            raise
        except BaseException:
            await breaker.release()
            await self._pool.release(entry, healthy=False)
            raise

        await breaker.record_response(head)
        if head.is_success:
            return StreamingResponse(
                head,
                body,
                release=lambda healthy: self._pool.release(entry, healthy=healthy),
                executor=self._executor,
            )

        healthy = False
        try:
            content = await body.aread()
            healthy = True
        except TransportError as e:
            e.attempts = attempt
            raise
        finally:
            await body.aclose()
            await self._pool.release(entry, healthy=healthy)
        return replace(head, content=content)


def _discard_unclaimed_stream(handle: TaskHandle) -> None:
    """Close a stream that finished opening after its caller stopped waiting."""
    if handle.state is TaskState.SUCCEEDED:
        handle.result().discard()


@asynccontextmanager
async def create_resilient_client(
    config: Optional[ClientConfig] = None, **kwargs: Any
) -> AsyncGenerator[ResilientClient, None]:
    """
    Async context manager for creating and managing a resilient client.

    Args:
        config: Client configuration
        **kwargs: Passed to ``ResilientClient`` (connector, clock, sleep)

    Yields:
        Configured ResilientClient instance
    """
    client = ResilientClient(config, **kwargs)
    try:
        yield client
    finally:
        await client.aclose()
