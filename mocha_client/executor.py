"""
Async executor: runs request pipelines as independent asyncio tasks on a
dedicated event-loop thread and hands callers a cancellable ``TaskHandle``.

All pipelines of a client share the executor's loop, so pooled httpx
connections and the asyncio locks guarding breaker and pool state are only
ever touched from that one loop, whichever thread or loop the caller is on.
"""

import asyncio
import concurrent.futures
import threading
from collections.abc import Awaitable, Generator
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

from .config import BulkheadConfig
from .exceptions import CancellationError, ExecutorSaturatedError
from .logging_config import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class TaskState(Enum):
    """Completion state of a submitted pipeline."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskHandle(Generic[T]):
    """
    Future-like handle for a pipeline running on the executor.

    Usable from any thread (``result()``, ``cancel()``, callbacks) and from any
    event loop (``await handle``). A cancelled handle always resolves to
    ``CancellationError``, never to a late result.
    """

    def __init__(self, future: "concurrent.futures.Future[T]", name: Optional[str] = None):
        self._future = future
        self.name = name

    @property
    def state(self) -> TaskState:
        if not self._future.done():
            return TaskState.PENDING
        if self._future.cancelled():
            return TaskState.CANCELLED
        if self._future.exception() is not None:
            return TaskState.FAILED
        return TaskState.SUCCEEDED

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def cancel(self) -> bool:
        """
        Cancel the pipeline. A task that has not started never starts; a
        running task receives ``asyncio.CancelledError`` at its current await,
        aborting any in-flight transport operation.
        """
        return self._future.cancel()

    def result(self, timeout: Optional[float] = None) -> T:
        """
        Block until the pipeline finishes and return its result.

        Raises:
            CancellationError: the handle was cancelled
            TimeoutError: ``timeout`` elapsed first (the task keeps running)
            MochaClientError: the pipeline failed
        """
        try:
            return self._future.result(timeout)
        except concurrent.futures.CancelledError:
            raise CancellationError(self._cancel_message()) from None
        except concurrent.futures.TimeoutError:
            raise TimeoutError(f"Task {self.name or ''} did not finish within {timeout}s") from None

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        try:
            return self._future.exception(timeout)
        except concurrent.futures.CancelledError:
            return CancellationError(self._cancel_message())
        except concurrent.futures.TimeoutError:
            raise TimeoutError(f"Task {self.name or ''} did not finish within {timeout}s") from None

    def add_done_callback(self, fn: Callable[["TaskHandle[T]"], Any]) -> None:
        """Call ``fn(handle)`` on completion; immediately if already done."""
        self._future.add_done_callback(lambda _: fn(self))

    async def _wait(self) -> T:
        try:
            return await asyncio.wrap_future(self._future)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise CancellationError(self._cancel_message()) from None

    def __await__(self) -> Generator[Any, None, T]:
        return self._wait().__await__()

    def _cancel_message(self) -> str:
        return f"Task {self.name} was cancelled" if self.name else "Task was cancelled"

    def __repr__(self) -> str:
        return f"<TaskHandle {self.name or ''} state={self.state.value}>"


class AsyncExecutor:
    """
    Event-loop thread running submitted coroutines as independent tasks.

    Concurrency is bounded by a bulkhead semaphore: a task waits up to
    ``acquisition_timeout`` for a slot, then fails with
    ``ExecutorSaturatedError``. Unrelated tasks never wait on each other
    otherwise.
    """

    def __init__(self, config: Optional[BulkheadConfig] = None, name: str = "mocha-executor"):
        self.config = config or BulkheadConfig()
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        self.start()
        if self._loop is None:
            raise RuntimeError(f"Executor {self.name} has no event loop")
        return self._loop

    def start(self) -> None:
        """Start the loop thread if it is not running yet."""
        with self._lock:
            if self._stopped:
                raise RuntimeError(f"Executor {self.name} has been shut down")
            if self._thread is not None:
                return

            loop = asyncio.new_event_loop()
            ready = threading.Event()
            thread = threading.Thread(
                target=self._run_loop, args=(loop, ready), name=self.name, daemon=True
            )
            thread.start()
            ready.wait()
            self._loop = loop
            self._thread = thread
            logger.debug("Executor started", executor=self.name)

    def _run_loop(self, loop: asyncio.AbstractEventLoop, ready: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(ready.set)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def in_executor_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    async def _acquire_slot(self, name: Optional[str]) -> None:
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(), timeout=self.config.acquisition_timeout
            )
        except asyncio.TimeoutError as e:
            raise ExecutorSaturatedError(
                f"Failed to acquire an executor slot within "
                f"{self.config.acquisition_timeout}s - client is saturated"
            ) from e
        logger.debug("Task acquired executor slot", task=name)

    async def _guarded(self, factory: Callable[[], Awaitable[T]], name: Optional[str]) -> T:
        await self._acquire_slot(name)
        try:
            return await factory()
        finally:
            self._semaphore.release()

    def submit(
        self, factory: Callable[[], Awaitable[T]], name: Optional[str] = None
    ) -> TaskHandle[T]:
        """
        Schedule ``factory()`` as a new task and return its handle.

        ``factory`` is only called once the task starts, so a handle cancelled
        before that point never runs any of the pipeline.
        """
        future = asyncio.run_coroutine_threadsafe(self._guarded(factory, name), self.loop)
        return TaskHandle(future, name=name)

    def run(self, factory: Callable[[], Awaitable[T]], timeout: Optional[float] = None) -> T:
        """Run an administrative coroutine on the loop, bypassing the bulkhead."""
        if self.in_executor_thread():
            raise RuntimeError("run() would deadlock when called from the executor thread")
        future = asyncio.run_coroutine_threadsafe(factory(), self.loop)
        return future.result(timeout)

    async def run_async(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self.in_executor_thread():
            return await factory()
        return await asyncio.wrap_future(
            asyncio.run_coroutine_threadsafe(factory(), self.loop)
        )

    def shutdown(self, wait: bool = True, timeout: Optional[float] = 5.0) -> None:
        """Cancel remaining tasks and stop the loop thread."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            loop, thread = self._loop, self._thread

        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if wait and not self.in_executor_thread():
            thread.join(timeout)
        logger.debug("Executor stopped", executor=self.name)
