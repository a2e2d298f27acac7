"""
Circuit breaker implementation for the mocha HTTP client.

Tracks the health of each route (scheme, host, port) and fails calls fast
while a route is unhealthy, without spending connections on it.
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Awaitable
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from .config import CircuitBreakerConfig
from .exceptions import CircuitOpenError, HttpStatusError, TransportError
from .logging_config import get_logger
from .models import Response, Route

T = TypeVar("T")
Clock = Callable[[], float]


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker for a single route.

    **States:**

    1. **CLOSED**: calls pass. Each failure increments ``failure_count``, each
       success resets it. Reaching ``failure_threshold`` opens the circuit.
    2. **OPEN**: ``acquire()`` raises ``CircuitOpenError`` before any
       connection is taken. Once ``reset_timeout`` has elapsed since
       ``opened_at`` the next ``acquire()`` moves to HALF_OPEN.
    3. **HALF_OPEN**: up to ``half_open_max_calls`` trial calls are admitted,
       further callers are fast-failed. A trial success closes the circuit; a
       trial failure re-opens it and restarts the timer.

    ```
    CLOSED --(threshold failures)--> OPEN --(reset_timeout)--> HALF_OPEN
       ^                              ^                            |
       |                              +------(trial failure)-------+
       +-----------------------(trial success)---------------------+
    ```

    **What counts as a failure:** transport errors, and responses whose status
    is in ``failure_status_codes`` (5xx by default). Any other response is a
    success: the route answered. Client-side errors that never reached the
    route settle nothing and just give back the admission permit.

    All state changes happen under ``lock``; the guarded sections never
    await I/O.

    Attributes:
        config: Circuit breaker configuration settings
        route: Route this breaker protects (informational)
        state: Current state
        failure_count: Consecutive failures while CLOSED
        last_failure_time: Clock reading of the most recent failure
        opened_at: Clock reading of the last transition to OPEN
        half_open_in_flight: Trial calls currently admitted
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        route: Optional[Route] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.route = route
        self.clock = clock or time.monotonic
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.opened_at: Optional[float] = None
        self.half_open_in_flight = 0
        self.lock = asyncio.Lock()
        self.logger = get_logger(f"{__name__}.CircuitBreaker")

    def _remaining_open_time(self, now: float) -> float:
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.config.reset_timeout - (now - self.opened_at))

    async def acquire(self) -> None:
        """
        Admission check, taken before every attempt.

        Raises:
            CircuitOpenError: circuit OPEN within its reset timeout, or
                HALF_OPEN with every trial permit in flight
        """
        async with self.lock:
            now = self.clock()
            if self.state == CircuitState.OPEN:
                remaining = self._remaining_open_time(now)
                if remaining > 0:
                    raise CircuitOpenError(
                        f"Circuit breaker is OPEN for {self.route} - failing fast",
                        retry_after=remaining,
                        route=self.route,
                    )
                self._transition(CircuitState.HALF_OPEN, now)

            if self.state == CircuitState.HALF_OPEN:
                if self.half_open_in_flight >= self.config.half_open_max_calls:
                    raise CircuitOpenError(
                        f"Circuit breaker is HALF_OPEN for {self.route} with a trial "
                        "call in flight - failing fast",
                        route=self.route,
                    )
                self.half_open_in_flight += 1

    async def record_success(self) -> None:
        async with self.lock:
            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED, self.clock())
            elif self.state == CircuitState.CLOSED:
                self.failure_count = 0

    async def record_failure(self) -> None:
        async with self.lock:
            now = self.clock()
            self.failure_count += 1
            self.last_failure_time = now

            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, now)
            elif (
                self.state == CircuitState.CLOSED
                and self.failure_count >= self.config.failure_threshold
            ):
                self._transition(CircuitState.OPEN, now)

    async def release(self) -> None:
        """Give back an admission permit for a call that produced no verdict."""
        async with self.lock:
            if self.state == CircuitState.HALF_OPEN and self.half_open_in_flight > 0:
                self.half_open_in_flight -= 1

    async def record_response(self, response: Response) -> None:
        if self.is_failure_status(response.status_code):
            await self.record_failure()
        else:
            await self.record_success()

    def is_failure_status(self, status_code: int) -> bool:
        return status_code in self.config.failure_status_codes

    def is_failure(self, exc: BaseException) -> bool:
        if isinstance(exc, TransportError):
            return True
        if isinstance(exc, HttpStatusError) and exc.status_code is not None:
            return self.is_failure_status(exc.status_code)
        return False

    def _transition(self, new_state: CircuitState, now: float) -> None:
        old_state = self.state
        self.state = new_state

        if new_state == CircuitState.OPEN:
            self.opened_at = now
            self.half_open_in_flight = 0
            self.logger.warning(
                f"Circuit breaker OPENED for {self.route} after "
                f"{self.failure_count} failures - failing fast for "
                f"{self.config.reset_timeout}s",
                route=str(self.route),
                previous_state=old_state.value,
            )
        elif new_state == CircuitState.HALF_OPEN:
            self.half_open_in_flight = 0
            self.logger.info(
                "Circuit breaker moving to HALF_OPEN state for recovery test",
                route=str(self.route),
            )
        else:
            self.failure_count = 0
            self.last_failure_time = None
            self.opened_at = None
            self.half_open_in_flight = 0
            self.logger.info(
                "Circuit breaker CLOSED - service recovered", route=str(self.route)
            )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Execute an async callable protected by the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: Whatever ``func`` raises, after it has been recorded
        """
        await self.acquire()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if self.is_failure(e):
                await self.record_failure()
            else:
                await self.release()
            raise
        except BaseException:
            await self.release()
            raise

        if isinstance(result, Response):
            await self.record_response(result)
        else:
            await self.record_success()
        return result


class CircuitBreakerRegistry:
    """
    One ``CircuitBreaker`` per route, created on first use.

    Holds at most ``config.max_routes`` breakers where it can: past the cap,
    the least recently used breaker that is CLOSED with no failures and no
    trials in flight is dropped, since a fresh one behaves the same.
    """

    def __init__(self, config: CircuitBreakerConfig, clock: Optional[Clock] = None):
        self.config = config
        self.clock = clock
        self._breakers: OrderedDict[Route, CircuitBreaker] = OrderedDict()

    def get(self, route: Route) -> CircuitBreaker:
        breaker = self._breakers.get(route)
        if breaker is not None:
            self._breakers.move_to_end(route)
            return breaker

        breaker = CircuitBreaker(self.config, route=route, clock=self.clock)
        self._breakers[route] = breaker
        if len(self._breakers) > self.config.max_routes:
            self._drop_pristine(keep=route)
        return breaker

    def _drop_pristine(self, keep: Route) -> None:
        for route, breaker in self._breakers.items():
            if (
                route != keep
                and breaker.state == CircuitState.CLOSED
                and breaker.failure_count == 0
                and breaker.half_open_in_flight == 0
            ):
                del self._breakers[route]
                return

    def state(self, route: Route) -> CircuitState:
        breaker = self._breakers.get(route)
        return breaker.state if breaker is not None else CircuitState.CLOSED

    def __len__(self) -> int:
        return len(self._breakers)
