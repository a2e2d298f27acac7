"""
Retry policy for the request execution pipeline.

Decides whether an attempt's outcome is worth another try and how long to
wait first. The loop itself is driven by tenacity's ``AsyncRetrying``, built
from the policy by ``create_retrying``.
"""

import asyncio
import random
from collections.abc import Awaitable
from typing import Any, Callable, Optional, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
)

from .config import RetryConfig
from .exceptions import TransportError
from .logging_config import get_logger
from .models import Response

Outcome = Union[Response, BaseException]
SleepFunc = Callable[[float], Awaitable[Any]]


class RetryPolicy:
    """
    Retry policy manager that provides consistent retry behavior across all
    client operations.

    **Delay formula:**

    ```
    delay(n) = min(max_delay, base_delay * backoff_multiplier ** (n - 1))
    delay(n) += uniform(-jitter, +jitter) * delay(n)      # never below 0
    ```

    With ``base_delay=0.1``, ``backoff_multiplier=2`` and no jitter the waits
    after attempts 1, 2, 3 are 0.1s, 0.2s, 0.4s.

    **What is retried:**

    - ``TransportError`` and subclasses (connect failures, resets, timeouts)
    - Responses whose status is in ``retryable_status_codes`` (429 and 5xx by
      default)

    Everything else (successful responses, other 4xx, circuit-open,
    cancellation, interceptor aborts) ends the loop on the spot.
    """

    def __init__(self, config: RetryConfig, rng: Optional[random.Random] = None):
        self.config = config
        self._rng = rng or random.Random()
        self.logger = get_logger(f"{__name__}.RetryPolicy")

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    def is_retryable_error(self, exc: BaseException) -> bool:
        return isinstance(exc, TransportError)

    def is_retryable_response(self, response: Any) -> bool:
        return (
            isinstance(response, Response)
            and response.status_code in self.config.retryable_status_codes
        )

    def is_retryable(self, outcome: Outcome) -> bool:
        if isinstance(outcome, BaseException):
            return self.is_retryable_error(outcome)
        return self.is_retryable_response(outcome)

    def should_retry(self, attempt: int, outcome: Outcome) -> bool:
        """Whether another attempt follows ``attempt`` (1-based) given its outcome."""
        return attempt < self.config.max_attempts and self.is_retryable(outcome)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based) before the next one."""
        config = self.config
        delay = min(
            config.max_delay,
            config.base_delay * config.backoff_multiplier ** max(0, attempt - 1),
        )
        if config.jitter > 0 and delay > 0:
            delay += self._rng.uniform(-config.jitter, config.jitter) * delay
        return max(0.0, delay)

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number)

    def _log_retry_attempt(self, request_id: Optional[str]) -> Callable[[RetryCallState], None]:
        def log_retry_attempt(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            if outcome is None:
                return
            if outcome.failed:
                exc = outcome.exception()
                reason = f"{type(exc).__name__}: {exc}"
            else:
                reason = f"HTTP {outcome.result().status_code}"
            next_wait = retry_state.next_action.sleep if retry_state.next_action else 0
            self.logger.debug(
                "Retrying request",
                request_id=request_id,
                reason=reason,
                attempt=retry_state.attempt_number,
                max_attempts=self.config.max_attempts,
                wait_seconds=round(next_wait, 3),
            )

        return log_retry_attempt

    def create_retrying(
        self, sleep: Optional[SleepFunc] = None, request_id: Optional[str] = None
    ) -> AsyncRetrying:
        """
        Build the tenacity controller for one request.

        When attempts run out, tenacity raises ``RetryError`` holding the last
        attempt; the orchestrator converts it into ``RetryExhaustedError``.
        Non-retryable exceptions propagate unchanged.
        """
        return AsyncRetrying(
            sleep=sleep or asyncio.sleep,
            stop=stop_after_attempt(self.config.max_attempts),
            wait=self._wait,
            retry=(
                retry_if_exception(self.is_retryable_error)
                | retry_if_result(self.is_retryable_response)
            ),
            before_sleep=self._log_retry_attempt(request_id),
            reraise=False,
        )
