"""
Exception hierarchy for the mocha HTTP client runtime.

Every error raised by the execution pipeline derives from ``MochaClientError``
and carries enough context (request, response, route, attempt count) to
diagnose a failure without reproducing it.

**Exception Hierarchy:**

```
MochaClientError (base exception)
├── TransportError (retry-eligible - connect failures, resets)
│   └── TransportTimeoutError (connect/read/write/pool phase timeouts)
├── HttpStatusError (non-2xx response surfaced to caller or interceptor)
│   ├── InvalidRequestError (400, 422)
│   ├── AuthenticationError (401, 403)
│   ├── NotFoundError (404)
│   ├── RateLimitedError (429)
│   └── ServerError (5xx)
├── CircuitOpenError (fast-fail, never retried)
├── RetryExhaustedError (wraps the last outcome after max_attempts)
├── InterceptorAbortError (a step halted the pipeline)
├── CancellationError (task cancelled before completion)
├── PoolTimeoutError (no pooled connection became available)
├── ExecutorSaturatedError (bulkhead slot not acquired in time)
├── DownloadError (a downloaded body could not be written)
└── InvalidURLError (URL rejected by validation policy)
```

**Propagation:**

```
httpx.ConnectError        → TransportError        → Retry + Circuit Breaker
httpx.ReadTimeout         → TransportTimeoutError → Retry + Circuit Breaker
Response 503              → (retry policy)        → Retry + Circuit Breaker
Response 404              → returned / NotFoundError via throw_on_error()
Circuit OPEN              → CircuitOpenError      → surfaced immediately
```
"""

from typing import Any, Optional


class MochaClientError(Exception):
    """
    Base exception for all library errors.

    Attributes:
        message: Human-readable error description
        request: The Request being executed (if available)
        response: The Response that triggered the error (if available)
        route: The Route the call was addressed to (if known)
        attempts: Number of transport attempts made (if known)
    """

    def __init__(
        self,
        message: str = "",
        response: Optional[Any] = None,
        request: Optional[Any] = None,
        route: Optional[Any] = None,
        attempts: Optional[int] = None,
    ):
        self.message = message
        self.response = response
        self.request = request
        if route is None and request is not None:
            route = getattr(request, "route", None)
        self.route = route
        self.attempts = attempts
        super().__init__(message)


class TransportError(MochaClientError):
    """
    A transport-level failure: connect error, connection reset, protocol error.

    Always eligible for retry and always counted as a circuit breaker failure.
    """

    pass


class TransportTimeoutError(TransportError):
    """
    A per-phase timeout (connect, read, write or pool) expired.

    Phase timeouts are independent of the overall retry budget; each timed-out
    attempt is evaluated by the retry policy like any other transport failure.
    """

    pass


class HttpStatusError(MochaClientError):
    """
    A non-2xx response surfaced as an error.

    The pipeline itself returns non-retryable responses as values; this error
    is raised by interceptors such as ``throw_on_error()`` or by callers that
    want exception-style handling.
    """

    def __init__(self, message: str = "", response: Optional[Any] = None, **kwargs: Any):
        if response is not None and kwargs.get("request") is None:
            kwargs["request"] = getattr(response, "request", None)
        super().__init__(message, response=response, **kwargs)

    @property
    def status_code(self) -> Optional[int]:
        return getattr(self.response, "status_code", None)

    @classmethod
    def from_response(cls, response: Any) -> "HttpStatusError":
        """Build the most specific status error for ``response``."""
        status_code = response.status_code
        reason = getattr(response, "reason_phrase", "")
        message = f"HTTP {status_code}: {reason}".rstrip(": ")

        if status_code in (400, 422):
            return InvalidRequestError(message, response=response)
        if status_code in (401, 403):
            return AuthenticationError(message, response=response)
        if status_code == 404:
            return NotFoundError(message, response=response)
        if status_code == 429:
            return RateLimitedError(message, response=response)
        if 500 <= status_code < 600:
            return ServerError(message, response=response)
        return HttpStatusError(message, response=response)


class InvalidRequestError(HttpStatusError):
    """The request was malformed (HTTP 400, 422)."""

    pass


class AuthenticationError(HttpStatusError):
    """
    The request was not authorized (HTTP 401, 403).

    Retrying with the same credentials will fail the same way.
    """

    pass


class NotFoundError(HttpStatusError):
    """The requested resource was not found (HTTP 404)."""

    pass


class RateLimitedError(HttpStatusError):
    """The server is rate limiting this client (HTTP 429)."""

    pass


class ServerError(HttpStatusError):
    """A 5xx server error."""

    pass


class CircuitOpenError(MochaClientError):
    """
    The circuit breaker for the route rejected the call without touching the
    network.

    Raised while the circuit is OPEN, and while it is HALF_OPEN with all trial
    permits already in flight. Never retried.

    Attributes:
        retry_after: Seconds until the breaker will admit a trial call
            (0.0 when a trial is already in flight)
    """

    def __init__(self, message: str = "", retry_after: float = 0.0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class RetryExhaustedError(MochaClientError):
    """
    Every permitted attempt failed with a retryable outcome.

    Carries the last outcome: ``response`` when the final attempt produced a
    retryable status, ``last_error`` when it ended in a transport failure.
    """

    def __init__(
        self,
        message: str = "",
        last_error: Optional[BaseException] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.last_error = last_error

    @property
    def status_code(self) -> Optional[int]:
        return getattr(self.response, "status_code", None)


class InterceptorAbortError(MochaClientError):
    """
    An interceptor step halted the pipeline.

    Attributes:
        step: The interceptor that aborted (if known)
    """

    def __init__(self, message: str = "", step: Optional[Any] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.step = step


class CancellationError(MochaClientError):
    """The task executing the request was cancelled before it completed."""

    pass


class PoolTimeoutError(MochaClientError):
    """
    No pooled connection became available within the acquire timeout.

    Happens when every connection under ``max_total_connections`` is leased
    and none is released in time. This is a client-side resource limit, not a
    remote service failure: it is not retried and does not trip the breaker.
    """

    pass


class ExecutorSaturatedError(MochaClientError):
    """
    Failed to acquire an executor slot (bulkhead) within the acquisition timeout.

    The client is running ``bulkhead.max_concurrency`` requests already.
    Reduce load or raise the concurrency limit.
    """

    pass


class DownloadError(MochaClientError):
    """Writing a downloaded response body to its destination failed."""

    pass


class InvalidURLError(MochaClientError, ValueError):
    """The URL was rejected by the client's URL validation policy."""

    pass
