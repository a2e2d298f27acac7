"""
Resilient HTTP Client Library

An HTTP client runtime that executes requests through one pipeline of
interceptors, per-route circuit breakers, retries with backoff and pooled
connections, with blocking, task-based and asyncio entry points.
"""

from .builder import ClientBuilder
from .circuit_breaker import CircuitBreaker, CircuitState
from .client import ResilientClient, create_resilient_client
from .config import (
    BulkheadConfig,
    CacheConfig,
    CircuitBreakerConfig,
    ClientConfig,
    LoggingConfig,
    PoolConfig,
    RetryConfig,
    TimeoutConfig,
)
from .exceptions import (
    AuthenticationError,
    CancellationError,
    CircuitOpenError,
    DownloadError,
    ExecutorSaturatedError,
    HttpStatusError,
    InterceptorAbortError,
    InvalidRequestError,
    InvalidURLError,
    MochaClientError,
    NotFoundError,
    PoolTimeoutError,
    RateLimitedError,
    RetryExhaustedError,
    ServerError,
    TransportError,
    TransportTimeoutError,
)
from .executor import TaskHandle, TaskState
from .interceptors import (
    RequestInterceptor,
    ResponseInterceptor,
    add_headers,
    bearer_auth,
    logging_interceptors,
    throw_on_error,
)
from .models import FilePart, Headers, Request, Response, Route, Timeouts
from .settings import ClientSettings
from .streaming import StreamingResponse

__all__ = [
    "ResilientClient",
    "create_resilient_client",
    "ClientBuilder",
    "ClientSettings",
    "ClientConfig",
    "TimeoutConfig",
    "RetryConfig",
    "CircuitBreakerConfig",
    "PoolConfig",
    "BulkheadConfig",
    "CacheConfig",
    "LoggingConfig",
    "Headers",
    "Timeouts",
    "Route",
    "Request",
    "Response",
    "FilePart",
    "StreamingResponse",
    "TaskHandle",
    "TaskState",
    "CircuitBreaker",
    "CircuitState",
    "RequestInterceptor",
    "ResponseInterceptor",
    "logging_interceptors",
    "bearer_auth",
    "add_headers",
    "throw_on_error",
    "MochaClientError",
    "TransportError",
    "TransportTimeoutError",
    "HttpStatusError",
    "InvalidRequestError",
    "AuthenticationError",
    "NotFoundError",
    "RateLimitedError",
    "ServerError",
    "CircuitOpenError",
    "RetryExhaustedError",
    "InterceptorAbortError",
    "CancellationError",
    "PoolTimeoutError",
    "ExecutorSaturatedError",
    "DownloadError",
    "InvalidURLError",
]

__version__ = "1.0.0"
