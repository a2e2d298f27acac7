"""
Configuration system for the mocha HTTP client.

Pydantic models with defaults for every resilience pattern. Every model is
frozen: the execution pipeline only ever sees an immutable ``ClientConfig``.
Use ``ClientBuilder`` for incremental construction or ``ClientSettings`` to
load values from the environment.
"""

from pathlib import Path
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({429, *range(500, 600)})
DEFAULT_FAILURE_STATUS_CODES = frozenset(range(500, 600))


class TimeoutConfig(BaseModel):
    """HTTP timeout configuration."""

    connect: float = Field(default=30.0, gt=0, description="Connection timeout in seconds")
    read: float = Field(default=30.0, gt=0, description="Read timeout in seconds")
    write: float = Field(default=30.0, gt=0, description="Write timeout in seconds")
    pool: float = Field(default=5.0, gt=0, description="Pool timeout in seconds")

    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_httpx_timeout(
        self,
        connect: Optional[float] = None,
        read: Optional[float] = None,
        write: Optional[float] = None,
    ) -> httpx.Timeout:
        """Convert to httpx.Timeout, with optional per-request overrides."""
        return httpx.Timeout(
            connect=self.connect if connect is None else connect,
            read=self.read if read is None else read,
            write=self.write if write is None else write,
            pool=self.pool,
        )


class RetryConfig(BaseModel):
    """Retry and backoff configuration."""

    max_attempts: int = Field(
        default=3, ge=1, description="Maximum attempts, the first send included"
    )
    base_delay: float = Field(
        default=0.1, ge=0, description="Delay in seconds after the first failed attempt"
    )
    backoff_multiplier: float = Field(
        default=2.0, ge=1.0, description="Exponential backoff multiplier"
    )
    max_delay: float = Field(default=30.0, ge=0, description="Upper bound on any delay")
    jitter: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Fraction of the delay applied as uniform +/- random jitter",
    )
    retryable_status_codes: frozenset[int] = Field(
        default=DEFAULT_RETRYABLE_STATUS_CODES,
        description="Response status codes that trigger another attempt",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker configuration."""

    failure_threshold: int = Field(
        default=5, ge=1, description="Consecutive failures before opening the circuit"
    )
    reset_timeout: float = Field(
        default=30.0, ge=0, description="Seconds the circuit stays OPEN before a trial"
    )
    half_open_max_calls: int = Field(
        default=1, ge=1, description="Trial calls admitted concurrently while HALF_OPEN"
    )
    failure_status_codes: frozenset[int] = Field(
        default=DEFAULT_FAILURE_STATUS_CODES,
        description="Response status codes that count as route failures",
    )
    max_routes: int = Field(
        default=1024,
        ge=1,
        description="Breakers kept before untouched CLOSED ones are dropped",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class PoolConfig(BaseModel):
    """Connection pool configuration."""

    max_idle_per_route: int = Field(
        default=5, ge=0, description="Idle connections kept per route"
    )
    max_total_connections: int = Field(
        default=50, ge=1, description="Cap on idle plus leased connections"
    )
    keep_alive: float = Field(
        default=30.0, gt=0, description="Idle seconds after which a connection is discarded"
    )
    acquire_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait for a connection when at the cap"
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class BulkheadConfig(BaseModel):
    """Bulkhead (executor concurrency limiting) configuration."""

    max_concurrency: int = Field(default=50, ge=1, description="Maximum concurrent requests")
    acquisition_timeout: float = Field(
        default=30.0, gt=0, description="Timeout for acquiring an executor slot"
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class CacheConfig(BaseModel):
    """On-disk response cache configuration."""

    enabled: bool = Field(default=False, description="Serve GET responses from disk")
    directory: Path = Field(
        default=Path(".mocha-cache"), description="Directory holding cache records"
    )
    ttl_seconds: float = Field(default=300.0, gt=0, description="Record lifetime")
    vary_headers: tuple[str, ...] = Field(
        default=("accept", "authorization"),
        description="Request headers whose values are part of the cache key",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("vary_headers")
    @classmethod
    def lowercase_vary_headers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(name.lower() for name in v)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        pattern="^(DEBUG|INFO|WARNING|ERROR)$",
    )
    format: str = Field(
        default="console", description="Log format (json or console)", pattern="^(json|console)$"
    )
    include_request_id: bool = Field(
        default=True, description="Stamp and log an X-Request-ID per request"
    )
    logger_name: str = Field(default="mocha_client", description="Logger name")

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("level", mode="before")
    @classmethod
    def uppercase_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class ClientConfig(BaseModel):
    """
    Complete, frozen configuration for ``ResilientClient``.

    **How the patterns interact:**

    - Each retry attempt passes the circuit breaker admission check, so a
      circuit that opens mid-sequence stops the remaining attempts
    - Every attempt leases its own pooled connection and returns it before
      the backoff sleep
    - ``bulkhead`` bounds how many pipelines run at once; ``pool`` bounds how
      many sockets they may hold

    **Tuning example** (internal, low-latency service):

    ```python
    config = ClientConfig(
        base_url="https://internal.service",
        timeout=TimeoutConfig(connect=2.0, read=5.0),
        retry=RetryConfig(max_attempts=2, max_delay=1.0),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=3, reset_timeout=10.0),
        pool=PoolConfig(max_idle_per_route=20, max_total_connections=200),
    )
    ```

    Attributes:
        base_url: Prefix for relative request URLs
        allow_localhost: Permit loopback and private-network hosts
        timeout: Per-phase transport timeouts
        retry: Retry policy parameters
        circuit_breaker: Failure detection and fast-fail settings
        pool: Connection pool limits and keep-alive
        bulkhead: Executor concurrency limit
        cache: Optional on-disk response cache
        logging: Logging settings
        request_interceptors: Ordered request steps
        response_interceptors: Ordered response steps
        run_response_interceptors_on_failure: Apply response steps to the last
            response of an exhausted retry sequence
        follow_redirects: Whether the transport follows redirects
        verify_ssl: Whether to verify TLS certificates
        user_agent: Default User-Agent header
    """

    base_url: Optional[str] = Field(default=None, description="Base URL for relative paths")
    allow_localhost: bool = Field(
        default=False, description="Allow localhost and private network hosts"
    )
    timeout: TimeoutConfig = Field(default_factory=TimeoutConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    bulkhead: BulkheadConfig = Field(default_factory=BulkheadConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    request_interceptors: tuple[Any, ...] = Field(default=())
    response_interceptors: tuple[Any, ...] = Field(default=())
    run_response_interceptors_on_failure: bool = Field(
        default=False,
        description="Run response interceptors on the last response of a failed call",
    )

    follow_redirects: bool = Field(default=True, description="Follow HTTP redirects")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    user_agent: Optional[str] = Field(default=None, description="Custom User-Agent header")

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    @field_validator("request_interceptors", "response_interceptors", mode="before")
    @classmethod
    def coerce_interceptor_sequence(cls, v: Any) -> Any:
        if isinstance(v, list):
            return tuple(v)
        return v

    @field_validator("request_interceptors", "response_interceptors")
    @classmethod
    def interceptors_are_callable(cls, v: tuple[Any, ...]) -> tuple[Any, ...]:
        for step in v:
            if not (callable(step) or callable(getattr(step, "intercept", None))):
                raise ValueError(f"Interceptor {step!r} is neither callable nor has intercept()")
        return v

    @model_validator(mode="after")
    def pool_cap_covers_idle(self) -> "ClientConfig":
        if self.pool.max_idle_per_route > self.pool.max_total_connections:
            raise ValueError("pool.max_idle_per_route cannot exceed pool.max_total_connections")
        return self
