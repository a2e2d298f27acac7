"""Fluent builder for ``ClientConfig`` and ``ResilientClient``."""

from typing import Any, Callable, Optional, Union

from .client import ResilientClient
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
from .interceptors import bearer_auth, logging_interceptors


class ClientBuilder:
    """
    Mutable, chainable construction of a client configuration.

    The builder collects settings; ``build_config()`` validates and freezes
    them, so a built client never sees later changes to the builder.

    ```python
    client = (
        ClientBuilder()
        .base_url("https://api.example.com")
        .connect_timeout(2.0)
        .retry(max_attempts=5, base_delay=0.2)
        .add_request_interceptor(bearer_auth(lambda: token))
        .build()
    )
    ```
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        config = config or ClientConfig()
        self._values: dict[str, Any] = {
            name: getattr(config, name) for name in ClientConfig.model_fields
        }
        self._request_interceptors = list(config.request_interceptors)
        self._response_interceptors = list(config.response_interceptors)

    def _update(self, section: str, **changes: Any) -> "ClientBuilder":
        current = self._values[section]
        # Re-validate through the model so bad values fail here, not at build.
        self._values[section] = type(current).model_validate(
            {**current.model_dump(), **changes}
        )
        return self

    def base_url(self, url: Optional[str]) -> "ClientBuilder":
        self._values["base_url"] = url
        return self

    def allow_localhost(self, allow: bool = True) -> "ClientBuilder":
        self._values["allow_localhost"] = allow
        return self

    def connect_timeout(self, seconds: float) -> "ClientBuilder":
        return self._update("timeout", connect=seconds)

    def read_timeout(self, seconds: float) -> "ClientBuilder":
        return self._update("timeout", read=seconds)

    def write_timeout(self, seconds: float) -> "ClientBuilder":
        return self._update("timeout", write=seconds)

    def timeouts(self, config: TimeoutConfig) -> "ClientBuilder":
        self._values["timeout"] = config
        return self

    def retry(self, config: Optional[RetryConfig] = None, **changes: Any) -> "ClientBuilder":
        """Replace the retry config, or update individual fields of it."""
        if config is not None:
            self._values["retry"] = config
        return self._update("retry", **changes) if changes else self

    def disable_retry(self) -> "ClientBuilder":
        return self._update("retry", max_attempts=1)

    def circuit_breaker(
        self, config: Optional[CircuitBreakerConfig] = None, **changes: Any
    ) -> "ClientBuilder":
        if config is not None:
            self._values["circuit_breaker"] = config
        return self._update("circuit_breaker", **changes) if changes else self

    def pool(self, config: Optional[PoolConfig] = None, **changes: Any) -> "ClientBuilder":
        if config is not None:
            self._values["pool"] = config
        return self._update("pool", **changes) if changes else self

    def bulkhead(self, config: Optional[BulkheadConfig] = None, **changes: Any) -> "ClientBuilder":
        if config is not None:
            self._values["bulkhead"] = config
        return self._update("bulkhead", **changes) if changes else self

    def cache(self, config: Optional[CacheConfig] = None, **changes: Any) -> "ClientBuilder":
        if config is not None:
            self._values["cache"] = config
        changes.setdefault("enabled", True)
        return self._update("cache", **changes)

    def logging(self, config: Optional[LoggingConfig] = None, **changes: Any) -> "ClientBuilder":
        if config is not None:
            self._values["logging"] = config
        return self._update("logging", **changes) if changes else self

    def add_request_interceptor(self, step: Any) -> "ClientBuilder":
        self._request_interceptors.append(step)
        return self

    def add_response_interceptor(self, step: Any) -> "ClientBuilder":
        self._response_interceptors.append(step)
        return self

    def enable_logging(self) -> "ClientBuilder":
        """Register the request and response logging interceptors."""
        request_step, response_step = logging_interceptors()
        return self.add_request_interceptor(request_step).add_response_interceptor(response_step)

    def bearer_token(self, token_provider: Callable[[], Optional[str]]) -> "ClientBuilder":
        return self.add_request_interceptor(bearer_auth(token_provider))

    def run_response_interceptors_on_failure(self, enabled: bool = True) -> "ClientBuilder":
        self._values["run_response_interceptors_on_failure"] = enabled
        return self

    def follow_redirects(self, enabled: bool = True) -> "ClientBuilder":
        self._values["follow_redirects"] = enabled
        return self

    def verify_ssl(self, enabled: bool = True) -> "ClientBuilder":
        self._values["verify_ssl"] = enabled
        return self

    def user_agent(self, value: Union[str, None]) -> "ClientBuilder":
        self._values["user_agent"] = value
        return self

    def build_config(self) -> ClientConfig:
        """Validate and freeze the collected settings."""
        return ClientConfig(
            **{
                **self._values,
                "request_interceptors": tuple(self._request_interceptors),
                "response_interceptors": tuple(self._response_interceptors),
            }
        )

    def build(self, **kwargs: Any) -> ResilientClient:
        """Build a client; ``kwargs`` go to ``ResilientClient`` (connector, clock, sleep)."""
        return ResilientClient(self.build_config(), **kwargs)
