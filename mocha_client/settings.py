"""Configuration loading from the environment using Pydantic Settings."""

from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

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


class ClientSettings(BaseSettings):
    """
    Client configuration with environment variable support.

    Flat options use the ``MOCHA_`` prefix, nested ones a double underscore:

    ```
    MOCHA_BASE_URL=https://api.example.com
    MOCHA_RETRY__MAX_ATTEMPTS=5
    MOCHA_CIRCUIT_BREAKER__RESET_TIMEOUT=10
    MOCHA_LOGGING__FORMAT=json
    ```

    Interceptors are code, not settings; pass them to ``to_client_config``.
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

    run_response_interceptors_on_failure: bool = Field(default=False)
    follow_redirects: bool = Field(default=True, description="Follow HTTP redirects")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    user_agent: Optional[str] = Field(default=None, description="Custom User-Agent header")

    @field_validator("base_url", "user_agent")
    @classmethod
    def blank_as_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty environment values as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    model_config = SettingsConfigDict(
        env_prefix="MOCHA_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def to_client_config(self, **overrides: Any) -> ClientConfig:
        """Freeze these settings into a ``ClientConfig``; ``overrides`` win."""
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(overrides)
        return ClientConfig(**values)


def get_settings(**kwargs: Any) -> ClientSettings:
    """Get client settings instance."""
    return ClientSettings(**kwargs)
