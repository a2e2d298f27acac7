"""
Tests for client configuration.

Validates defaults, validation constraints and immutability of the
configuration models.
"""

from pathlib import Path

import httpx
import pytest
from pydantic import ValidationError

from mocha_client.config import (
    BulkheadConfig,
    CacheConfig,
    CircuitBreakerConfig,
    ClientConfig,
    LoggingConfig,
    PoolConfig,
    RetryConfig,
    TimeoutConfig,
)
from mocha_client.interceptors import throw_on_error


class TestConfigDefaults:
    """Test default values of every section."""

    def test_client_config_defaults(self):
        config = ClientConfig()
        assert config.base_url is None
        assert config.allow_localhost is False
        assert config.request_interceptors == ()
        assert config.response_interceptors == ()
        assert config.run_response_interceptors_on_failure is False
        assert config.follow_redirects is True
        assert config.verify_ssl is True

    def test_retry_defaults(self):
        retry = RetryConfig()
        assert retry.max_attempts == 3
        assert retry.base_delay == 0.1
        assert retry.backoff_multiplier == 2.0
        assert 429 in retry.retryable_status_codes
        assert 503 in retry.retryable_status_codes
        assert 404 not in retry.retryable_status_codes

    def test_circuit_breaker_defaults(self):
        breaker = CircuitBreakerConfig()
        assert breaker.failure_threshold == 5
        assert breaker.reset_timeout == 30.0
        assert breaker.half_open_max_calls == 1
        assert 500 in breaker.failure_status_codes
        assert 429 not in breaker.failure_status_codes
        assert breaker.max_routes == 1024

    def test_pool_and_bulkhead_defaults(self):
        assert PoolConfig().max_idle_per_route == 5
        assert PoolConfig().max_total_connections == 50
        assert PoolConfig().keep_alive == 30.0
        assert BulkheadConfig().max_concurrency == 50

    def test_cache_defaults(self):
        cache = CacheConfig()
        assert cache.enabled is False
        assert cache.directory == Path(".mocha-cache")
        assert cache.vary_headers == ("accept", "authorization")


class TestConfigValidation:
    """Test validation constraints."""

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=0)

    @pytest.mark.parametrize("jitter", [-0.1, 1.5])
    def test_jitter_range(self, jitter):
        with pytest.raises(ValidationError):
            RetryConfig(jitter=jitter)

    def test_multiplier_at_least_one(self):
        with pytest.raises(ValidationError):
            RetryConfig(backoff_multiplier=0.5)

    def test_unknown_fields_are_rejected(self):
        with pytest.raises(ValidationError):
            ClientConfig(max_retries=3)

    def test_idle_limit_cannot_exceed_cap(self):
        with pytest.raises(ValidationError, match="max_idle_per_route"):
            ClientConfig(pool=PoolConfig(max_idle_per_route=10, max_total_connections=5))

    def test_log_level_is_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="TRACE")

    def test_log_format(self):
        assert LoggingConfig(format="json").format == "json"
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")

    def test_vary_headers_are_lowercased(self):
        assert CacheConfig(vary_headers=["Accept-Language"]).vary_headers == ("accept-language",)


class TestInterceptorFields:
    """Test interceptor tuples on the client config."""

    def test_lists_become_tuples(self):
        step = throw_on_error()
        config = ClientConfig(response_interceptors=[step])
        assert config.response_interceptors == (step,)

    def test_plain_callables_are_accepted(self):
        def step(request):
            return request

        assert ClientConfig(request_interceptors=[step]).request_interceptors == (step,)

    def test_non_callable_interceptor_is_rejected(self):
        with pytest.raises(ValidationError, match="neither callable"):
            ClientConfig(request_interceptors=["not a step"])


class TestConfigImmutability:
    """Test that built configs cannot change underneath a client."""

    def test_client_config_is_frozen(self):
        config = ClientConfig()
        with pytest.raises(ValidationError):
            config.base_url = "https://other.example.com"

    def test_sections_are_frozen(self):
        config = ClientConfig()
        with pytest.raises(ValidationError):
            config.retry.max_attempts = 10


class TestTimeoutConfig:
    """Test conversion to httpx timeouts."""

    def test_to_httpx_timeout(self):
        timeout = TimeoutConfig(connect=1.0, read=2.0, write=3.0, pool=4.0).to_httpx_timeout()
        assert timeout == httpx.Timeout(connect=1.0, read=2.0, write=3.0, pool=4.0)

    def test_overrides(self):
        timeout = TimeoutConfig(connect=1.0, read=2.0).to_httpx_timeout(read=0.5)
        assert timeout.read == 0.5
        assert timeout.connect == 1.0
