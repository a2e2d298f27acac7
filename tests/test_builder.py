"""Tests for the fluent client builder."""

import pytest
from pydantic import ValidationError

from mocha_client.builder import ClientBuilder
from mocha_client.client import ResilientClient
from mocha_client.config import ClientConfig, RetryConfig
from mocha_client.interceptors import LoggingRequestInterceptor, LoggingResponseInterceptor
from mocha_client.models import Request

from conftest import FakeConnector


class TestClientBuilder:
    """Test builder chaining and freezing."""

    def test_chained_settings(self):
        config = (
            ClientBuilder()
            .base_url("https://api.example.com")
            .allow_localhost()
            .connect_timeout(1.0)
            .read_timeout(2.0)
            .write_timeout(3.0)
            .retry(max_attempts=5, base_delay=0.5)
            .circuit_breaker(failure_threshold=2)
            .pool(max_idle_per_route=1)
            .user_agent("mocha-test")
            .build_config()
        )

        assert config.base_url == "https://api.example.com"
        assert config.allow_localhost is True
        assert (config.timeout.connect, config.timeout.read, config.timeout.write) == (1.0, 2.0, 3.0)
        assert config.retry.max_attempts == 5
        assert config.retry.base_delay == 0.5
        assert config.retry.backoff_multiplier == 2.0
        assert config.circuit_breaker.failure_threshold == 2
        assert config.pool.max_idle_per_route == 1
        assert config.user_agent == "mocha-test"

    def test_interceptors_keep_registration_order(self):
        first, second = (lambda r: r), (lambda r: r)
        config = ClientBuilder().add_request_interceptor(first).add_request_interceptor(second).build_config()
        assert config.request_interceptors == (first, second)

    def test_enable_logging_registers_both_phases(self):
        config = ClientBuilder().enable_logging().build_config()
        assert isinstance(config.request_interceptors[0], LoggingRequestInterceptor)
        assert isinstance(config.response_interceptors[0], LoggingResponseInterceptor)

    def test_built_config_is_frozen_snapshot(self):
        builder = ClientBuilder().base_url("https://one.example.com")
        config = builder.build_config()

        builder.base_url("https://two.example.com").add_request_interceptor(lambda r: r)

        assert config.base_url == "https://one.example.com"
        assert config.request_interceptors == ()

    def test_invalid_values_fail_early(self):
        with pytest.raises(ValidationError):
            ClientBuilder().retry(max_attempts=0)

    def test_retry_config_replacement_and_disable(self):
        config = ClientBuilder().retry(RetryConfig(max_attempts=7)).build_config()
        assert config.retry.max_attempts == 7
        assert ClientBuilder().disable_retry().build_config().retry.max_attempts == 1

    def test_cache_enables_cache(self, tmp_path):
        config = ClientBuilder().cache(directory=tmp_path, ttl_seconds=10).build_config()
        assert config.cache.enabled is True
        assert config.cache.ttl_seconds == 10

    def test_starts_from_existing_config(self):
        base = ClientConfig(base_url="https://api.example.com", verify_ssl=False)
        config = ClientBuilder(base).follow_redirects(False).build_config()
        assert config.base_url == "https://api.example.com"
        assert config.verify_ssl is False
        assert config.follow_redirects is False

    def test_bearer_token(self):
        config = ClientBuilder().bearer_token(lambda: "t").build_config()
        assert len(config.request_interceptors) == 1

    def test_build_returns_working_client(self):
        connector = FakeConnector()
        client = ClientBuilder().base_url("https://api.example.com").build(connector=connector)
        try:
            assert isinstance(client, ResilientClient)
            response = client.execute(Request("GET", "/ping"))
            assert response.status_code == 200
            assert connector.connections[0].sent[0].url == "https://api.example.com/ping"
        finally:
            client.close()
