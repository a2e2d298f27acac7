"""
Tests for the retry policy.

Validates the backoff formula, jitter bounds, outcome classification and
the tenacity controller built from the policy.
"""

import random

import pytest
from tenacity import RetryError

from mocha_client.config import RetryConfig
from mocha_client.exceptions import (
    CircuitOpenError,
    NotFoundError,
    TransportError,
    TransportTimeoutError,
)
from mocha_client.models import Response
from mocha_client.retry_policies import RetryPolicy


class TestRetryPolicy:
    """Test retry decisions and delays."""

    @pytest.fixture
    def retry_config(self):
        """Deterministic retry configuration for testing."""
        return RetryConfig(
            max_attempts=3, base_delay=0.1, backoff_multiplier=2.0, max_delay=1.0, jitter=0.0
        )

    @pytest.fixture
    def policy(self, retry_config):
        return RetryPolicy(retry_config)

    def test_exponential_delays(self, policy):
        assert policy.delay_for(1) == pytest.approx(0.1)
        assert policy.delay_for(2) == pytest.approx(0.2)
        assert policy.delay_for(3) == pytest.approx(0.4)

    def test_delay_is_capped(self, policy):
        assert policy.delay_for(10) == pytest.approx(1.0)

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(
            RetryConfig(base_delay=1.0, backoff_multiplier=1.0, jitter=0.5),
            rng=random.Random(42),
        )
        delays = [policy.delay_for(1) for _ in range(200)]
        assert all(0.5 <= d <= 1.5 for d in delays)
        assert len(set(delays)) > 1

    def test_full_jitter_never_negative(self):
        policy = RetryPolicy(RetryConfig(base_delay=1.0, jitter=1.0), rng=random.Random(7))
        assert all(policy.delay_for(1) >= 0 for _ in range(200))

    @pytest.mark.parametrize(
        "outcome,expected",
        [
            (TransportError("reset"), True),
            (TransportTimeoutError("read timeout"), True),
            (CircuitOpenError("open"), False),
            (NotFoundError("missing"), False),
            (Response(503), True),
            (Response(500), True),
            (Response(429), True),
            (Response(404), False),
            (Response(200), False),
        ],
    )
    def test_outcome_classification(self, policy, outcome, expected):
        assert policy.is_retryable(outcome) is expected

    def test_should_retry_respects_max_attempts(self, policy):
        assert policy.should_retry(1, Response(503))
        assert policy.should_retry(2, TransportError("reset"))
        assert not policy.should_retry(3, Response(503))
        assert not policy.should_retry(1, Response(200))

    def test_custom_retryable_status_codes(self):
        policy = RetryPolicy(RetryConfig(retryable_status_codes={408}))
        assert policy.is_retryable(Response(408))
        assert not policy.is_retryable(Response(503))


class TestRetryingController:
    """Test the tenacity controller built by the policy."""

    @pytest.fixture
    def policy(self):
        return RetryPolicy(RetryConfig(max_attempts=3, base_delay=0.1, jitter=0.0))

    async def _drive(self, policy, outcomes, sleep):
        """Run the controller over scripted outcomes; returns (result, calls)."""
        calls = 0
        retrying = policy.create_retrying(sleep=sleep)
        result = None
        async for attempt in retrying:
            with attempt:
                outcome = outcomes[calls]
                calls += 1
                if isinstance(outcome, BaseException):
                    raise outcome
                result = outcome
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)
        return result, calls

    async def test_retries_until_success(self, policy, recording_sleep):
        result, calls = await self._drive(
            policy, [Response(503), TransportError("reset"), Response(200)], recording_sleep
        )
        assert result.status_code == 200
        assert calls == 3
        assert recording_sleep.delays == pytest.approx([0.1, 0.2])

    async def test_non_retryable_outcome_stops_immediately(self, policy, recording_sleep):
        result, calls = await self._drive(policy, [Response(404)], recording_sleep)
        assert result.status_code == 404
        assert calls == 1
        assert recording_sleep.delays == []

    async def test_non_retryable_exception_propagates(self, policy, recording_sleep):
        with pytest.raises(CircuitOpenError):
            await self._drive(policy, [CircuitOpenError("open")], recording_sleep)
        assert recording_sleep.delays == []

    async def test_exhaustion_raises_retry_error(self, policy, recording_sleep):
        with pytest.raises(RetryError) as exc_info:
            await self._drive(policy, [Response(500)] * 3, recording_sleep)

        last = exc_info.value.last_attempt
        assert last.attempt_number == 3
        assert last.result().status_code == 500
        assert len(recording_sleep.delays) == 2
