"""
Tests for the client exception hierarchy.

Validates the inheritance tree, the context carried by every error and the
status-to-exception mapping.
"""

import pytest

from mocha_client.exceptions import (
    AuthenticationError,
    CancellationError,
    CircuitOpenError,
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
from mocha_client.models import Request, Response, Route


class TestExceptionHierarchy:
    """Test the inheritance tree."""

    @pytest.mark.parametrize(
        "exc_class",
        [
            TransportError,
            HttpStatusError,
            CircuitOpenError,
            RetryExhaustedError,
            InterceptorAbortError,
            CancellationError,
            PoolTimeoutError,
            ExecutorSaturatedError,
            InvalidURLError,
        ],
    )
    def test_all_derive_from_base(self, exc_class):
        assert issubclass(exc_class, MochaClientError)

    def test_timeout_is_transport_error(self):
        assert issubclass(TransportTimeoutError, TransportError)

    @pytest.mark.parametrize(
        "exc_class",
        [InvalidRequestError, AuthenticationError, NotFoundError, RateLimitedError, ServerError],
    )
    def test_status_errors(self, exc_class):
        assert issubclass(exc_class, HttpStatusError)

    def test_invalid_url_is_value_error(self):
        assert issubclass(InvalidURLError, ValueError)


class TestExceptionContext:
    """Test the context carried by errors."""

    def test_route_is_derived_from_request(self):
        request = Request("GET", "https://api.example.com/a")
        error = TransportError("reset", request=request)
        assert error.route == Route("https", "api.example.com", 443)
        assert error.message == "reset"
        assert str(error) == "reset"

    def test_status_error_takes_request_from_response(self):
        request = Request("GET", "https://api.example.com/a")
        error = NotFoundError("missing", response=Response(404, request=request))
        assert error.request is request
        assert error.status_code == 404

    def test_circuit_open_carries_retry_after(self):
        error = CircuitOpenError("open", retry_after=12.5)
        assert error.retry_after == 12.5

    def test_retry_exhausted_carries_last_outcome(self):
        cause = TransportError("reset")
        error = RetryExhaustedError("gave up", last_error=cause, attempts=3)
        assert error.last_error is cause
        assert error.attempts == 3
        assert error.status_code is None

        with_response = RetryExhaustedError("gave up", response=Response(503))
        assert with_response.status_code == 503


class TestStatusMapping:
    """Test HttpStatusError.from_response."""

    @pytest.mark.parametrize(
        "status,exc_class",
        [
            (400, InvalidRequestError),
            (422, InvalidRequestError),
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, NotFoundError),
            (429, RateLimitedError),
            (500, ServerError),
            (503, ServerError),
            (409, HttpStatusError),
        ],
    )
    def test_from_response(self, status, exc_class):
        error = HttpStatusError.from_response(Response(status))
        assert type(error) is exc_class
        assert error.status_code == status
        assert str(status) in str(error)
