"""
Tests for the interceptor chain and built-in interceptors.

Validates ordering, sync/async steps, abort semantics and the behaviour of
each built-in step.
"""

from unittest.mock import Mock

import pytest

from mocha_client.exceptions import InterceptorAbortError, NotFoundError, ServerError
from mocha_client.interceptors import (
    BearerAuthInterceptor,
    InterceptorChain,
    LoggingRequestInterceptor,
    RequestInterceptor,
    add_headers,
    apply_request,
    apply_response,
    bearer_auth,
    logging_interceptors,
    throw_on_error,
)
from mocha_client.models import Request, Response


@pytest.fixture
def request_():
    return Request("GET", "https://api.example.com/items")


class TestInterceptorChain:
    """Test chain application semantics."""

    async def test_empty_chain_is_identity(self, request_):
        assert await apply_request(request_, []) is request_
        response = Response(200, request=request_)
        assert await apply_response(response, ()) is response

    async def test_steps_run_in_registration_order(self, request_):
        order = []

        def first(request):
            order.append("first")
            return request.with_header("X-Trace", "first")

        async def second(request):
            order.append("second")
            return request.with_header("X-Trace", request.headers["X-Trace"] + ",second")

        result = await apply_request(request_, [first, second])
        assert order == ["first", "second"]
        assert result.headers["x-trace"] == "first,second"

    async def test_intercept_objects_are_supported(self, request_):
        class Stamp(RequestInterceptor):
            def intercept(self, request):
                return request.with_header("X-Stamp", "1")

        chain = InterceptorChain(request_steps=[Stamp()])
        assert (await chain.apply_request(request_)).headers["X-Stamp"] == "1"

    async def test_foreign_exception_is_wrapped(self, request_):
        def broken(request):
            raise KeyError("boom")

        later = Mock(side_effect=lambda r: r)
        with pytest.raises(InterceptorAbortError) as exc_info:
            await apply_request(request_, [broken, later])

        assert exc_info.value.step is broken
        assert isinstance(exc_info.value.__cause__, KeyError)
        later.assert_not_called()

    async def test_client_errors_propagate_unchanged(self, request_):
        response = Response(404, request=request_)
        with pytest.raises(NotFoundError):
            await apply_response(response, [throw_on_error()])

    async def test_wrong_return_type_aborts(self, request_):
        with pytest.raises(InterceptorAbortError, match="expected Request"):
            await apply_request(request_, [lambda request: None])


class TestBuiltInInterceptors:
    """Test the built-in request and response steps."""

    async def test_bearer_auth_sets_header(self, request_):
        result = await apply_request(request_, [bearer_auth(lambda: "secret")])
        assert result.headers["Authorization"] == "Bearer secret"

    async def test_bearer_auth_skips_empty_token(self, request_):
        result = await apply_request(request_, [BearerAuthInterceptor(lambda: "")])
        assert "Authorization" not in result.headers

    async def test_bearer_auth_calls_provider_per_request(self, request_):
        tokens = iter(["one", "two"])
        step = bearer_auth(lambda: next(tokens))
        assert (await apply_request(request_, [step])).headers["Authorization"] == "Bearer one"
        assert (await apply_request(request_, [step])).headers["Authorization"] == "Bearer two"

    async def test_add_headers_replaces_existing(self, request_):
        request = request_.with_header("Accept", "text/html")
        result = await apply_request(request, [add_headers({"accept": "application/json"})])
        assert result.headers.get_list("Accept") == ["application/json"]

    @pytest.mark.parametrize("status", [200, 201, 302])
    async def test_throw_on_error_passes_non_errors(self, request_, status):
        response = Response(status, request=request_)
        assert await apply_response(response, [throw_on_error()]) is response

    async def test_throw_on_error_raises_specific_error(self, request_):
        with pytest.raises(ServerError) as exc_info:
            await apply_response(Response(502, request=request_), [throw_on_error()])
        assert exc_info.value.status_code == 502
        assert exc_info.value.request is request_

    async def test_logging_interceptors_log_and_pass_through(self, request_):
        log = Mock()
        request_step, response_step = logging_interceptors(log)
        request = request_.with_body("x" * 500)

        assert await apply_request(request, [request_step]) is request
        response = Response(200, content=b"y" * 500, request=request)
        assert await apply_response(response, [response_step]) is response

        request_call, response_call = log.info.call_args_list
        assert request_call.args == ("Request",)
        assert request_call.kwargs["method"] == "GET"
        assert request_call.kwargs["body"].endswith("(500 chars)")
        assert response_call.kwargs["status_code"] == 200
        assert response_call.kwargs["body"].startswith("y" * 200 + "...")

    async def test_logging_request_interceptor_reports_binary_size(self, request_):
        log = Mock()
        await apply_request(request_.with_body(b"\x00" * 10), [LoggingRequestInterceptor(log)])
        assert log.info.call_args.kwargs["body"] == "<10 bytes>"
