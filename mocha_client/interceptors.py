"""
Interceptor chain: ordered transformation steps applied before send and
after receive.

A step receives a ``Request`` (or ``Response``) and returns a new one. Steps
may be plain callables, objects with an ``intercept`` method, and either
synchronous or ``async``. Steps run strictly in registration order; any step
may abort the pipeline by raising.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable, Mapping
from typing import Any, Callable, Optional, Union

from .exceptions import HttpStatusError, InterceptorAbortError, MochaClientError
from .logging_config import get_logger
from .models import Request, Response

logger = get_logger(__name__)

MAX_LOGGED_BODY_CHARS = 200


class RequestInterceptor(ABC):
    """A pre-send step: ``Request -> Request``."""

    @abstractmethod
    def intercept(self, request: Request) -> Union[Request, Awaitable[Request]]:
        """Return the (possibly new) request, or raise to abort."""


class ResponseInterceptor(ABC):
    """A post-receive step: ``Response -> Response``."""

    @abstractmethod
    def intercept(self, response: Response) -> Union[Response, Awaitable[Response]]:
        """Return the (possibly new) response, or raise to abort."""


def _step_name(step: Any) -> str:
    return getattr(step, "__name__", None) or type(step).__name__


async def _run_step(step: Any, value: Any, expected: type) -> Any:
    func = step.intercept if hasattr(step, "intercept") else step
    try:
        result = func(value)
        if inspect.isawaitable(result):
            result = await result
    except MochaClientError:
        raise
    except Exception as e:
        raise InterceptorAbortError(
            f"Interceptor {_step_name(step)} aborted: {e}",
            step=step,
            request=value if isinstance(value, Request) else value.request,
        ) from e

    if not isinstance(result, expected):
        raise InterceptorAbortError(
            f"Interceptor {_step_name(step)} returned {type(result).__name__}, "
            f"expected {expected.__name__}",
            step=step,
        )
    return result


async def apply_request(request: Request, steps: Iterable[Any]) -> Request:
    """Run request ``steps`` in order, feeding each output to the next step."""
    for step in steps:
        request = await _run_step(step, request, Request)
    return request


async def apply_response(response: Response, steps: Iterable[Any]) -> Response:
    """Run response ``steps`` in order, feeding each output to the next step."""
    for step in steps:
        response = await _run_step(step, response, Response)
    return response


class InterceptorChain:
    """The ordered request and response steps registered on a client."""

    def __init__(
        self,
        request_steps: Iterable[Any] = (),
        response_steps: Iterable[Any] = (),
    ):
        self.request_steps = tuple(request_steps)
        self.response_steps = tuple(response_steps)

    async def apply_request(self, request: Request) -> Request:
        return await apply_request(request, self.request_steps)

    async def apply_response(self, response: Response) -> Response:
        return await apply_response(response, self.response_steps)


class LoggingRequestInterceptor(RequestInterceptor):
    """Log method, URL, headers, params and body of each outgoing request."""

    def __init__(self, log: Optional[Any] = None):
        self.logger = log or logger

    def intercept(self, request: Request) -> Request:
        self.logger.info(
            "Request",
            method=request.method,
            url=request.url,
            headers=dict(request.headers) or None,
            params=list(request.params) or None,
            body=_truncate(request.body),
        )
        return request


class LoggingResponseInterceptor(ResponseInterceptor):
    """Log status, headers and a truncated body of each response."""

    def __init__(self, log: Optional[Any] = None):
        self.logger = log or logger

    def intercept(self, response: Response) -> Response:
        self.logger.info(
            "Response",
            status_code=response.status_code,
            reason=response.reason_phrase,
            headers=dict(response.headers) or None,
            body=_truncate(response.text),
        )
        return response


def _truncate(body: Optional[Union[str, bytes]]) -> Optional[str]:
    if not body:
        return None
    if isinstance(body, bytes):
        return f"<{len(body)} bytes>"
    if len(body) > MAX_LOGGED_BODY_CHARS:
        return f"{body[:MAX_LOGGED_BODY_CHARS]}... ({len(body)} chars)"
    return body


class BearerAuthInterceptor(RequestInterceptor):
    """Set ``Authorization: Bearer <token>`` from a token provider called per request."""

    def __init__(self, token_provider: Callable[[], Optional[str]]):
        self.token_provider = token_provider

    def intercept(self, request: Request) -> Request:
        token = self.token_provider()
        if not token:
            return request
        return request.with_header("Authorization", f"Bearer {token}")


class HeadersInterceptor(RequestInterceptor):
    """Add a fixed set of headers, replacing existing values of the same name."""

    def __init__(self, headers: Mapping[str, str]):
        self.headers = dict(headers)

    def intercept(self, request: Request) -> Request:
        if not self.headers:
            return request
        return request.with_headers(self.headers)


class ThrowOnErrorInterceptor(ResponseInterceptor):
    """Raise the status-specific ``HttpStatusError`` for any 4xx/5xx response."""

    def intercept(self, response: Response) -> Response:
        if response.is_error:
            raise HttpStatusError.from_response(response)
        return response


def logging_interceptors(log: Optional[Any] = None) -> tuple[RequestInterceptor, ResponseInterceptor]:
    return LoggingRequestInterceptor(log), LoggingResponseInterceptor(log)


def bearer_auth(token_provider: Callable[[], Optional[str]]) -> BearerAuthInterceptor:
    return BearerAuthInterceptor(token_provider)


def add_headers(headers: Mapping[str, str]) -> HeadersInterceptor:
    return HeadersInterceptor(headers)


def throw_on_error() -> ThrowOnErrorInterceptor:
    return ThrowOnErrorInterceptor()
