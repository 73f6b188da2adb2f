import asyncio
import base64
import binascii
import logging
import secrets
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.constants.main_values import AUTH_REALM, PUBLIC_PATHS, REQUEST_ID_HEADER
from core.errors import AuthError, RequestTimeoutError
from core.handlers import error_response
from core.log import clear_request_id, set_request_id

logger = logging.getLogger("docgate.http")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns the request id and logs every request/response pair."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        method, path = request.method, request.url.path

        logger.info(f"incoming request {method} {path}")
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as e:
                # Unhandled errors are rendered while the request id is set.
                response = error_response(request, e, 500)
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.info(f"outgoing response {method} {path} status={response.status_code} duration={duration_ms}ms")
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_id()


class TimeoutMiddleware:
    """
    Bounds every HTTP request by the configured request timeout.

    The handler is cancelled when the deadline passes, which unwinds any open
    database session. If the response has already started it cannot be
    replaced, so the timeout propagates instead.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        timeout = request.app.state.settings.request_timeout
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, send_wrapper), timeout=timeout)
        except asyncio.TimeoutError as e:
            if response_started:
                raise
            logger.warning(f"Request timed out after {timeout}s: {request.method} {request.url.path}")
            error = RequestTimeoutError()
            error.__cause__ = e
            response = error_response(request, error, error.status_code, error.message)
            await response(scope, receive, send)


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """
    HTTP Basic authentication for every route except the API docs.

    Runs before the body is parsed, so unauthenticated requests are refused
    with 401 whatever they contain.
    """

    def __init__(self, app: ASGIApp, public_paths: tuple[str, ...] = PUBLIC_PATHS):
        super().__init__(app)
        self._public_paths = public_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self._public_paths:
            return await call_next(request)

        settings = request.app.state.settings
        credentials = self._extract_credentials(request)
        if credentials is None or not self._check(credentials, settings.auth_username, settings.auth_password):
            error = AuthError()
            return error_response(
                request,
                error,
                error.status_code,
                error.message,
                headers={"WWW-Authenticate": f'Basic realm="{AUTH_REALM}"'},
            )

        return await call_next(request)

    @staticmethod
    def _extract_credentials(request: Request) -> tuple[str, str] | None:
        header = request.headers.get("authorization", "")
        scheme, _, encoded = header.partition(" ")
        if scheme.lower() != "basic" or not encoded:
            return None
        try:
            decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None
        username, separator, password = decoded.partition(":")
        if not separator:
            return None
        return username, password

    @staticmethod
    def _check(credentials: tuple[str, str], username: str, password: str) -> bool:
        user_ok = secrets.compare_digest(credentials[0].encode(), username.encode())
        password_ok = secrets.compare_digest(credentials[1].encode(), password.encode())
        return user_ok and password_ok
