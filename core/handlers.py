import logging
import traceback
from datetime import datetime, timezone
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from core.errors import ApiError, ValidationError
from core.log import get_request_id
from core.validation import format_errors
from models.api import ErrorDebug, ErrorResponse

logger = logging.getLogger("docgate")

INTERNAL_ERROR_MESSAGE = "Internal server error"


def error_response(
    request: Request,
    exc: BaseException,
    status_code: int,
    message: str | None = None,
    headers: Dict[str, str] | None = None,
) -> JSONResponse:
    """
    Build the {error, debug?} body shared by every failure path.

    5xx responses never carry the underlying message unless debug mode is on,
    but are always logged with the request id.
    """
    if status_code >= 500:
        logger.error(f"{INTERNAL_ERROR_MESSAGE}: {exc!r}", exc_info=exc)
        message = INTERNAL_ERROR_MESSAGE
    body = ErrorResponse(error=message or INTERNAL_ERROR_MESSAGE)

    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.debug:
        body.debug = ErrorDebug(
            message=str(exc),
            stack="".join(traceback.format_exception(exc)),
            name=type(exc).__name__,
            timestamp=datetime.now(timezone.utc).isoformat(),
            request_id=get_request_id(),
        )

    return JSONResponse(
        body.model_dump(by_alias=True, exclude_none=True),
        status_code=status_code,
        headers=headers,
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(request, exc, exc.status_code, exc.message)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError(format_errors(exc.errors()))
    return error_response(request, error, error.status_code, error.message)


async def store_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    return error_response(request, exc, 500)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(request, exc, exc.status_code, str(exc.detail), headers=exc.headers)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return error_response(request, exc, 500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PyMongoError, store_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
