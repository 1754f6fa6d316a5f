import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class IReporterError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(IReporterError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class Unauthenticated(IReporterError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class Forbidden(IReporterError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFound(IReporterError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(IReporterError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class StoreError(IReporterError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"


class StoreTimeout(StoreError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Database operation timed out"


def _error_body(message: str, details: Any = None) -> dict:
    body = {"error": message}
    if details is not None:
        body["details"] = details
    return body


async def ireporter_error_handler(request: Request, exc: IReporterError):
    if isinstance(exc, StoreError):
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)

    headers = None
    if isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    logger.info("%s %s -> 400: %d validation error(s)", request.method, request.url.path, len(errors))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Validation failed", errors),
    )


async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("%s %s -> 500: unhandled store failure", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(StoreError.default_message),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IReporterError, ireporter_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
