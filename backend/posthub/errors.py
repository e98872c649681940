"""Service-layer errors and their mapping onto HTTP responses."""
from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, Optional, TypeVar

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from .logging import get_logger, log_error

logger = get_logger(__name__)

T = TypeVar("T")


class ServiceError(Exception):
    """Base class for expected failures that reach the client unchanged."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "validation_error"
    default_message: str = "Bad request"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Malformed or mismatched input (400)."""


class UnauthorizedError(ServiceError):
    """Bad credentials or tokens (401)."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "unauthorized"
    default_message = "Unauthorized"


class ForbiddenError(ServiceError):
    """Caller does not own the resource (403)."""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "forbidden"
    default_message = "Forbidden"


class NotFoundError(ServiceError):
    """Referenced entity does not exist (404)."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"
    default_message = "Not found"


class ConflictError(ServiceError):
    """Uniqueness violation (409)."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "conflict"
    default_message = "Conflict"


class InternalError(ServiceError):
    """Unexpected failure; the message never carries the original detail."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "server_error"
    default_message = "Internal server error"

    def __init__(self) -> None:
        super().__init__(self.default_message)


def service_boundary(
    operation: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Let ServiceErrors through; log anything else and raise InternalError."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except ServiceError:
                raise
            except Exception as exc:
                log_error(exc, operation)
                raise InternalError() from exc

        return wrapper

    return decorator


def integrity_violation(exc: IntegrityError) -> Optional[str]:
    """Classify a constraint failure as ``"unique"`` or ``"foreign_key"``."""

    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == "23505":
        return "unique"
    if sqlstate == "23503":
        return "foreign_key"

    message = str(orig if orig is not None else exc).upper()
    if "UNIQUE" in message:
        return "unique"
    if "FOREIGN KEY" in message:
        return "foreign_key"
    return None


def _error_response(status_code: int, message: Any, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "code": code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers that render the error taxonomy consistently."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message, exc.error_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            jsonable_encoder(exc.errors()),
            ValidationError.error_code,
        )

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception) -> JSONResponse:
        log_error(exc, f"{request.method} {request.url.path}")
        return _error_response(
            InternalError.status_code,
            InternalError.default_message,
            InternalError.error_code,
        )
