"""
shared/utils/errors.py
Application error taxonomy and the global exception handlers that
serialize every failure as {success: false, message, error?}.
"""

import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pybreaker import CircuitBreakerError
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import settings

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    """Base error carrying an HTTP status code. Defaults to 500."""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: Any = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(
            status_code=status_code or self.status_code_default,
            detail=message,
            headers=headers,
        )
        self.message = message
        self.error = error


class ValidationError(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST


class AuthenticationError(AppError):
    status_code_default = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required", **kwargs):
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(message, **kwargs)


class AuthorizationError(AppError):
    status_code_default = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Not authorized to perform this action", **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(AppError):
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str = "Resource", **kwargs):
        super().__init__(f"{resource} not found", **kwargs)


class ConflictError(AppError):
    status_code_default = status.HTTP_409_CONFLICT


def _error_body(message: str, error: Any = None) -> dict:
    body = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope-producing handlers to the app."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        error = getattr(exc, "error", None)
        if exc.status_code >= 500:
            request_id = getattr(request.state, "request_id", None)
            logger.error(f"[{request_id}] {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail), error),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg"),
            }
            for err in exc.errors()
        ]
        first = errors[0] if errors else None
        message = (
            f"Validation failed: {first['field']} {first['message']}".strip()
            if first
            else "Validation failed"
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(message, errors),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_exception_handler(request: Request, exc: IntegrityError):
        logger.warning(f"Integrity error: {exc.orig}")
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=_error_body("Duplicate or conflicting record"),
        )

    @app.exception_handler(CircuitBreakerError)
    async def breaker_exception_handler(request: Request, exc: CircuitBreakerError):
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Service degraded - circuit breaker open: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=_error_body("Service temporarily unavailable. Please try again later."),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all. Stack traces are only exposed outside production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=exc)
        error = None if settings.is_production else traceback.format_exc()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("An internal server error occurred", error),
        )
