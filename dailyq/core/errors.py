"""
Engagement errors and the JSON envelope every failed request is rendered in.

The store turns driver exceptions into ``StoreError``; the flow and services
raise the rest. Handlers never leak tracebacks, only ``code`` and ``message``.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from dailyq.core.logging import LOGGER_NAME, get_request_id

logger = logging.getLogger(LOGGER_NAME)


class AppError(Exception):
    """Base for errors that carry a stable machine-readable code."""

    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or type(self).code
        self.status_code = status_code or type(self).status_code
        self.request_id = request_id

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class InsufficientBalanceError(AppError):
    """Raised when a joker is requested from an empty balance."""
    code = "insufficient_balance"
    status_code = 409


class StoreError(AppError):
    """Transport or database failure behind the answer store."""
    code = "store_unavailable"
    status_code = 503


_HTTP_CODES = {401: "unauthorized", 404: "not_found", 405: "method_not_allowed"}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _render(request: Request, status: int, code: str, message: str, *, request_id: Optional[str] = None) -> JSONResponse:
    rid = request_id or _request_id(request)
    response = JSONResponse(
        status_code=status,
        content={"error": {"code": code, "message": message, "request_id": rid}, "detail": message},
    )
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, "app.error", extra={"error_code": exc.code, "status": exc.status_code, "path": request.url.path})
    return _render(request, exc.status_code, exc.code, exc.message, request_id=exc.request_id)


async def http_error_handler(request: Request, exc: HTTPException):
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    logger.warning("http.error", extra={"error_code": code, "status": exc.status_code, "path": request.url.path})
    return _render(request, exc.status_code, code, str(exc.detail or "HTTP error"))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and query values share the validation_error code."""
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{where}: {first.get('msg', 'invalid value')}" if where else "Invalid request"
    logger.warning("request.invalid", extra={"error_code": "validation_error", "status": 422, "path": request.url.path})
    return _render(request, 422, "validation_error", message)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled.exception", exc_info=exc, extra={"error_code": "internal_error", "path": request.url.path})
    return _render(request, 500, "internal_error", "Unexpected error")
