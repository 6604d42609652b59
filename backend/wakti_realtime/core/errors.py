"""
Centralized error handling for function and API failures.
Exception types carry their HTTP status so routes stay thin; handlers render every failure as {"error": "..."}.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants: status codes and user-facing messages
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 400
STATUS_UNAUTHORIZED = 401
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_INTERNAL_ERROR = 500
STATUS_BAD_GATEWAY = 502  # push provider rejected or unreachable

MSG_PUSH_NOT_CONFIGURED = "OneSignal not configured"
MSG_AUTH_NOT_CONFIGURED = "Supabase JWT secret not configured"
MSG_DATABASE_NOT_CONFIGURED = "Database not configured"
MSG_UNAUTHORIZED = "Unauthorized"


class ServiceError(Exception):
    """Base for errors that map to an HTTP status and a {"error"} body."""

    status_code = STATUS_INTERNAL_ERROR

    def __init__(self, message: str, *, extra: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message, **self.extra}


class ConfigurationError(ServiceError):
    status_code = STATUS_INTERNAL_ERROR


class ValidationError(ServiceError):
    status_code = STATUS_BAD_REQUEST


class AuthenticationError(ServiceError):
    status_code = STATUS_UNAUTHORIZED


class NotFoundError(ServiceError):
    status_code = STATUS_NOT_FOUND


class ConflictError(ServiceError):
    status_code = STATUS_CONFLICT


class ProviderError(ServiceError):
    status_code = STATUS_BAD_GATEWAY


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= STATUS_INTERNAL_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # First error is enough for the client; keep raw inputs out of the body
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
    return JSONResponse(status_code=STATUS_BAD_REQUEST, content={"error": message})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=getattr(exc, "headers", None))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
