"""
Deedkeeper Error Taxonomy

Every error that crosses a service boundary is a DeedkeeperError carrying a
stable `code` and a human-readable `message`. Routers turn them into
{"code": ..., "message": ...} JSON bodies.

Per-item failures inside scans (integrity check, reclamation) are NOT raised;
they are collected into the result's issues/errors list.
"""

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Exception Hierarchy
# =============================================================================

class DeedkeeperError(Exception):
    """Base exception for all Deedkeeper errors."""

    code: str = "unknown"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class AuthenticationError(DeedkeeperError):
    """Missing, malformed, expired or badly signed credential."""

    code = "unauthenticated"
    http_status = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(DeedkeeperError):
    """Authenticated, but the role does not allow the operation."""

    code = "permission-denied"
    http_status = status.HTTP_403_FORBIDDEN


class ValidationError(DeedkeeperError):
    """Malformed or missing request fields."""

    code = "invalid-argument"
    http_status = status.HTTP_400_BAD_REQUEST


class NotFoundError(DeedkeeperError):
    """Target entity does not exist."""

    code = "not-found"
    http_status = status.HTTP_404_NOT_FOUND


class ConflictError(DeedkeeperError):
    """Entity already exists (e.g. duplicate email)."""

    code = "already-exists"
    http_status = status.HTTP_409_CONFLICT


class InternalError(DeedkeeperError):
    """Unexpected failure. The original exception is kept as __cause__."""

    code = "internal"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


# =============================================================================
# Logging Context
# =============================================================================

def log_context(function_name: str, user_id: Optional[str] = None, **extra: Any) -> dict:
    """Build the structured context attached to service log records."""
    context = {"functionName": function_name, "userId": user_id}
    context.update(extra)
    return context


# =============================================================================
# Service Boundary
# =============================================================================

def service_boundary(function_name: str, failure_message: str):
    """
    Decorator for async service methods.

    DeedkeeperErrors pass through untouched. Anything else is logged with
    {functionName, userId} and re-raised as InternalError(failure_message),
    so internal details never reach the caller.

    The user id is read from a parameter named `caller` when the wrapped
    function has one.

    Usage:
        @service_boundary("createBackup", "Backup creation failed")
        async def create_backup(self, caller, collections): ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except DeedkeeperError:
                raise
            except Exception as e:
                user_id = _caller_uid(signature, args, kwargs)
                logger.error(
                    f"Error in {function_name}: {e}",
                    exc_info=True,
                    extra={"context": log_context(function_name, user_id)},
                )
                raise InternalError(failure_message) from e

        return wrapper

    return decorator


def _caller_uid(signature: inspect.Signature, args: tuple, kwargs: dict) -> Optional[str]:
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return None
    caller = bound.arguments.get("caller")
    return getattr(caller, "uid", None)


# =============================================================================
# FastAPI Exception Handlers
# =============================================================================

async def deedkeeper_error_handler(request: Request, exc: DeedkeeperError) -> JSONResponse:
    """Render a DeedkeeperError as {code, message}."""
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Map pydantic request validation failures onto invalid-argument."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    error = ValidationError("; ".join(messages) or "Invalid request")
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: never leak internals."""
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    error = InternalError("Internal server error")
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the error envelope handlers on the app."""
    app.add_exception_handler(DeedkeeperError, deedkeeper_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
