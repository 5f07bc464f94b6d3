"""
Error taxonomy and global exception handling.

Every trigger endpoint answers with ``{"success": false, "error": ...}`` on failure;
the HTTP status comes from the exception class.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Missing credentials, certificates or gateway config. Aborts the run before any network call."""
    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR, details)


class AuthError(AppError):
    """The billing provider refused to issue a token."""
    def __init__(self, message: str = "Billing provider authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR, details)


class SyncError(AppError):
    """A sync page, parse or mirror fetch failure."""
    def __init__(self, message: str = "Sync failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR, details)


class CoraAPIError(AppError):
    """Non-2xx answer from the Cora API."""
    def __init__(self, message: str, http_status: int, details: Optional[Dict[str, Any]] = None):
        self.http_status = http_status
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR, details)


class DispatchError(AppError):
    """Messaging gateway failure."""
    def __init__(self, message: str = "Dispatch failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR, details)


class TransientDispatchError(DispatchError):
    """Session/token/connection failure at the gateway. Worth retrying."""


class PermanentDispatchError(DispatchError):
    """Any other gateway failure. Never retried."""


class UnauthorizedException(AppError):
    """Shared secret mismatch."""
    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED, details)


def error_body(exc: AppError) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "success": False,
        "error": exc.message,
        "code": exc.__class__.__name__,
    }
    if exc.details:
        body["details"] = exc.details
    return body


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all uncaught exceptions globally."""

    if isinstance(exc, AppError):
        logger.warning(
            "Request aborted",
            path=request.url.path,
            code=exc.__class__.__name__,
            error=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    logger.exception("Unexpected error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "An unexpected error occurred. Please try again later.",
            "code": "InternalServerError",
        },
    )
