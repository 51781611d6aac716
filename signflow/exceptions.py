"""
Custom exceptions and error handlers.
"""
import logging
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from signflow.config import is_allowed_origin
from signflow.utils.logging import get_request_id

logger = logging.getLogger(__name__)


def _add_cors_headers(response: JSONResponse, request: Request) -> JSONResponse:
    """Add CORS headers to error response."""
    origin = request.headers.get("origin")
    if is_allowed_origin(origin):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class NotFoundError(AppException):
    """
    Resource not found.

    Also raised for entities outside the caller's scope so other
    tenants' data is never confirmed to exist.
    """

    def __init__(self, resource: str, resource_id: str, code: str = "NOT_FOUND"):
        super().__init__(
            status_code=404,
            code=code,
            message=f"{resource} not found: {resource_id}",
        )


class ValidationException(AppException):
    """Validation error."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        code: str = "VALIDATION_ERROR",
    ):
        super().__init__(
            status_code=400,
            code=code,
            message=message,
            details=details,
        )


class PermissionDeniedException(AppException):
    """Entity exists but the caller may not perform the operation on it."""

    def __init__(self, message: str, code: str = "FORBIDDEN", details: Optional[dict] = None):
        super().__init__(
            status_code=403,
            code=code,
            message=message,
            details=details,
        )


class StateConflictException(AppException):
    """Action not allowed in the entity's current lifecycle state."""

    def __init__(
        self,
        message: str,
        code: str = "STATE_CONFLICT",
        details: Optional[dict] = None,
        status_code: int = 409,
    ):
        super().__init__(
            status_code=status_code,
            code=code,
            message=message,
            details=details,
        )


class ExternalDependencyException(AppException):
    """Storage or email collaborator failure."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(
            status_code=502,
            code="EXTERNAL_DEPENDENCY_ERROR",
            message=f"{service}: {message}",
            details={"service": service},
        )


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Build standardized error response."""
    response = {
        "error": True,
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        response["details"] = details
    return response


async def app_exception_handler(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    """Handle application exceptions."""
    if exc.status_code >= 500:
        logger.error(f"AppException: {exc.code} - {exc.message}")
    else:
        logger.warning(f"AppException: {exc.code} - {exc.message}")
    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(
            exc.status_code,
            exc.code,
            exc.message,
            exc.details,
        ),
    )
    return _add_cors_headers(response, request)


async def http_exception_handler(
    request: Request,
    exc: HTTPException,
) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(f"HTTPException: {exc.status_code} - {exc.detail}")

    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", "HTTP_ERROR")
        message = exc.detail.get("message", str(exc.detail))
    else:
        code = "HTTP_ERROR"
        message = str(exc.detail)

    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(exc.status_code, code, message),
        headers=getattr(exc, "headers", None),
    )
    return _add_cors_headers(response, request)


async def validation_exception_handler(
    request: Request,
    exc: ValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors (request bodies and internal models)."""
    logger.warning(f"ValidationError: {exc.errors()}")

    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    response = JSONResponse(
        status_code=422,
        content=build_error_response(
            422,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": errors},
        ),
    )
    return _add_cors_headers(response, request)


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")

    response = JSONResponse(
        status_code=500,
        content=build_error_response(
            500,
            "INTERNAL_ERROR",
            "An unexpected error occurred",
        ),
    )
    return _add_cors_headers(response, request)
