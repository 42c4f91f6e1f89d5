"""
Error Handling Module for the DigiComply Compliance State Engine

This module provides centralized error handling with:
- Custom exception hierarchy
- Compliance engine errors (rule validation, data gaps, calculation failures,
  optimistic-lock conflicts, persistence failures)
- Standardized error responses
- Error logging
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logger = logging.getLogger("digicomply.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    RULE_VALIDATION_ERROR = "RULE_VALIDATION_ERROR"
    DATA_INCOMPLETE = "DATA_INCOMPLETE"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    RULE_NOT_FOUND = "RULE_NOT_FOUND"
    ALERT_NOT_FOUND = "ALERT_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Calculation Errors (422/503)
    CALCULATION_ERROR = "CALCULATION_ERROR"
    CALCULATION_TIMEOUT = "CALCULATION_TIMEOUT"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class RuleValidationError(ValidationException):
    """Malformed compliance rule definition, rejected at catalog load or publish time"""

    def __init__(self, rule_code: str, errors: List[str]):
        self.rule_code = rule_code
        self.errors = errors
        super().__init__(
            message=f"Invalid rule definition {rule_code}: {'; '.join(errors)}",
            code=ErrorCode.RULE_VALIDATION_ERROR,
            details={"rule_code": rule_code, "errors": errors},
        )


class DataIncompleteError(AppException):
    """Entity profile lacks a field a rule needs; the rule is skipped"""

    def __init__(self, rule_code: str, missing_field: str):
        self.rule_code = rule_code
        self.missing_field = missing_field
        super().__init__(
            code=ErrorCode.DATA_INCOMPLETE,
            message=f"Rule {rule_code} needs entity field '{missing_field}' which is not set",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            field=missing_field,
            details={"rule_code": rule_code},
        )


class CalculationError(AppException):
    """Evaluation of a rule failed (formula error, division by zero, ...)"""

    def __init__(
        self,
        message: str,
        rule_code: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.rule_code = rule_code
        super().__init__(
            code=ErrorCode.CALCULATION_ERROR,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"rule_code": rule_code} if rule_code else None,
            original_error=original_error,
        )


class CalculationTimeoutError(AppException):
    """Recalculation exceeded its time budget and was aborted"""

    def __init__(self, entity_id: Union[str, UUID], timeout_seconds: float):
        super().__init__(
            code=ErrorCode.CALCULATION_TIMEOUT,
            message=f"Compliance state calculation for entity {entity_id} timed out after {timeout_seconds}s",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"entity_id": str(entity_id), "timeout_seconds": timeout_seconds},
        )


# ============================================================================
# Not Found Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        msg = message or f"{resource_type} not found"
        if resource_id and not message:
            msg = f"{resource_type} with ID '{resource_id}' not found"

        super().__init__(
            code=code,
            message=msg,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class EntityNotFoundException(NotFoundException):
    """Business entity not found"""

    def __init__(self, entity_id: Union[str, UUID]):
        super().__init__(
            resource_type="Business Entity",
            resource_id=entity_id,
            code=ErrorCode.ENTITY_NOT_FOUND,
        )


class RuleNotFoundException(NotFoundException):
    """Compliance rule not found"""

    def __init__(self, rule_code: str):
        super().__init__(
            resource_type="Compliance Rule",
            resource_id=rule_code,
            code=ErrorCode.RULE_NOT_FOUND,
        )


class AlertNotFoundException(NotFoundException):
    """Compliance alert not found"""

    def __init__(self, alert_id: Union[str, UUID]):
        super().__init__(
            resource_type="Compliance Alert",
            resource_id=alert_id,
            code=ErrorCode.ALERT_NOT_FOUND,
        )


# ============================================================================
# Conflict Exceptions
# ============================================================================

class ConflictException(AppException):
    """Resource conflict exception"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class ConcurrencyConflict(ConflictException):
    """Another calculation advanced the state row first; retry with a fresh read"""

    def __init__(
        self,
        entity_id: Union[str, UUID],
        expected_version: Optional[int],
    ):
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            message=f"Compliance state of entity {entity_id} was modified concurrently",
            code=ErrorCode.VERSION_CONFLICT,
            details={"entity_id": str(entity_id), "expected_version": expected_version},
        )


# ============================================================================
# Database Exceptions
# ============================================================================

class DatabaseException(AppException):
    """Database error exception"""

    def __init__(
        self,
        message: str = "A database error occurred",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            original_error=original_error,
        )


class PersistenceError(DatabaseException):
    """Storage write failed; the previous state is retained untouched"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            message=message,
            code=ErrorCode.PERSISTENCE_ERROR,
            original_error=original_error,
        )

# ============================================================================
# Exception Handlers
# ============================================================================

# Status codes raised by FastAPI/Starlette itself (unknown route, wrong method, ...)
_HTTP_STATUS_CODES = {
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_409_CONFLICT: ErrorCode.RESOURCE_CONFLICT,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ErrorCode.VALIDATION_ERROR,
}


def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Build the ``{"detail": {...}}`` error envelope shared by every handler"""
    body: Dict[str, Any] = {
        "code": code.value,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if field:
        body["field"] = field
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"detail": body})


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Engine and service errors carry their own code and status"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.code.value} on {request.method} {request.url.path}: {exc.message}",
        extra={"code": exc.code.value, "details": exc.details},
        exc_info=exc.original_error,
    )
    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if exc.status_code in _HTTP_STATUS_CODES:
        code = _HTTP_STATUS_CODES[exc.status_code]
    elif exc.status_code < 500:
        code = ErrorCode.INVALID_INPUT
    else:
        code = ErrorCode.INTERNAL_ERROR
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {message}")
    return create_error_response(code=code, message=message, status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body / query validation; the first failing field is surfaced as ``field``"""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(f"Rejected {request.method} {request.url.path}: {len(errors)} invalid field(s)")
    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
        field=errors[0]["field"] if errors else None,
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Storage errors that escaped the services.

    Engine writes are wrapped in PersistenceError before they get here; this
    covers reads and the filing/acknowledgement writes.
    """
    code = ErrorCode.DATABASE_ERROR
    message = "A database error occurred"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, IntegrityError):
        code = ErrorCode.DATA_INTEGRITY_ERROR
        message = "Data integrity constraint violated"
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, DataError):
        message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}", exc_info=exc)
    return create_error_response(code=code, message=message, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}", exc_info=exc)
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Error Tracking Middleware
# ============================================================================

class ErrorTrackingMiddleware:
    """ASGI middleware logging any exception that escapes a request, then re-raising it"""

    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            logger.error(
                f"Request {scope.get('method')} {scope.get('path', 'unknown')} failed with {type(exc).__name__}",
                exc_info=True,
            )
            raise
