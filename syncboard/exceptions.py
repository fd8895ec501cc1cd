"""Application-level exception types.

Convention:
- ``AppError`` and its subclasses: structured errors with a stable ``code``,
  a human message, optional details, a creation timestamp and a ``trace_id``
  (UUID). Wrapping an ``AppError`` keeps its trace id so log lines on both
  sides of a boundary can be stitched together. The global handler maps the
  code to an HTTP status and returns the ``to_dict()`` envelope.
- ``InternalServerError``: for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for business validation errors that are safe to forward
  to clients. ``ValidationError`` is both an ``AppError`` and a ``ValueError``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable error codes shared by the API and the event stream."""

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"

    # Authentication and authorization
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"

    # Resources
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    CONFLICT_ERROR = "CONFLICT_ERROR"
    ALREADY_EXISTS_ERROR = "ALREADY_EXISTS_ERROR"

    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    FILESYSTEM_ERROR = "FILESYSTEM_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # External services
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    TRANSFER_ENGINE_ERROR = "TRANSFER_ENGINE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"

    # Business logic
    BUSINESS_LOGIC_ERROR = "BUSINESS_LOGIC_ERROR"
    OPERATION_FAILED = "OPERATION_FAILED"
    INVALID_STATE = "INVALID_STATE"


class AppError(Exception):
    """Structured application error."""

    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        details: str = "",
        cause: BaseException | None = None,
        trace_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code if code is not None else self.default_code
        self.message = message
        self.details = details
        self.cause = cause
        self.timestamp = datetime.now(UTC)
        self.trace_id = trace_id or str(uuid.uuid4())
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.details:
            return f"[{self.code}] {self.message}: {self.details}"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON error envelope."""
        body: dict[str, Any] = {
            "code": str(self.code),
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "trace_id": self.trace_id,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ValidationError(AppError, ValueError):
    """Input rejected at admission; never mutates state."""

    default_code = ErrorCode.VALIDATION_ERROR


class AuthorizationError(AppError):
    default_code = ErrorCode.AUTHORIZATION_ERROR


class NotFoundError(AppError):
    default_code = ErrorCode.NOT_FOUND_ERROR


class ConflictError(AppError):
    default_code = ErrorCode.CONFLICT_ERROR


class AlreadyExistsError(ConflictError):
    default_code = ErrorCode.ALREADY_EXISTS_ERROR


class InternalError(AppError):
    default_code = ErrorCode.INTERNAL_ERROR


class DatabaseError(AppError):
    default_code = ErrorCode.DATABASE_ERROR


class FileSystemError(AppError):
    default_code = ErrorCode.FILESYSTEM_ERROR


class ConfigurationError(AppError):
    default_code = ErrorCode.CONFIGURATION_ERROR


class ExternalServiceError(AppError):
    default_code = ErrorCode.EXTERNAL_SERVICE_ERROR


class TransferEngineError(ExternalServiceError):
    """Raised when the transfer engine reports a failure for a task."""

    default_code = ErrorCode.TRANSFER_ENGINE_ERROR


class NetworkError(AppError):
    default_code = ErrorCode.NETWORK_ERROR


class OperationTimeoutError(AppError):
    default_code = ErrorCode.TIMEOUT_ERROR


class BusinessLogicError(AppError):
    default_code = ErrorCode.BUSINESS_LOGIC_ERROR


class OperationFailedError(AppError):
    default_code = ErrorCode.OPERATION_FAILED


class InvalidStateError(AppError):
    default_code = ErrorCode.INVALID_STATE


class OperationCancelledError(AppError):
    """Delivered on a task's completion future when the task was cancelled."""

    default_code = ErrorCode.OPERATION_FAILED


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``syncboard/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


_CODE_CLASSES: dict[ErrorCode, type[AppError]] = {
    ErrorCode.VALIDATION_ERROR: ValidationError,
    ErrorCode.INVALID_INPUT: ValidationError,
    ErrorCode.MISSING_FIELD: ValidationError,
    ErrorCode.AUTHORIZATION_ERROR: AuthorizationError,
    ErrorCode.NOT_FOUND_ERROR: NotFoundError,
    ErrorCode.CONFLICT_ERROR: ConflictError,
    ErrorCode.ALREADY_EXISTS_ERROR: AlreadyExistsError,
    ErrorCode.INTERNAL_ERROR: InternalError,
    ErrorCode.DATABASE_ERROR: DatabaseError,
    ErrorCode.FILESYSTEM_ERROR: FileSystemError,
    ErrorCode.CONFIGURATION_ERROR: ConfigurationError,
    ErrorCode.EXTERNAL_SERVICE_ERROR: ExternalServiceError,
    ErrorCode.TRANSFER_ENGINE_ERROR: TransferEngineError,
    ErrorCode.NETWORK_ERROR: NetworkError,
    ErrorCode.TIMEOUT_ERROR: OperationTimeoutError,
    ErrorCode.BUSINESS_LOGIC_ERROR: BusinessLogicError,
    ErrorCode.OPERATION_FAILED: OperationFailedError,
    ErrorCode.INVALID_STATE: InvalidStateError,
}

_TYPE_CLASSIFIERS: tuple[tuple[type[BaseException], ErrorCode], ...] = (
    (FileNotFoundError, ErrorCode.NOT_FOUND_ERROR),
    (PermissionError, ErrorCode.AUTHORIZATION_ERROR),
    (TimeoutError, ErrorCode.TIMEOUT_ERROR),
    (ConnectionError, ErrorCode.NETWORK_ERROR),
)

# Checked in order; the first matching group wins.
_CLASSIFIERS: tuple[tuple[tuple[str, ...], ErrorCode], ...] = (
    (("not found", "no such file", "does not exist"), ErrorCode.NOT_FOUND_ERROR),
    (("permission denied", "access denied", "forbidden"), ErrorCode.AUTHORIZATION_ERROR),
    (("timeout", "timed out", "deadline exceeded"), ErrorCode.TIMEOUT_ERROR),
    (("network", "connection", "dial"), ErrorCode.NETWORK_ERROR),
    (("invalid", "malformed", "parse"), ErrorCode.VALIDATION_ERROR),
)


def new_error(code: ErrorCode, message: str, details: str = "") -> AppError:
    """Build an error of the class registered for ``code``."""
    cls = _CODE_CLASSES.get(code, AppError)
    return cls(message, code=code, details=details)


def wrap_error(err: BaseException, code: ErrorCode, message: str) -> AppError:
    """Wrap ``err`` with extra context, preserving an existing trace id."""
    cls = _CODE_CLASSES.get(code, AppError)
    if isinstance(err, AppError):
        return cls(message, code=code, details=str(err), cause=err, trace_id=err.trace_id)
    return cls(message, code=code, details=str(err), cause=err)


def classify_error(err: BaseException) -> AppError:
    """Convert a foreign exception into an ``AppError`` by inspecting its message."""
    if isinstance(err, AppError):
        return err
    for exc_type, code in _TYPE_CLASSIFIERS:
        if isinstance(err, exc_type):
            return wrap_error(err, code, str(err) or type(err).__name__)
    text = str(err).lower()
    for needles, code in _CLASSIFIERS:
        if any(needle in text for needle in needles):
            return wrap_error(err, code, str(err))
    return wrap_error(err, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def error_code(err: BaseException) -> ErrorCode | None:
    """Return the code of an ``AppError``, or None for foreign exceptions."""
    if isinstance(err, AppError):
        return err.code
    return None


def trace_id_of(err: BaseException) -> str:
    """Return the trace id of an ``AppError``, or an empty string."""
    if isinstance(err, AppError):
        return err.trace_id
    return ""
