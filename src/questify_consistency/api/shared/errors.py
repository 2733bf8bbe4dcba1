"""
API Errors

Error codes, their HTTP statuses, and the exceptions routers raise.
Export saga failures are raised from the core as ExportJobError and
mapped onto codes in middleware.error_handler.
"""

from enum import Enum
from typing import List, Optional

from .responses import ErrorDetail


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    EXPORT_JOB_NOT_FOUND = "EXPORT_JOB_NOT_FOUND"
    OUTBOX_RECORD_NOT_FOUND = "OUTBOX_RECORD_NOT_FOUND"
    UNKNOWN_EXPORT_PART = "UNKNOWN_EXPORT_PART"
    EXPORT_NOT_READY = "EXPORT_NOT_READY"
    EXPORT_FAILED = "EXPORT_FAILED"
    EXPORT_EXPIRED = "EXPORT_EXPIRED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self, 500)


_HTTP_STATUS = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.EXPORT_JOB_NOT_FOUND: 404,
    ErrorCode.OUTBOX_RECORD_NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.EXPORT_NOT_READY: 409,
    ErrorCode.EXPORT_FAILED: 409,
    ErrorCode.EXPORT_EXPIRED: 410,
    ErrorCode.UNKNOWN_EXPORT_PART: 422,
}


class APIException(Exception):
    """Raised by routers; rendered as {"error": {...}} by the error handler."""

    def __init__(self, code: ErrorCode, message: str, details: Optional[List[ErrorDetail]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return self.code.http_status


class NotFoundError(APIException, LookupError):
    _CODES = {
        "Export job": ErrorCode.EXPORT_JOB_NOT_FOUND,
        "Outbox record": ErrorCode.OUTBOX_RECORD_NOT_FOUND,
    }

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} '{resource_id}' not found" if resource_id else f"{resource} not found"
        super().__init__(self._CODES.get(resource, ErrorCode.NOT_FOUND), message)
        self.resource = resource
        self.resource_id = resource_id


class UnauthorizedError(APIException, PermissionError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(ErrorCode.UNAUTHORIZED, message)

