"""
Exception Handlers

Every failure leaves the API as {"error": ErrorBody}. Internal details
are logged, never returned.
"""

import logging
from typing import Dict, List, Optional, Type
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ....core.database.adapter import DatabaseError
from ....core.exports.errors import (
    ExportExpiredError,
    ExportFailedError,
    ExportJobError,
    ExportNotReadyError,
    JobAccessDeniedError,
    JobNotFoundError,
    UnknownPartError,
)
from ....core.observability.tracing import get_trace_id
from ..errors import APIException, ErrorCode
from ..responses import ErrorBody, ErrorDetail

logger = logging.getLogger(__name__)

EXPORT_ERROR_CODES: Dict[Type[ExportJobError], ErrorCode] = {
    JobNotFoundError: ErrorCode.EXPORT_JOB_NOT_FOUND,
    JobAccessDeniedError: ErrorCode.FORBIDDEN,
    UnknownPartError: ErrorCode.UNKNOWN_EXPORT_PART,
    ExportNotReadyError: ErrorCode.EXPORT_NOT_READY,
    ExportFailedError: ErrorCode.EXPORT_FAILED,
    ExportExpiredError: ErrorCode.EXPORT_EXPIRED,
}


def export_error_code(exc: ExportJobError) -> ErrorCode:
    for error_type in type(exc).__mro__:
        if error_type in EXPORT_ERROR_CODES:
            return EXPORT_ERROR_CODES[error_type]
    return ErrorCode.CONFLICT


def _render(
    request: Request,
    code: ErrorCode,
    message: str,
    details: Optional[List[ErrorDetail]] = None,
    *,
    level: int = logging.WARNING,
    **log_fields,
) -> JSONResponse:
    trace_id = get_trace_id() or str(uuid4())
    logger.log(
        level,
        f"{request.method} {request.url.path} -> {code.value}: {message}",
        extra={"error_code": code.value, "path": request.url.path, **log_fields},
    )
    body = ErrorBody(code=code.value, message=message, details=details, trace_id=trace_id)
    return JSONResponse(status_code=code.http_status, content={"error": body.model_dump(mode="json")})


def register_error_handlers(app: FastAPI):
    @app.exception_handler(APIException)
    async def on_api_exception(request: Request, exc: APIException):
        return _render(request, exc.code, exc.message, exc.details)

    @app.exception_handler(ExportJobError)
    async def on_export_error(request: Request, exc: ExportJobError):
        details = None
        if isinstance(exc, ExportFailedError) and exc.reason:
            details = [ErrorDetail(field="failureReason", message=exc.reason)]
        # An unknown part means a producer is misconfigured
        level = logging.ERROR if isinstance(exc, UnknownPartError) else logging.INFO
        return _render(request, export_error_code(exc), exc.message, details, level=level, job_id=exc.job_id)

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        details = [
            ErrorDetail(field=".".join(str(part) for part in err["loc"]), message=err["msg"], code=err["type"])
            for err in exc.errors()
        ]
        return _render(request, ErrorCode.VALIDATION_ERROR, "Request validation failed", details)

    @app.exception_handler(DatabaseError)
    async def on_database_error(request: Request, exc: DatabaseError):
        logger.error(f"Database error on {request.url.path}: {exc}", exc_info=exc)
        return _render(request, ErrorCode.DATABASE_ERROR, "A database error occurred", level=logging.ERROR)

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception):
        logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}", exc_info=exc)
        return _render(request, ErrorCode.INTERNAL_ERROR, "An internal error occurred", level=logging.ERROR)
