"""
Response bodies.

Errors from every endpoint render as {"error": ErrorBody}, e.g.

    {"error": {"code": "EXPORT_NOT_READY", "message": "Export job ... is not ready",
               "details": null, "trace_id": "4bf92f35...", "timestamp": "..."}}
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[List[ErrorDetail]] = None
    trace_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ExportJobCreated(BaseModel):
    """202 body of POST /users/me/export-jobs."""

    jobId: str
    status: str
    expiresAt: datetime


class ExportJobStatusResponse(BaseModel):
    jobId: str
    status: str
    createdAt: datetime
    expiresAt: datetime
    lastProgressAt: Optional[datetime] = None
    failureReason: Optional[str] = None
    missingParts: List[str] = Field(default_factory=list)


class DownloadResponse(BaseModel):
    url: str
