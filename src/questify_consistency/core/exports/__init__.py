"""
Export Jobs Package

User data export saga: coordinator, part delivery client and the
responder other services run.
"""

from .models import ExportJob, ExportJobStatus, JobPart, archive_key, part_key
from .errors import (
    ExportJobError,
    JobNotFoundError,
    UnknownPartError,
    JobAccessDeniedError,
    ExportNotReadyError,
    ExportExpiredError,
    ExportFailedError,
)
from .coordinator import ExportJobCoordinator, LocalPartProducer
from .client import ExportPartsClient, INTERNAL_TOKEN_HEADER
from .responder import ExportRequestResponder

__all__ = [
    "ExportJob",
    "ExportJobStatus",
    "JobPart",
    "archive_key",
    "part_key",
    "ExportJobError",
    "JobNotFoundError",
    "UnknownPartError",
    "JobAccessDeniedError",
    "ExportNotReadyError",
    "ExportExpiredError",
    "ExportFailedError",
    "ExportJobCoordinator",
    "LocalPartProducer",
    "ExportPartsClient",
    "INTERNAL_TOKEN_HEADER",
    "ExportRequestResponder",
]
