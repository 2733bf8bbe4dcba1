"""
Export Job Errors

Lookup and validation failures subclass the matching builtin so the
event consumer treats them as non-retryable.
"""

from typing import Optional


class ExportJobError(Exception):
    """Base class for export job failures."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class JobNotFoundError(ExportJobError, LookupError):
    """No export job with the given id."""

    def __init__(self, job_id: str):
        super().__init__(f"Export job not found: {job_id}", job_id)


class UnknownPartError(ExportJobError, ValueError):
    """A part was delivered for a service the job does not expect."""

    def __init__(self, job_id: str, service: str):
        super().__init__(f"Export job {job_id} has no part for service '{service}'", job_id)
        self.service = service


class JobAccessDeniedError(ExportJobError, PermissionError):
    """The job belongs to another user."""

    def __init__(self, job_id: str):
        super().__init__(f"Export job {job_id} belongs to another user", job_id)


class ExportNotReadyError(ExportJobError):
    """The archive has not been assembled yet."""

    def __init__(self, job_id: str):
        super().__init__(f"Export job {job_id} is not ready", job_id)


class ExportExpiredError(ExportJobError):
    """The job passed its expiry; the archive is gone."""

    def __init__(self, job_id: str):
        super().__init__(f"Export job {job_id} has expired", job_id)


class ExportFailedError(ExportJobError):
    """Assembly failed; the job will not produce an archive."""

    def __init__(self, job_id: str, reason: Optional[str] = None):
        super().__init__(f"Export job {job_id} failed", job_id)
        self.reason = reason
