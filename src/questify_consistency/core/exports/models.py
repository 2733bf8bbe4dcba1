"""
Export Job Models

An export job collects one part per expected service and packages them
into a single archive once every part has arrived.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

ARCHIVE_NAME = "questify-export.zip"
SUMMARY_ENTRY = "summary.json"

# Archive entry per service; other services get "<service>.json"
PART_ENTRY_NAMES: Dict[str, str] = {
    "user-service": "your-data.json",
    "quest-service": "quests.json",
    "submission-service": "submissions.json",
    "proof-service": "proofs.json",
}


class ExportJobStatus(str, Enum):
    """
    Export job lifecycle.

    PENDING -> RUNNING -> COMPLETED; any non-EXPIRED state -> EXPIRED once
    past expires_at; RUNNING -> FAILED on an assembly error.
    """
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class JobPart(BaseModel):
    """One expected service's contribution to a job."""

    job_id: str
    service: str
    received: bool = False
    received_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobPart":
        return cls(
            job_id=row["job_id"],
            service=row["service"],
            received=bool(row["received"]),
            received_at=row.get("received_at"),
        )


class ExportJob(BaseModel):
    """A row of export_jobs plus, when loaded, its parts."""

    id: str
    user_id: str
    status: ExportJobStatus
    created_at: datetime
    expires_at: datetime
    last_progress_at: Optional[datetime] = None
    zip_object_key: Optional[str] = None
    failure_reason: Optional[str] = None
    parts: List[JobPart] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any], parts: Optional[List[JobPart]] = None) -> "ExportJob":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            status=ExportJobStatus(row["status"]),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            last_progress_at=row.get("last_progress_at"),
            zip_object_key=row.get("zip_object_key"),
            failure_reason=row.get("failure_reason"),
            parts=parts or [],
        )

    @property
    def missing_parts(self) -> List[str]:
        return sorted(part.service for part in self.parts if not part.received)

    def is_past_expiry(self, now: datetime) -> bool:
        return self.expires_at < now

    def to_status_dict(self) -> Dict[str, Any]:
        """Client-facing status view."""
        return {
            "jobId": self.id,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "lastProgressAt": self.last_progress_at.isoformat() if self.last_progress_at else None,
            "failureReason": self.failure_reason,
            "missingParts": self.missing_parts,
        }


def part_entry_name(service: str) -> str:
    return PART_ENTRY_NAMES.get(service, f"{service}.json")


def job_prefix(user_id: str, job_id: str) -> str:
    return f"exports/{user_id}/{job_id}"


def part_key(user_id: str, job_id: str, service: str) -> str:
    """Blob key of one service's part; stable so redelivery overwrites."""
    return f"{job_prefix(user_id, job_id)}/parts/{service}.json"


def archive_key(user_id: str, job_id: str) -> str:
    return f"{job_prefix(user_id, job_id)}/{ARCHIVE_NAME}"
