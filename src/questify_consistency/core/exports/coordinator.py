"""
Export Job Coordinator

Runs the user data export saga:

1. create_job() records the job, one part row per expected service and
   a UserExportRequested event in a single transaction, then produces the
   coordinator's own part in-process.
2. Every other service answers the event by delivering its part, which
   arrives through receive_part() (usually via the internal HTTP endpoint).
3. When every part is in, the parts are packaged into one archive and the
   job becomes COMPLETED. A claim on the job row lets one caller assemble;
   the row lock is only held to record the outcome.
4. expire_stale_jobs() marks jobs past their deadline EXPIRED and then
   deletes their blobs on a best-effort basis.

The requester never waits on other services; it polls the job status.
A service that never delivers leaves the job RUNNING until it expires.
"""

import asyncio
import io
import json
import logging
import time
import zipfile
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import uuid4

from ..config import ExportSettings
from ..database.adapter import DatabaseAdapter, Transaction
from ..events.taxonomy import ExportEventType, UserExportCompletedV1, UserExportRequestedV1
from ..observability.metrics import record_counter, record_histogram
from ..observability.tracing import create_span
from ..outbox.models import format_error
from ..outbox.writer import OutboxWriter
from ..storage.base import BlobStore
from .errors import (
    ExportExpiredError,
    ExportFailedError,
    ExportNotReadyError,
    JobAccessDeniedError,
    JobNotFoundError,
    UnknownPartError,
)
from .models import (
    SUMMARY_ENTRY,
    ExportJob,
    ExportJobStatus,
    JobPart,
    archive_key,
    part_entry_name,
    part_key,
)

logger = logging.getLogger(__name__)

# Builds the coordinator's own slice of a user's data
LocalPartProducer = Callable[[str], Awaitable[Any]]


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class ExportJobCoordinator:
    """
    Coordinates export jobs across services.

    Usage:
        coordinator = ExportJobCoordinator(db, store, writer, settings,
                                           local_part_producer=profile_export)
        job = await coordinator.create_job("u1")
        ...
        await coordinator.receive_part(job.id, "quest-service", {...})
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        store: BlobStore,
        writer: OutboxWriter,
        settings: Optional[ExportSettings] = None,
        *,
        local_part_producer: Optional[LocalPartProducer] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._db = db
        self._store = store
        self._writer = writer
        self.settings = settings or ExportSettings()
        self._local_part_producer = local_part_producer
        self._clock = clock

    @property
    def expected_services(self) -> List[str]:
        return list(self.settings.expected_services)

    # =========================================================================
    # Saga operations
    # =========================================================================

    async def create_job(self, user_id: str) -> ExportJob:
        """
        Start an export for a user.

        Returns the job in RUNNING state without waiting on any other
        service. A failure while producing the local part is logged and
        leaves the job RUNNING.
        """
        job_id = str(uuid4())
        now = self._clock()
        expires_at = now + timedelta(hours=self.settings.ttl_hours)

        async with self._db.transaction() as tx:
            await tx.execute(
                """
                INSERT INTO export_jobs (id, user_id, status, created_at, expires_at, last_progress_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                job_id,
                user_id,
                ExportJobStatus.RUNNING.value,
                now,
                expires_at,
                now,
            )
            for service in self.expected_services:
                await tx.execute(
                    "INSERT INTO export_job_parts (job_id, service, received) VALUES ($1, $2, $3)",
                    job_id,
                    service,
                    False,
                )
            await self._writer.publish(
                self.settings.requests_topic,
                user_id,
                ExportEventType.USER_EXPORT_REQUESTED.value,
                1,
                self.settings.source_service,
                UserExportRequestedV1(job_id=job_id, user_id=user_id),
                tx=tx,
            )

        record_counter("export_jobs_created_total")
        logger.info(f"Export job {job_id} created for user {user_id} (request queued via outbox)")

        local_service = self.settings.local_service
        if self._local_part_producer is not None and local_service in self.expected_services:
            try:
                payload = await self._local_part_producer(user_id)
                await self.receive_part(job_id, local_service, payload)
            except Exception as e:
                logger.error(
                    f"Export job {job_id}: producing local part '{local_service}' failed: {e}",
                    exc_info=True,
                )

        return await self.get_job(job_id)

    async def receive_part(self, job_id: str, service: str, payload: Any) -> ExportJob:
        """
        Store one service's part and complete the job if it was the last.

        Safe to repeat for the same (job, service): the blob is overwritten
        and a completed job is left alone.

        Raises:
            JobNotFoundError: unknown job
            UnknownPartError: the job expects no part from `service`
        """
        job = await self.get_job(job_id)

        if service not in {part.service for part in job.parts}:
            logger.error(f"Export job {job_id}: part from unexpected service '{service}'")
            raise UnknownPartError(job_id, service)

        if job.status in (ExportJobStatus.EXPIRED, ExportJobStatus.FAILED):
            logger.warning(f"Ignoring export part because job is {job.status.value}: job={job_id} service={service}")
            return job
        if job.status == ExportJobStatus.COMPLETED:
            logger.info(f"Export job {job_id} already completed, ignoring redelivered part from {service}")
            return job

        with create_span("export.receive_part", {"export.job_id": job_id, "export.service": service}):
            body = json.dumps(payload, indent=2, default=str).encode("utf-8")
            await self._blob_call(
                self._store.put,
                part_key(job.user_id, job_id, service),
                body,
                content_type="application/json",
            )

            now = self._clock()
            async with self._db.transaction() as tx:
                row = await tx.fetchrow(
                    f"SELECT status FROM export_jobs WHERE id = $1 {tx.for_update()}",
                    job_id,
                )
                current = ExportJobStatus(row["status"])
                if current == ExportJobStatus.RUNNING:
                    await tx.execute(
                        """
                        UPDATE export_job_parts SET received = $1, received_at = $2
                        WHERE job_id = $3 AND service = $4
                        """,
                        True,
                        now,
                        job_id,
                        service,
                    )
                    await tx.execute(
                        "UPDATE export_jobs SET last_progress_at = $1 WHERE id = $2",
                        now,
                        job_id,
                    )

        if current != ExportJobStatus.RUNNING:
            logger.warning(f"Export job {job_id} became {current.value} while storing part from {service}")
            if current == ExportJobStatus.EXPIRED:
                await self._delete_blobs(job_id, [part_key(job.user_id, job_id, service)])
            return await self.get_job(job_id)

        record_counter("export_parts_received_total", 1, {"service": service})
        logger.info(f"Export job {job_id}: received part from {service}")

        return await self._complete_if_ready(job_id)

    def assembly_claim_duration(self) -> timedelta:
        """How long an assembly claim holds off other callers."""
        reads = len(self.expected_services) + 1
        return timedelta(seconds=self.settings.blob_read_timeout_seconds * reads + 60)

    async def _complete_if_ready(self, job_id: str) -> ExportJob:
        expected = await self._db.fetchval(
            "SELECT COUNT(*) FROM export_job_parts WHERE job_id = $1",
            job_id,
        )
        received = await self._db.fetchval(
            "SELECT COUNT(*) FROM export_job_parts WHERE job_id = $1 AND received = $2",
            job_id,
            True,
        )
        if received < expected:
            logger.debug(f"Export job {job_id} waiting: {received}/{expected} parts")
            return await self.get_job(job_id)

        # One caller assembles; a claim left by a crashed assembler lapses
        now = self._clock()
        claimed = await self._db.execute(
            """
            UPDATE export_jobs SET assembly_claimed_at = $1
            WHERE id = $2 AND status = $3
              AND (assembly_claimed_at IS NULL OR assembly_claimed_at < $4)
            """,
            now,
            job_id,
            ExportJobStatus.RUNNING.value,
            now - self.assembly_claim_duration(),
        )
        if not claimed:
            logger.debug(f"Export job {job_id} is being assembled elsewhere or no longer RUNNING")
            return await self.get_job(job_id)

        await self._finalize(await self.get_job(job_id))
        return await self.get_job(job_id)

    async def _finalize(self, job: ExportJob) -> None:
        """Assemble without holding the job row, then record the outcome under it."""
        started = time.monotonic()
        try:
            with create_span("export.assemble", {"export.job_id": job.id, "export.parts": len(job.parts)}):
                zip_key = await self._assemble(job)
        except Exception as e:
            reason = format_error(e)
            failed = await self._db.execute(
                "UPDATE export_jobs SET status = $1, failure_reason = $2 WHERE id = $3 AND status = $4",
                ExportJobStatus.FAILED.value,
                reason,
                job.id,
                ExportJobStatus.RUNNING.value,
            )
            if failed:
                record_counter("export_jobs_failed_total")
                logger.error(f"Export job {job.id} FAILED during assembly: {reason}", exc_info=True)
            return

        async with self._db.transaction() as tx:
            row = await tx.fetchrow(
                f"SELECT status FROM export_jobs WHERE id = $1 {tx.for_update()}",
                job.id,
            )
            current = ExportJobStatus(row["status"])
            if current == ExportJobStatus.RUNNING:
                await tx.execute(
                    """
                    UPDATE export_jobs SET status = $1, zip_object_key = $2, last_progress_at = $3
                    WHERE id = $4
                    """,
                    ExportJobStatus.COMPLETED.value,
                    zip_key,
                    self._clock(),
                    job.id,
                )
                if self.settings.audit_topic:
                    await self._writer.publish(
                        self.settings.audit_topic,
                        job.user_id,
                        ExportEventType.USER_EXPORT_COMPLETED.value,
                        1,
                        self.settings.source_service,
                        UserExportCompletedV1(job_id=job.id, user_id=job.user_id, zip_object_key=zip_key),
                        tx=tx,
                    )

        if current != ExportJobStatus.RUNNING:
            logger.warning(f"Export job {job.id} became {current.value} during assembly, discarding archive")
            if current == ExportJobStatus.EXPIRED:
                await self._delete_blobs(job.id, [zip_key])
            return

        record_counter("export_jobs_completed_total")
        record_histogram("export_assembly_duration_seconds", time.monotonic() - started)
        logger.info(f"Export job {job.id} COMPLETED. zipKey={zip_key}")

    async def _assemble(self, job: ExportJob) -> str:
        """Package every part into the archive and store it."""
        parts = sorted(job.parts, key=lambda p: p.service)
        contents: Dict[str, bytes] = {}
        for part in parts:
            contents[part.service] = await self._blob_call(
                self._store.get,
                part_key(job.user_id, job.id, part.service),
                timeout=self.settings.blob_read_timeout_seconds,
            )

        archive = await asyncio.to_thread(self._build_archive, job, parts, contents)

        zip_key = archive_key(job.user_id, job.id)
        await self._blob_call(self._store.put, zip_key, archive, content_type="application/zip")
        return zip_key

    def _build_archive(self, job: ExportJob, parts: List[JobPart], contents: Dict[str, bytes]) -> bytes:
        summary = {
            "jobId": job.id,
            "userId": job.user_id,
            "status": ExportJobStatus.COMPLETED.value,
            "createdAt": job.created_at.isoformat(),
            "generatedAt": self._clock().isoformat(),
            "expiresAt": job.expires_at.isoformat(),
            "zipTtlHours": self.settings.ttl_hours,
            "files": [
                {
                    "name": part_entry_name(part.service),
                    "sourceService": part.service,
                    "receivedAt": part.received_at.isoformat() if part.received_at else None,
                }
                for part in parts
            ],
        }

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for part in parts:
                archive.writestr(part_entry_name(part.service), contents[part.service])
            archive.writestr(SUMMARY_ENTRY, json.dumps(summary, indent=2))
        return buffer.getvalue()

    # =========================================================================
    # Download and status
    # =========================================================================

    async def presigned_download_url(self, job: ExportJob) -> str:
        """
        Time-limited read URL for the job's archive.

        Raises:
            ExportNotReadyError: the archive has not been assembled
        """
        if not job.zip_object_key:
            raise ExportNotReadyError(job.id)
        return await self._blob_call(
            self._store.get_url,
            job.zip_object_key,
            expires_in=self.settings.presign_ttl_seconds,
            for_download=True,
        )

    async def download_url(self, job_id: str, user_id: str) -> str:
        """
        Download URL for the caller's job.

        Raises:
            ExportExpiredError: past the deadline
            ExportFailedError: assembly failed
            ExportNotReadyError: parts still missing
        """
        job = await self.job_status(job_id, user_id)
        if job.status == ExportJobStatus.EXPIRED:
            raise ExportExpiredError(job_id)
        if job.status == ExportJobStatus.FAILED:
            raise ExportFailedError(job_id, job.failure_reason)
        return await self.presigned_download_url(job)

    async def job_status(self, job_id: str, user_id: str) -> ExportJob:
        """
        Load the caller's job, expiring it first if past its deadline.

        Raises:
            JobNotFoundError: unknown job
            JobAccessDeniedError: the job belongs to another user
        """
        job = await self.get_job(job_id)
        if job.user_id != user_id:
            raise JobAccessDeniedError(job_id)

        if job.status != ExportJobStatus.EXPIRED and job.is_past_expiry(self._clock()):
            await self._expire(job.id)
            job = await self.get_job(job_id)
        return job

    async def get_job(self, job_id: str, tx: Optional[Transaction] = None) -> ExportJob:
        """Load a job with its parts."""
        executor = tx if tx is not None else self._db
        row = await executor.fetchrow("SELECT * FROM export_jobs WHERE id = $1", job_id)
        if row is None:
            raise JobNotFoundError(job_id)
        return ExportJob.from_row(row, await self._load_parts(executor, job_id))

    async def _load_parts(self, executor: Union[DatabaseAdapter, Transaction], job_id: str) -> List[JobPart]:
        rows = await executor.fetch(
            """
            SELECT job_id, service, received, received_at FROM export_job_parts
            WHERE job_id = $1 ORDER BY service
            """,
            job_id,
        )
        return [JobPart.from_row(row) for row in rows]

    # =========================================================================
    # Expiry
    # =========================================================================

    async def expire_stale_jobs(self) -> int:
        """
        Sweep every job past its deadline that is not yet EXPIRED.

        Returns:
            Number of jobs marked EXPIRED
        """
        rows = await self._db.fetch(
            """
            SELECT id FROM export_jobs
            WHERE expires_at < $1 AND status <> $2
            ORDER BY expires_at
            """,
            self._clock(),
            ExportJobStatus.EXPIRED.value,
        )

        expired = 0
        for row in rows:
            if await self._expire(row["id"]):
                expired += 1

        if expired:
            logger.info(f"Expiry sweep: {expired} export job(s) expired")
        return expired

    async def _expire(self, job_id: str) -> bool:
        """
        Mark a job EXPIRED, then delete its blobs.

        The status change comes first, under the job row lock, so a part or
        archive written concurrently either lands before it (and is deleted
        here) or sees EXPIRED and removes its own blob.
        """
        async with self._db.transaction() as tx:
            row = await tx.fetchrow(
                f"SELECT status FROM export_jobs WHERE id = $1 {tx.for_update()}",
                job_id,
            )
            if row is None or row["status"] == ExportJobStatus.EXPIRED.value:
                return False
            previous = row["status"]
            await tx.execute(
                "UPDATE export_jobs SET status = $1 WHERE id = $2",
                ExportJobStatus.EXPIRED.value,
                job_id,
            )

        record_counter("export_jobs_expired_total")
        logger.info(f"Export job {job_id} EXPIRED (was {previous})")

        job = await self.get_job(job_id)
        await self._delete_blobs(job_id, self._blob_keys(job))
        return True

    async def _delete_blobs(self, job_id: str, keys: List[str]) -> None:
        """Best-effort delete; failures are logged and left for an operator."""
        for key in keys:
            try:
                await self._blob_call(self._store.delete, key)
            except Exception as e:
                logger.warning(f"Export job {job_id}: failed to delete {key}: {e}")

    def _blob_keys(self, job: ExportJob) -> List[str]:
        keys = [part_key(job.user_id, job.id, part.service) for part in job.parts if part.received]
        if job.zip_object_key:
            keys.append(job.zip_object_key)
        return keys

    async def _blob_call(self, fn: Callable[..., Any], *args, timeout: Optional[float] = None, **kwargs) -> Any:
        """Run a blocking blob-store call in a worker thread."""
        call = asyncio.to_thread(fn, *args, **kwargs)
        if timeout is not None:
            return await asyncio.wait_for(call, timeout)
        return await call
