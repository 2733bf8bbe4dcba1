"""
User Export Jobs API

Start an export, poll its status and fetch the download link.
"""

from fastapi import APIRouter, Depends, status

from ...core.container import ServiceContainer
from ..dependencies import current_user_id, get_container
from ..shared.responses import DownloadResponse, ExportJobCreated, ExportJobStatusResponse

router = APIRouter(prefix="/users/me/export-jobs", tags=["exports"])


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=ExportJobCreated)
async def create_export_job(
    user_id: str = Depends(current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """
    Start an export of the caller's data.

    Returns immediately; other services deliver their parts in the
    background and the client polls the job status.
    """
    job = await container.coordinator.create_job(user_id)
    return ExportJobCreated(jobId=job.id, status=job.status.value, expiresAt=job.expires_at)


@router.get("/{job_id}", response_model=ExportJobStatusResponse)
async def get_export_job(
    job_id: str,
    user_id: str = Depends(current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """Job status with the services still missing."""
    job = await container.coordinator.job_status(job_id, user_id)
    return ExportJobStatusResponse.model_validate(job.to_status_dict())


@router.get("/{job_id}/download", response_model=DownloadResponse)
async def download_export(
    job_id: str,
    user_id: str = Depends(current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """
    Presigned download URL.

    409 while parts are missing or after a failed assembly, 410 once expired.
    """
    url = await container.coordinator.download_url(job_id, user_id)
    return DownloadResponse(url=url)
