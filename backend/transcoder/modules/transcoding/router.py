"""API router for transcoding jobs and presets."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from transcoder.modules.auth.jwt import get_current_principal, require_admin
from transcoder.modules.auth.permissions import Principal
from transcoder.modules.transcoding.errors import TranscodingError
from transcoder.modules.transcoding.models import JobStatus
from transcoder.modules.transcoding.schemas import (
    JobCancelResponse,
    JobListResponse,
    JobResponse,
    OwnerJobsResponse,
    PresetResponse,
)
from transcoder.modules.transcoding.service import TranscodingService

router = APIRouter(prefix="/jobs", tags=["jobs"])
presets_router = APIRouter(prefix="/presets", tags=["presets"])


def get_transcoding_service(request: Request) -> TranscodingService:
    """Dependency returning the service built at startup."""
    return request.app.state.transcoding_service


def http_error(error: TranscodingError) -> HTTPException:
    return HTTPException(status_code=error.http_status, detail=error.message)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=0),
    offset: int = Query(0, ge=0),
    _: Principal = Depends(require_admin),
    service: TranscodingService = Depends(get_transcoding_service),
) -> JobListResponse:
    """List all jobs, newest first. Admin only."""
    jobs, total = await service.list_jobs(status=status, limit=limit, offset=offset)
    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/user/{user_id}", response_model=OwnerJobsResponse)
async def list_user_jobs(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TranscodingService = Depends(get_transcoding_service),
) -> OwnerJobsResponse:
    try:
        jobs = await service.list_jobs_by_owner(user_id, principal)
    except TranscodingError as e:
        raise http_error(e)
    return OwnerJobsResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TranscodingService = Depends(get_transcoding_service),
) -> JobResponse:
    try:
        job = await service.get_job(job_id, principal)
    except TranscodingError as e:
        raise http_error(e)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobCancelResponse)
async def cancel_job(
    job_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TranscodingService = Depends(get_transcoding_service),
) -> JobCancelResponse:
    """Cancel a pending or processing job."""
    try:
        job = await service.cancel_job(job_id, principal)
    except TranscodingError as e:
        raise http_error(e)
    return JobCancelResponse(job=JobResponse.model_validate(job))


@presets_router.get("", response_model=list[PresetResponse])
async def list_presets(
    service: TranscodingService = Depends(get_transcoding_service),
) -> list[PresetResponse]:
    return [PresetResponse.model_validate(p) for p in service.list_presets()]
