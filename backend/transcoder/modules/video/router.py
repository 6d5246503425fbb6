"""API router for video uploads and transcode requests."""

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status

from transcoder.modules.auth.jwt import get_current_principal
from transcoder.modules.auth.permissions import Principal
from transcoder.modules.transcoding.errors import TranscodingError
from transcoder.modules.transcoding.router import get_transcoding_service, http_error
from transcoder.modules.transcoding.schemas import (
    JobAcceptedResponse,
    JobResponse,
    OwnerJobsResponse,
    TranscodeRequest,
)
from transcoder.modules.transcoding.service import TranscodingService
from transcoder.modules.video.storage import (
    FileTooLargeError,
    InvalidFileError,
    StoredVideo,
    VideoStorage,
)

router = APIRouter(prefix="/videos", tags=["videos"])


def get_video_storage(request: Request) -> VideoStorage:
    return request.app.state.video_storage


@router.post("/upload", response_model=StoredVideo, status_code=status.HTTP_201_CREATED)
async def upload_video(
    file: UploadFile = File(...),
    principal: Principal = Depends(get_current_principal),
    storage: VideoStorage = Depends(get_video_storage),
) -> StoredVideo:
    """Upload a source video."""
    try:
        return await storage.save(file, owner_id=principal.user_id)
    except InvalidFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except FileTooLargeError as e:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e)
        )


@router.post(
    "/{video_id}/transcode",
    response_model=JobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def transcode_video(
    video_id: str,
    body: TranscodeRequest = TranscodeRequest(),
    principal: Principal = Depends(get_current_principal),
    storage: VideoStorage = Depends(get_video_storage),
    service: TranscodingService = Depends(get_transcoding_service),
) -> JobAcceptedResponse:
    """Start transcoding an uploaded video.

    Returns as soon as the job is recorded; poll ``GET /jobs/{job_id}`` for
    progress.
    """
    video = storage.get(video_id)
    if video is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    if video.owner_id != principal.user_id and not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    try:
        job = await service.create_job(
            owner_id=principal.user_id,
            video_id=video.video_id,
            input_filename=video.filename,
            quality=body.quality,
            format=body.format,
            parameters=body.parameters,
        )
    except TranscodingError as e:
        raise http_error(e)
    return JobAcceptedResponse(job=JobResponse.model_validate(job))


@router.get("/my-videos", response_model=OwnerJobsResponse)
async def my_videos(
    principal: Principal = Depends(get_current_principal),
    service: TranscodingService = Depends(get_transcoding_service),
) -> OwnerJobsResponse:
    """Transcoding jobs of the caller, newest first."""
    jobs = await service.list_jobs_by_owner(principal.user_id, principal)
    return OwnerJobsResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
    )
