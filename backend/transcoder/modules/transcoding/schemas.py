"""Pydantic schemas for the transcoding API."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from transcoder.modules.transcoding.models import JobStatus


class TranscodeRequest(BaseModel):
    """Request to transcode an uploaded video."""
    quality: str = Field(
        "medium",
        pattern=r"^[A-Za-z0-9_-]{1,50}$",
        description="Quality label; unknown labels use the medium preset",
    )
    format: str = Field(
        "mp4",
        pattern=r"^[A-Za-z0-9]{1,10}$",
        description="Output container passed to the engine",
    )
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Extra engine parameters"
    )


class JobResponse(BaseModel):
    """Transcoding job as returned by the API."""
    id: str
    owner_id: str
    video_id: str
    input_filename: str
    quality: str
    format: str
    parameters: dict[str, Any]
    status: JobStatus
    progress: int
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output_path: Optional[str] = None
    error: Optional[str] = None

    class Config:
        from_attributes = True


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class OwnerJobsResponse(BaseModel):
    jobs: list[JobResponse]
    total: int


class JobAcceptedResponse(BaseModel):
    """Response after a transcode request is accepted."""
    message: str = "Transcoding job created"
    job: JobResponse


class JobCancelResponse(BaseModel):
    message: str = "Job cancelled successfully"
    job: JobResponse


class PresetResponse(BaseModel):
    """Encoding parameters behind a quality label."""
    label: str
    video_bitrate: str
    audio_bitrate: str
    resolution: str
    compression_level: int

    class Config:
        from_attributes = True
