"""Transcoding job models.

``Job`` is the immutable snapshot handed out by every job store;
``TranscodeJob`` is its relational row.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import DateTime, Integer, String, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from transcoder.core.database import Base


class JobStatus(str, Enum):
    """Status of a transcoding job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Job:
    """Snapshot of a transcoding job.

    Snapshots are detached from the store: changing one (or its
    ``parameters`` dict) never changes stored state.
    """
    id: str
    owner_id: str
    video_id: str
    input_filename: str
    quality: str
    format: str
    status: JobStatus
    created_at: datetime
    parameters: dict[str, Any] = field(default_factory=dict)
    progress: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        # state imports this module
        from transcoder.modules.transcoding.state import is_terminal

        return is_terminal(self.status)


class TranscodeJob(Base):
    """Relational row for a transcoding job."""

    __tablename__ = "transcode_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    video_id: Mapped[str] = mapped_column(String(255), nullable=False)
    input_filename: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Requested settings, stored verbatim
    quality: Mapped[str] = mapped_column(String(50), nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False, default="mp4")
    parameters: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Status tracking
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING.value, index=True
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_transcode_jobs_status_created", "status", "created_at"),
        Index("ix_transcode_jobs_owner_created", "owner_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TranscodeJob(id={self.id}, quality={self.quality}, status={self.status})>"
