"""Relational job store.

Each operation runs in its own session and commits before returning, so
snapshots are never tied to a live ORM object.
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from transcoder.core.database import Base
from transcoder.modules.transcoding import state
from transcoder.modules.transcoding.models import Job, JobStatus, TranscodeJob
from transcoder.modules.transcoding.store import (
    Clock,
    JobStore,
    KeyedLock,
    clamp_progress,
    utc_now,
    validate_page,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_job(row: TranscodeJob) -> Job:
    """Build a detached snapshot from a row."""
    return Job(
        id=row.id,
        owner_id=row.owner_id,
        video_id=row.video_id,
        input_filename=row.input_filename,
        quality=row.quality,
        format=row.format,
        parameters=copy.deepcopy(row.parameters or {}),
        status=JobStatus(row.status),
        progress=row.progress,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        output_path=row.output_path,
        error=row.error,
    )


def _copy_into(row: TranscodeJob, job: Job) -> None:
    row.status = job.status.value
    row.progress = job.progress
    row.started_at = job.started_at
    row.completed_at = job.completed_at
    row.output_path = job.output_path
    row.error = job.error


async def init_models(engine: AsyncEngine) -> None:
    """Create the job tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class SqlJobStore(JobStore):
    """Job store backed by the ``transcode_jobs`` table."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
    ):
        self.session_maker = session_maker
        self._clock = clock or utc_now
        self._locks = KeyedLock()

    async def _get_for_update(
        self, session: AsyncSession, job_id: str
    ) -> Optional[TranscodeJob]:
        # FOR UPDATE is a no-op on SQLite; the keyed lock covers this process
        result = await session.execute(
            select(TranscodeJob).where(TranscodeJob.id == job_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        owner_id: str,
        video_id: str,
        input_filename: str,
        quality: str,
        format: str = "mp4",
        parameters: Optional[dict[str, Any]] = None,
    ) -> Job:
        row = TranscodeJob(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            video_id=video_id,
            input_filename=input_filename,
            quality=quality,
            format=format,
            parameters=copy.deepcopy(parameters or {}),
            status=JobStatus.PENDING.value,
            progress=0,
            created_at=self._clock(),
        )
        async with self.session_maker() as session:
            session.add(row)
            await session.commit()
            return to_job(row)

    async def get_by_id(self, job_id: str) -> Optional[Job]:
        async with self.session_maker() as session:
            row = await session.get(TranscodeJob, job_id)
            return to_job(row) if row else None

    async def list_all(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        validate_page(limit, offset)
        query = select(TranscodeJob)
        count_query = select(func.count()).select_from(TranscodeJob)
        if status is not None:
            query = query.where(TranscodeJob.status == JobStatus(status).value)
            count_query = count_query.where(
                TranscodeJob.status == JobStatus(status).value
            )

        async with self.session_maker() as session:
            total = (await session.execute(count_query)).scalar_one()
            result = await session.execute(
                query.order_by(TranscodeJob.created_at.desc(), TranscodeJob.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return [to_job(row) for row in result.scalars().all()], total

    async def list_by_owner(self, owner_id: str) -> list[Job]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(TranscodeJob)
                .where(TranscodeJob.owner_id == owner_id)
                .order_by(TranscodeJob.created_at.desc(), TranscodeJob.id.desc())
            )
            return [to_job(row) for row in result.scalars().all()]

    async def apply_transition(
        self,
        job_id: str,
        new_status: JobStatus,
        output_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Job]:
        async with self._locks.acquire(job_id):
            async with self.session_maker() as session:
                row = await self._get_for_update(session, job_id)
                if row is None:
                    return None
                updated = state.apply_transition(
                    to_job(row),
                    new_status,
                    self._clock(),
                    output_path=output_path,
                    error=error,
                )
                _copy_into(row, updated)
                await session.commit()
                return updated

    async def set_progress(self, job_id: str, value: float) -> Optional[Job]:
        async with self._locks.acquire(job_id):
            async with self.session_maker() as session:
                row = await self._get_for_update(session, job_id)
                if row is None:
                    return None
                progress = clamp_progress(value)
                if row.status != JobStatus.PROCESSING.value or progress <= row.progress:
                    return to_job(row)
                row.progress = progress
                await session.commit()
                return to_job(row)

    async def close(self) -> None:
        bind = self.session_maker.kw.get("bind")
        if bind is not None:
            await bind.dispose()
