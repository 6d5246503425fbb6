"""Local storage for uploaded source videos.

Each upload is stored as ``<video_id><ext>`` in the upload directory, next to
a ``<video_id>.json`` record of its owner and original name.
"""

import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import UploadFile
from pydantic import BaseModel

CHUNK_SIZE = 1024 * 1024


class VideoStorageError(Exception):
    """Base class for upload errors."""


class InvalidFileError(VideoStorageError):
    """Upload is not an accepted video type."""


class FileTooLargeError(VideoStorageError):
    """Upload exceeds the size limit."""


class StoredVideo(BaseModel):
    """Metadata of an uploaded video."""
    video_id: str
    owner_id: str
    filename: str
    original_name: str
    content_type: str
    size: int
    uploaded_at: datetime


class VideoStorage:
    """Stores uploads on the local filesystem.

    Args:
        upload_dir: Directory receiving the files
        max_size_bytes: Largest accepted upload
        allowed_types: Accepted MIME types
    """

    def __init__(
        self,
        upload_dir: str,
        max_size_bytes: int,
        allowed_types: list[str],
    ):
        self.base_path = Path(upload_dir)
        self.max_size_bytes = max_size_bytes
        self.allowed_types = set(allowed_types)

    def _meta_path(self, video_id: str) -> Path:
        return self.base_path / f"{video_id}.json"

    async def save(self, upload: UploadFile, owner_id: str) -> StoredVideo:
        """Write an upload to disk.

        Raises:
            InvalidFileError: If the MIME type is not a video type
            FileTooLargeError: If the file exceeds the size limit
        """
        if upload.content_type not in self.allowed_types:
            raise InvalidFileError("Only video files are allowed")

        video_id = str(uuid.uuid4())
        ext = os.path.splitext(upload.filename or "")[1].lower()
        filename = f"{video_id}{ext}"
        dest_path = self.base_path / filename
        self.base_path.mkdir(parents=True, exist_ok=True)

        size = 0
        try:
            with open(dest_path, "wb") as f:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_size_bytes:
                        raise FileTooLargeError(
                            f"File exceeds the {self.max_size_bytes // (1024 * 1024)}MB limit"
                        )
                    f.write(chunk)
        except BaseException:
            dest_path.unlink(missing_ok=True)
            raise

        video = StoredVideo(
            video_id=video_id,
            owner_id=owner_id,
            filename=filename,
            original_name=upload.filename or filename,
            content_type=upload.content_type,
            size=size,
            uploaded_at=datetime.now(timezone.utc),
        )
        self._meta_path(video_id).write_text(video.model_dump_json())
        return video

    def get(self, video_id: str) -> Optional[StoredVideo]:
        """Look up an upload by id; None if unknown or not a valid id."""
        try:
            uuid.UUID(video_id)
        except ValueError:
            return None

        meta_path = self._meta_path(video_id)
        if not meta_path.is_file():
            return None
        return StoredVideo.model_validate_json(meta_path.read_text())
