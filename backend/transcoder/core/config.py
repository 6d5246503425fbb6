"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Video Transcoding API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api"
    DEBUG: bool = False
    LOG_JSON: bool = True

    # Security - REQUIRED (no defaults for sensitive values)
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Job store: memory or sql
    JOB_STORE_BACKEND: str = "memory"
    DATABASE_URL: str = "sqlite+aiosqlite:///./transcoder.db"

    # Execution backend: local (in-process worker pool) or celery
    EXECUTION_BACKEND: str = "local"
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # File locations
    UPLOAD_DIR: str = "./uploads"
    OUTPUT_DIR: str = "./outputs"
    MAX_UPLOAD_SIZE_MB: int = 100
    ALLOWED_VIDEO_TYPES: list[str] = [
        "video/mp4",
        "video/avi",
        "video/mov",
        "video/quicktime",
        "video/wmv",
        "video/flv",
        "video/webm",
        "video/mkv",
        "video/x-matroska",
    ]

    # Transcoding engine: ffmpeg or simulated
    TRANSCODE_ENGINE: str = "ffmpeg"
    FFMPEG_PATH: str = "ffmpeg"
    FFMPEG_ENCODER_PRESET: str = "veryslow"
    ENGINE_TERMINATE_GRACE_SECONDS: float = 5.0

    # Worker pool
    MAX_CONCURRENT_JOBS: int = 4
    MAX_QUEUED_JOBS: int = 100
    JOB_TIMEOUT_SECONDS: int = 3600  # 0 disables the timeout

    # CORS
    CORS_ORIGINS: list[str] = []

    @property
    def celery_broker_url(self) -> str:
        return self.CELERY_BROKER_URL or "redis://localhost:6379/0"

    @property
    def celery_result_backend(self) -> str:
        return self.CELERY_RESULT_BACKEND or self.celery_broker_url

    @property
    def job_timeout(self) -> Optional[float]:
        """Per-job engine timeout in seconds, or None when disabled."""
        return float(self.JOB_TIMEOUT_SECONDS) if self.JOB_TIMEOUT_SECONDS > 0 else None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
