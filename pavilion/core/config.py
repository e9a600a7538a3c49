"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Pavilion Ingest"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    TRACING_CONSOLE_EXPORT: bool = False

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis - REQUIRED (Celery broker)
    REDIS_URL: str

    # IPFS (content-addressable store)
    IPFS_API_URL: str = "http://localhost:5001"
    IPFS_GATEWAY_URL: str = "https://ipfs.io/ipfs/"
    IPFS_TIMEOUT_SECONDS: float = 300.0

    # S3/MinIO/Compatible Storage (object store)
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True

    # CDN Configuration (optional)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    # FFmpeg
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    FFMPEG_VIDEO_CODEC: str = "libx264"
    FFMPEG_AUDIO_CODEC: str = "aac"
    FFMPEG_PRESET: str = "fast"
    FFMPEG_TIMEOUT_SECONDS: Optional[float] = None
    FFPROBE_TIMEOUT_SECONDS: float = 30.0
    TRANSCODE_RESOLUTIONS: list[str] = ["720p", "480p", "360p"]

    # Local staging
    TEMP_DIR: str = "./temp"

    # Upload validation
    VIDEO_MAX_SIZE: int = 2 * 1024 * 1024 * 1024  # 2 GB
    VIDEO_ALLOWED_FORMATS: list[str] = [".mp4", ".mov", ".avi", ".mkv", ".webm"]
    VIDEO_MIN_TITLE_LENGTH: int = 3
    VIDEO_MAX_TITLE_LENGTH: int = 100
    VIDEO_MAX_DESCRIPTION_LENGTH: int = 5000

    # Storage retry (exponential backoff)
    STORAGE_RETRY_ATTEMPTS: int = 3
    STORAGE_RETRY_INITIAL_DELAY: float = 1.0
    STORAGE_RETRY_MAX_DELAY: float = 30.0

    # Hard limit on one process_upload task run
    UPLOAD_TASK_TIME_LIMIT_SECONDS: int = 6 * 3600

    # Uploads left in a non-terminal status longer than this are failed by the reaper.
    # Kept above the task time limit so a live run is never reaped.
    STALE_UPLOAD_HOURS: int = 8

    # Celery
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
