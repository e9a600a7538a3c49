"""Video service: the caller-facing ingestion contract.

Initialization validates the request and creates the Video and its Upload
in one transaction. Processing is delegated to the UploadCoordinator, either
awaited directly or run by the background task.
"""

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from typing import BinaryIO, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pavilion.core.exceptions import (
    StorageError,
    UploadNotFoundError,
    ValidationError,
    VideoNotFoundError,
)
from pavilion.modules.ingest.coordinator import UploadCoordinator
from pavilion.modules.ingest.models import Video, VideoUpload
from pavilion.modules.ingest.persistence import TierResult
from pavilion.modules.ingest.repository import UploadRepository, VideoRepository
from pavilion.modules.ingest.schemas import FileMeta, UploadStatusResponse, status_message
from pavilion.modules.storage.s3 import S3ObjectStore

MAX_PAGE_SIZE = 100


@dataclass
class UploadLimits:
    """Request validation limits."""
    max_size: int = 2 * 1024 * 1024 * 1024
    allowed_formats: tuple[str, ...] = (".mp4", ".mov", ".avi", ".mkv", ".webm")
    min_title_length: int = 3
    max_title_length: int = 100
    max_description_length: int = 5000

    @classmethod
    def from_settings(cls, settings) -> "UploadLimits":
        return cls(
            max_size=settings.VIDEO_MAX_SIZE,
            allowed_formats=tuple(f.lower() for f in settings.VIDEO_ALLOWED_FORMATS),
            min_title_length=settings.VIDEO_MIN_TITLE_LENGTH,
            max_title_length=settings.VIDEO_MAX_TITLE_LENGTH,
            max_description_length=settings.VIDEO_MAX_DESCRIPTION_LENGTH,
        )


class VideoService:
    """Service for video upload and management."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        coordinator: Optional[UploadCoordinator] = None,
        object_store: Optional[S3ObjectStore] = None,
        limits: Optional[UploadLimits] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_factory = session_factory
        self.coordinator = coordinator
        self.object_store = object_store
        self.limits = limits or UploadLimits()
        self.logger = logger or logging.getLogger(__name__)

    def _validate_title(self, title: str) -> str:
        title = (title or "").strip()
        if len(title) < self.limits.min_title_length:
            raise ValidationError(
                "title",
                f"Title must be at least {self.limits.min_title_length} characters",
            )
        if len(title) > self.limits.max_title_length:
            raise ValidationError(
                "title",
                f"Title must be at most {self.limits.max_title_length} characters",
            )
        return title

    def _validate_description(self, description: Optional[str]) -> Optional[str]:
        if description is not None and len(description) > self.limits.max_description_length:
            raise ValidationError(
                "description",
                f"Description must be at most {self.limits.max_description_length} characters",
            )
        return description

    def validate_video_upload(
        self,
        filename: Optional[str],
        size: int,
        title: str,
        description: Optional[str] = None,
    ) -> None:
        """Validate an upload request before anything is created.

        Args:
            filename: Original file name; its extension must be allowed
            size: Declared size in bytes
            title: Video title, checked after trimming
            description: Optional description

        Raises:
            ValidationError: Naming the first offending field
        """
        if size <= 0:
            raise ValidationError("file", "File is empty")
        if size > self.limits.max_size:
            raise ValidationError(
                "file",
                f"File size exceeds maximum of {self.limits.max_size} bytes",
            )

        if filename is not None:
            ext = os.path.splitext(filename)[1].lower()
            if ext not in self.limits.allowed_formats:
                raise ValidationError(
                    "file",
                    f"Unsupported file format '{ext}', allowed: {', '.join(self.limits.allowed_formats)}",
                )

        self._validate_title(title)
        self._validate_description(description)

    async def initialize_upload(
        self,
        title: str,
        description: Optional[str],
        size: int,
        filename: Optional[str] = None,
    ) -> VideoUpload:
        """Create a Video and its pending Upload.

        Returns:
            VideoUpload: The upload in status ``pending``

        Raises:
            ValidationError: If the request is invalid
        """
        self.validate_video_upload(filename, size, title, description)

        async with self.session_factory() as session:
            async with session.begin():
                video = await VideoRepository(session).create(
                    title=title.strip(),
                    description=description,
                    file_size=size,
                )
                upload = await UploadRepository(session).create(video.id)

        self.logger.info(
            f"Initialized upload {upload.id} for video {video.id}",
            extra={"upload_id": str(upload.id), "video_id": str(video.id)},
        )
        return upload

    async def process_upload(
        self,
        upload: VideoUpload,
        file_stream: BinaryIO,
        file_meta: FileMeta,
    ) -> list[TierResult]:
        """Run the pipeline for an initialized upload and wait for it."""
        if self.coordinator is None:
            raise RuntimeError("VideoService has no UploadCoordinator configured")
        return await self.coordinator.process_upload(upload, file_stream, file_meta)

    async def get_video(self, video_id: uuid.UUID) -> Video:
        """Get a video by ID, soft-deleted or not.

        Raises:
            VideoNotFoundError: If no such video exists
        """
        async with self.session_factory() as session:
            video = await VideoRepository(session).get_by_id(video_id)
        if video is None:
            raise VideoNotFoundError(f"Video {video_id} not found")
        return video

    async def list_videos(self, page: int = 1, limit: int = 20) -> list[Video]:
        """List videos that are not deleted, newest first.

        Args:
            page: 1-based page number
            limit: Page size, at most MAX_PAGE_SIZE

        Raises:
            ValidationError: If page or limit is out of range
        """
        if page < 1:
            raise ValidationError("page", "Page must be at least 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError("limit", f"Limit must be between 1 and {MAX_PAGE_SIZE}")

        async with self.session_factory() as session:
            return await VideoRepository(session).list_active(
                offset=(page - 1) * limit, limit=limit
            )

    async def get_upload(self, upload_id: uuid.UUID) -> VideoUpload:
        """Get an upload by ID.

        Raises:
            UploadNotFoundError: If no such upload exists
        """
        async with self.session_factory() as session:
            upload = await UploadRepository(session).get_by_id(upload_id)
        if upload is None:
            raise UploadNotFoundError(f"Upload {upload_id} not found")
        return upload

    async def get_upload_status(self, upload_id: uuid.UUID) -> UploadStatusResponse:
        """Get an upload's progress with a user-facing message."""
        upload = await self.get_upload(upload_id)
        response = UploadStatusResponse.model_validate(upload)
        response.message = status_message(upload.status)
        return response

    async def update_video(
        self,
        video_id: uuid.UUID,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Video:
        """Edit a video's title and description.

        Raises:
            VideoNotFoundError: If the video does not exist or is deleted
            ValidationError: If a new value is invalid
        """
        changes = {}
        if title is not None:
            changes["title"] = self._validate_title(title)
        if description is not None:
            changes["description"] = self._validate_description(description)

        async with self.session_factory() as session:
            async with session.begin():
                videos = VideoRepository(session)
                video = await videos.get_by_id(video_id)
                if video is None or video.is_deleted:
                    raise VideoNotFoundError(f"Video {video_id} not found")
                await videos.update(video, **changes)
        return video

    async def delete_video(self, video_id: uuid.UUID) -> Video:
        """Soft-delete a video and remove its object-store files.

        The original is kept while another live video references the same key.
        Object-store failures are logged; the video stays deleted.

        Raises:
            VideoNotFoundError: If the video does not exist or is deleted
        """
        async with self.session_factory() as session:
            async with session.begin():
                videos = VideoRepository(session)
                video = await videos.get_by_id(video_id)
                if video is None or video.is_deleted:
                    raise VideoNotFoundError(f"Video {video_id} not found")
                await videos.soft_delete(video)
                # Originals are keyed by CID, so identical uploads share one object
                shared = bool(video.storage_path) and await videos.storage_path_in_use(
                    video.storage_path, exclude_id=video.id
                )

        if self.object_store is not None:
            prefixes = [f"videos/{video_id}/"]
            if video.storage_path and not shared:
                prefixes.append(video.storage_path)
            for prefix in prefixes:
                try:
                    await asyncio.to_thread(self.object_store.delete, prefix)
                except StorageError as e:
                    self.logger.error(
                        f"Failed to delete files under {prefix} for video {video_id}",
                        exc_info=e,
                    )

        self.logger.info(f"Deleted video {video_id}", extra={"video_id": str(video_id)})
        return video
