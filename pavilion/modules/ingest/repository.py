"""Repositories for ingestion records.

Repositories flush but never commit; transaction boundaries belong to the
caller.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pavilion.core.exceptions import InvalidStatusTransitionError, UploadNotFoundError
from pavilion.modules.ingest.models import (
    TERMINAL_STATUSES,
    Transcode,
    TranscodeFormat,
    TranscodeSegment,
    UploadPhase,
    UploadStatus,
    Video,
    VideoUpload,
    can_transition,
    utc_now,
)

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]

# Timestamp column stamped when an upload enters a status
_STATUS_TIMESTAMPS = {
    UploadStatus.IPFS_UPLOADING: "ipfs_started_at",
    UploadStatus.IPFS_COMPLETED: "ipfs_completed_at",
    UploadStatus.S3_UPLOADING: "s3_started_at",
    UploadStatus.S3_COMPLETED: "s3_completed_at",
    UploadStatus.COMPLETED: "completed_at",
    UploadStatus.FAILED: "completed_at",
    UploadStatus.IPFS_FAILED: "completed_at",
    UploadStatus.S3_FAILED: "completed_at",
}


class VideoRepository:
    """Repository for Video CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def create(
        self,
        title: str,
        file_size: int,
        description: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> Video:
        """Create a new video.

        Args:
            title: Video title
            file_size: Declared size of the upload in bytes
            description: Video description
            file_id: Public file identifier, generated when omitted

        Returns:
            Video: Created video instance
        """
        video = Video(
            file_id=file_id or uuid.uuid4().hex,
            title=title,
            description=description,
            file_size=file_size,
        )
        self.session.add(video)
        await self.session.flush()
        return video

    async def get_by_id(self, video_id: uuid.UUID) -> Optional[Video]:
        """Get video by ID, including soft-deleted videos."""
        result = await self.session.execute(
            select(Video).where(Video.id == video_id)
        )
        return result.scalar_one_or_none()

    async def list_active(self, offset: int = 0, limit: int = 20) -> list[Video]:
        """List videos that are not soft-deleted, newest first."""
        result = await self.session.execute(
            select(Video)
            .where(Video.deleted_at.is_(None))
            .order_by(Video.created_at.desc(), Video.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update(self, video: Video, **kwargs) -> Video:
        """Update video attributes."""
        for key, value in kwargs.items():
            if hasattr(video, key):
                setattr(video, key, value)
        await self.session.flush()
        return video

    async def soft_delete(self, video: Video) -> Video:
        video.deleted_at = utc_now()
        await self.session.flush()
        return video

    async def storage_path_in_use(self, storage_path: str, exclude_id: uuid.UUID) -> bool:
        """Whether another live video references the same original object."""
        result = await self.session.execute(
            select(Video.id)
            .where(
                Video.storage_path == storage_path,
                Video.id != exclude_id,
                Video.deleted_at.is_(None),
            )
            .limit(1)
        )
        return result.first() is not None


class UploadRepository:
    """Repository for VideoUpload state.

    Status writes are guarded: rows in a terminal status are never modified,
    and illegal transitions raise InvalidStatusTransitionError.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, video_id: uuid.UUID) -> VideoUpload:
        upload = VideoUpload(
            video_id=video_id,
            status=UploadStatus.PENDING.value,
            current_phase=UploadPhase.PENDING.value,
        )
        self.session.add(upload)
        await self.session.flush()
        return upload

    async def get_by_id(self, upload_id: uuid.UUID) -> Optional[VideoUpload]:
        result = await self.session.execute(
            select(VideoUpload).where(VideoUpload.id == upload_id)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        upload_id: uuid.UUID,
        status: UploadStatus,
        phase: Optional[UploadPhase] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move an upload to a new status.

        Args:
            upload_id: Upload UUID
            status: Target status; the current status is allowed to re-enter
                itself so the phase can change
            phase: New current phase
            error_message: Error recorded with a failure status

        Returns:
            True if the row was updated, False if it was already terminal

        Raises:
            UploadNotFoundError: If the upload does not exist
            InvalidStatusTransitionError: If the transition is not allowed
        """
        upload = await self.get_by_id(upload_id)
        if upload is None:
            raise UploadNotFoundError(f"Upload {upload_id} not found")

        current = UploadStatus(upload.status)
        if current in TERMINAL_STATUSES:
            return False

        if status != current and not can_transition(current, status):
            raise InvalidStatusTransitionError(
                f"Cannot move upload {upload_id} from {current.value} to {status.value}"
            )

        values = {"status": status.value, "updated_at": utc_now()}
        if phase is not None:
            values["current_phase"] = phase.value
        if error_message is not None:
            values["error_message"] = error_message
        if status != current:
            timestamp_column = _STATUS_TIMESTAMPS.get(status)
            if timestamp_column:
                values[timestamp_column] = utc_now()
            if current == UploadStatus.PENDING:
                values["started_at"] = utc_now()

        result = await self.session.execute(
            update(VideoUpload)
            .where(
                VideoUpload.id == upload_id,
                VideoUpload.status == current.value,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def update_progress(
        self,
        upload_id: uuid.UUID,
        ipfs_bytes_uploaded: Optional[int] = None,
        s3_bytes_uploaded: Optional[int] = None,
    ) -> bool:
        """Record per-backend byte counts on a non-terminal upload."""
        values = {}
        if ipfs_bytes_uploaded is not None:
            values["ipfs_bytes_uploaded"] = ipfs_bytes_uploaded
        if s3_bytes_uploaded is not None:
            values["s3_bytes_uploaded"] = s3_bytes_uploaded
        if not values:
            return False
        values["updated_at"] = utc_now()

        result = await self.session.execute(
            update(VideoUpload)
            .where(
                VideoUpload.id == upload_id,
                VideoUpload.status.not_in(_TERMINAL_VALUES),
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def get_stale(self, cutoff: datetime) -> list[VideoUpload]:
        """Get non-terminal uploads not updated since cutoff."""
        result = await self.session.execute(
            select(VideoUpload).where(
                VideoUpload.status.not_in(_TERMINAL_VALUES),
                VideoUpload.updated_at < cutoff,
            )
        )
        return list(result.scalars().all())


class TranscodeRepository:
    """Repository for Transcode and TranscodeSegment records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_with_segment(
        self,
        video_id: uuid.UUID,
        resolution: str,
        storage_path: str,
        content_id: str = "",
        duration: int = 0,
        format: TranscodeFormat = TranscodeFormat.MP4,
    ) -> Transcode:
        """Create a transcode and its single segment.

        Args:
            video_id: Owning video
            resolution: Tier name
            storage_path: Object-store key of the variant
            content_id: CID of the variant, empty if not stored there
            duration: Duration in whole seconds
            format: Container format

        Returns:
            Transcode: Created transcode with its segment attached
        """
        transcode = Transcode(
            video_id=video_id,
            format=format.value,
            resolution=resolution,
        )
        transcode.segments.append(
            TranscodeSegment(
                storage_path=storage_path,
                content_id=content_id,
                duration=duration,
            )
        )
        self.session.add(transcode)
        await self.session.flush()
        return transcode
