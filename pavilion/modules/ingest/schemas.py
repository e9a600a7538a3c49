"""Pydantic schemas for video ingestion."""

import os
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from pavilion.modules.ingest.models import UploadStatus


class FileMeta(BaseModel):
    """Client-supplied details of the uploaded file."""
    filename: str = Field(..., min_length=1)
    content_type: str = Field(default="application/octet-stream")
    size: Optional[int] = Field(default=None, ge=0, description="Declared size in bytes")

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lower()


class SegmentResponse(BaseModel):
    """Stored file of a transcoded variant."""
    storage_path: str
    content_id: str
    duration: int

    class Config:
        from_attributes = True


class TranscodeResponse(BaseModel):
    """A transcoded variant."""
    id: UUID
    format: str
    resolution: str
    segments: list[SegmentResponse] = []

    class Config:
        from_attributes = True


class UploadStatusResponse(BaseModel):
    """Upload progress as reported to polling callers."""
    id: UUID
    video_id: UUID
    status: UploadStatus
    current_phase: str
    message: str = ""
    ipfs_bytes_uploaded: int
    s3_bytes_uploaded: int
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VideoResponse(BaseModel):
    """A video with its stored variants."""
    id: UUID
    file_id: str
    title: str
    description: Optional[str] = None
    storage_path: Optional[str] = None
    content_id: Optional[str] = None
    checksum: Optional[str] = None
    file_size: int
    created_at: datetime
    deleted_at: Optional[datetime] = None
    transcodes: list[TranscodeResponse] = []

    class Config:
        from_attributes = True


STATUS_MESSAGES = {
    UploadStatus.PENDING: "Upload pending",
    UploadStatus.IPFS_UPLOADING: "Uploading to IPFS",
    UploadStatus.IPFS_COMPLETED: "IPFS upload completed",
    UploadStatus.S3_UPLOADING: "Uploading to object storage",
    UploadStatus.S3_COMPLETED: "Object storage upload completed, transcoding",
    UploadStatus.COMPLETED: "Upload completed successfully",
    UploadStatus.IPFS_FAILED: "IPFS upload failed",
    UploadStatus.S3_FAILED: "Object storage upload failed",
    UploadStatus.FAILED: "Upload failed",
}


def status_message(status: UploadStatus | str) -> str:
    """Get a user-facing message for an upload status."""
    try:
        return STATUS_MESSAGES[UploadStatus(status)]
    except ValueError:
        return "Unknown status"
