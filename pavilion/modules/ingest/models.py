"""Database models for video ingestion.

Video is created at initialization together with its VideoUpload, which
tracks the pipeline's status and per-backend progress. Transcode and
TranscodeSegment rows exist only for tiers that were produced and stored.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pavilion.core.database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UploadStatus(str, Enum):
    """Status of an upload in the processing pipeline."""

    PENDING = "pending"
    IPFS_UPLOADING = "ipfs_uploading"
    IPFS_COMPLETED = "ipfs_completed"
    S3_UPLOADING = "s3_uploading"
    S3_COMPLETED = "s3_completed"
    COMPLETED = "completed"
    IPFS_FAILED = "ipfs_failed"
    S3_FAILED = "s3_failed"
    FAILED = "failed"


class UploadPhase(str, Enum):
    """Pipeline phase an upload is currently in."""

    PENDING = "pending"
    STAGING = "staging"
    IPFS = "ipfs"
    S3 = "s3"
    TRANSCODING = "transcoding"
    FINALIZING = "finalizing"
    DONE = "done"


class TranscodeFormat(str, Enum):
    """Container format of a transcoded variant."""

    MP4 = "mp4"
    HLS = "hls"


TERMINAL_STATUSES = frozenset({
    UploadStatus.COMPLETED,
    UploadStatus.FAILED,
    UploadStatus.IPFS_FAILED,
    UploadStatus.S3_FAILED,
})

# Allowed status changes; every non-terminal status may also fail
TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.IPFS_UPLOADING, UploadStatus.FAILED}),
    UploadStatus.IPFS_UPLOADING: frozenset({
        UploadStatus.IPFS_COMPLETED, UploadStatus.IPFS_FAILED, UploadStatus.FAILED,
    }),
    UploadStatus.IPFS_COMPLETED: frozenset({UploadStatus.S3_UPLOADING, UploadStatus.FAILED}),
    UploadStatus.S3_UPLOADING: frozenset({
        UploadStatus.S3_COMPLETED, UploadStatus.S3_FAILED, UploadStatus.FAILED,
    }),
    UploadStatus.S3_COMPLETED: frozenset({UploadStatus.COMPLETED, UploadStatus.FAILED}),
    UploadStatus.COMPLETED: frozenset(),
    UploadStatus.FAILED: frozenset(),
    UploadStatus.IPFS_FAILED: frozenset(),
    UploadStatus.S3_FAILED: frozenset(),
}


def is_terminal(status: UploadStatus | str) -> bool:
    return UploadStatus(status) in TERMINAL_STATUSES


def can_transition(current: UploadStatus | str, target: UploadStatus | str) -> bool:
    """Check whether an upload may move from current to target status."""
    return UploadStatus(target) in TRANSITIONS[UploadStatus(current)]


class Video(Base):
    """An uploaded video and the storage locations of its original."""

    __tablename__ = "videos"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    file_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )

    # Video metadata
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Original file, set when processing commits
    storage_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    content_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    checksum: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    upload: Mapped[Optional["VideoUpload"]] = relationship(
        "VideoUpload",
        back_populates="video",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    transcodes: Mapped[list["Transcode"]] = relationship(
        "Transcode",
        back_populates="video",
        cascade="all, delete-orphan",
        order_by="Transcode.created_at",
        lazy="selectin",
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Video(id={self.id}, title={self.title})>"


class VideoUpload(Base):
    """Processing state of a video's upload, one row per video."""

    __tablename__ = "video_uploads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    video_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("videos.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(32), default=UploadStatus.PENDING.value, index=True
    )
    current_phase: Mapped[str] = mapped_column(
        String(32), default=UploadPhase.PENDING.value
    )

    # Per-backend progress
    ipfs_bytes_uploaded: Mapped[int] = mapped_column(BigInteger, default=0)
    s3_bytes_uploaded: Mapped[int] = mapped_column(BigInteger, default=0)
    ipfs_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ipfs_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    s3_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    s3_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    video: Mapped["Video"] = relationship("Video", back_populates="upload")

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def __repr__(self) -> str:
        return f"<VideoUpload(id={self.id}, status={self.status})>"


class Transcode(Base):
    """A transcoded variant of a video at one resolution tier."""

    __tablename__ = "transcodes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    video_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    format: Mapped[str] = mapped_column(String(16), default=TranscodeFormat.MP4.value)
    resolution: Mapped[str] = mapped_column(String(16), nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    video: Mapped["Video"] = relationship("Video", back_populates="transcodes")
    segments: Mapped[list["TranscodeSegment"]] = relationship(
        "TranscodeSegment",
        back_populates="transcode",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Transcode(id={self.id}, resolution={self.resolution})>"


class TranscodeSegment(Base):
    """Stored file of a transcoded variant."""

    __tablename__ = "transcode_segments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    transcode_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("transcodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    storage_path: Mapped[str] = mapped_column(String(512), nullable=False)
    # Empty when the content-store copy of the variant failed
    content_id: Mapped[str] = mapped_column(String(128), default="")
    duration: Mapped[int] = mapped_column(Integer, default=0)  # whole seconds

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    transcode: Mapped["Transcode"] = relationship("Transcode", back_populates="segments")
