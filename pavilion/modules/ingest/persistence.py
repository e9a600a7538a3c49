"""Final commit of a processed upload."""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pavilion.core.exceptions import PavilionError, PersistenceError, VideoNotFoundError
from pavilion.modules.ingest.models import UploadPhase, UploadStatus
from pavilion.modules.ingest.repository import (
    TranscodeRepository,
    UploadRepository,
    VideoRepository,
)


@dataclass
class TierResult:
    """A resolution tier that was transcoded and stored."""
    resolution: str
    storage_path: str
    content_id: str
    duration: int
    url: str = ""


class PersistenceManager:
    """Writes the outcome of a processed upload in one transaction."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        logger: Optional[logging.Logger] = None,
    ):
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger(__name__)

    async def commit(
        self,
        upload_id: uuid.UUID,
        video_id: uuid.UUID,
        content_id: str,
        storage_path: str,
        checksum: str,
        results: list[TierResult],
    ) -> None:
        """Persist the original's locations, every tier, and completion.

        Args:
            upload_id: Upload to mark completed
            video_id: Video to update
            content_id: CID of the original
            storage_path: Object-store key of the original
            checksum: SHA-256 hex digest of the original
            results: Successfully stored tiers

        Raises:
            PersistenceError: If anything fails; nothing is written
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    videos = VideoRepository(session)
                    video = await videos.get_by_id(video_id)
                    if video is None:
                        raise VideoNotFoundError(f"Video {video_id} not found")

                    await videos.update(
                        video,
                        content_id=content_id,
                        storage_path=storage_path,
                        checksum=checksum,
                    )

                    transcodes = TranscodeRepository(session)
                    for result in results:
                        await transcodes.create_with_segment(
                            video_id=video_id,
                            resolution=result.resolution,
                            storage_path=result.storage_path,
                            content_id=result.content_id,
                            duration=result.duration,
                        )

                    updated = await UploadRepository(session).update_status(
                        upload_id,
                        UploadStatus.COMPLETED,
                        phase=UploadPhase.DONE,
                    )
                    if not updated:
                        raise PersistenceError(
                            f"Upload {upload_id} was finalized by another writer"
                        )
        except PersistenceError:
            raise
        except (SQLAlchemyError, PavilionError) as e:
            raise PersistenceError("Failed to commit upload results", cause=e)

        self.logger.info(
            f"Committed video {video_id} with {len(results)} transcodes",
            extra={"video_id": str(video_id), "transcodes": len(results)},
        )
