"""End-to-end upload processing.

The coordinator stages the original, probes it, stores it in the content
store and then the object store, produces each resolution tier, and commits
the results. Storing the original is mandatory; every tier is best effort.

Each status change is its own short transaction. No transaction is open
while a subprocess or a network upload runs.
"""

import asyncio
import hashlib
import logging
import os
import uuid
from typing import BinaryIO, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pavilion.core.exceptions import (
    InvalidStatusTransitionError,
    PersistenceError,
    ProcessingError,
    StorageError,
    UploadNotFoundError,
)
from pavilion.core.logging import correlation_scope, log_error, log_info, log_warning
from pavilion.core.tracing import pipeline_span, record_failure
from pavilion.modules.ingest.models import UploadPhase, UploadStatus, VideoUpload
from pavilion.modules.ingest.persistence import PersistenceManager, TierResult
from pavilion.modules.ingest.repository import UploadRepository
from pavilion.modules.ingest.schemas import FileMeta
from pavilion.modules.ingest.workspace import TempWorkspace
from pavilion.modules.storage.uploader import DualStorageUploader
from pavilion.modules.transcoding.ffmpeg import FFmpegTranscoder, MetadataProbe
from pavilion.modules.transcoding.schemas import VideoMetadata

STAGING_CHUNK_SIZE = 1024 * 1024
DEFAULT_RESOLUTIONS = ("720p", "480p", "360p")
CANCELLED_MESSAGE = "cancelled"


def variant_key(video_id: uuid.UUID, resolution: str) -> str:
    """Object-store key of a transcoded variant."""
    return f"videos/{video_id}/{resolution}.mp4"


def stage_stream(stream: BinaryIO, dest_path: str) -> tuple[str, int]:
    """Copy a stream to a file while hashing it.

    Returns:
        (SHA-256 hex digest, bytes written)
    """
    digest = hashlib.sha256()
    size = 0
    with open(dest_path, "wb") as out:
        while True:
            chunk = stream.read(STAGING_CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)
            out.write(chunk)
            size += len(chunk)
    return digest.hexdigest(), size


class ProgressRecorder:
    """Coalesces progress callbacks into upload-row writes.

    Callbacks arrive on the event loop. At most one write is in flight; while
    it runs, newer counts replace each other and the latest is written next.

    Args:
        session_factory: Factory for short-lived sessions
        upload_id: Upload being tracked
        field: ``ipfs_bytes_uploaded`` or ``s3_bytes_uploaded``
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        upload_id: uuid.UUID,
        field: str,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_factory = session_factory
        self.upload_id = upload_id
        self.field = field
        self.logger = logger or logging.getLogger(__name__)
        self.latest: Optional[int] = None
        self.written: Optional[int] = None
        self.writes = 0
        self._task: Optional[asyncio.Task] = None

    def __call__(self, bytes_read: int, total: int) -> None:
        self.latest = bytes_read
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self._flush())

    async def _flush(self) -> None:
        while self.latest is not None and self.latest != self.written:
            value = self.latest
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        await UploadRepository(session).update_progress(
                            self.upload_id, **{self.field: value}
                        )
            except SQLAlchemyError as e:
                log_warning(
                    self.logger,
                    f"Failed to record {self.field}: {e}",
                    upload_id=str(self.upload_id),
                )
            self.written = value
            self.writes += 1

    async def drain(self) -> None:
        """Wait until the latest reported count has been written."""
        while self._task is not None and not self._task.done():
            await self._task


class UploadCoordinator:
    """Runs the upload pipeline for one initialized upload."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        uploader: DualStorageUploader,
        probe: MetadataProbe,
        transcoder: FFmpegTranscoder,
        workspace: TempWorkspace,
        persistence: Optional[PersistenceManager] = None,
        resolutions: Optional[list[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_factory = session_factory
        self.uploader = uploader
        self.probe = probe
        self.transcoder = transcoder
        self.workspace = workspace
        self.logger = logger or logging.getLogger(__name__)
        self.persistence = persistence or PersistenceManager(session_factory, logger=self.logger)
        self.resolutions = list(resolutions) if resolutions is not None else list(DEFAULT_RESOLUTIONS)

    @classmethod
    def from_settings(
        cls,
        settings,
        session_factory: async_sessionmaker[AsyncSession],
        workspace: Optional[TempWorkspace] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "UploadCoordinator":
        probe = MetadataProbe.from_settings(settings, logger=logger)
        return cls(
            session_factory=session_factory,
            uploader=DualStorageUploader.from_settings(settings, logger=logger),
            probe=probe,
            transcoder=FFmpegTranscoder.from_settings(settings, probe=probe, logger=logger),
            workspace=workspace or TempWorkspace.from_settings(settings, logger=logger),
            resolutions=settings.TRANSCODE_RESOLUTIONS,
            logger=logger,
        )

    async def process_upload(
        self,
        upload: VideoUpload,
        file_stream: BinaryIO,
        file_meta: FileMeta,
    ) -> list[TierResult]:
        """Process an initialized upload to completion.

        Args:
            upload: Upload created by VideoService.initialize_upload
            file_stream: Readable binary stream of the original
            file_meta: Client-supplied file details

        Returns:
            The tiers that were stored and committed

        Raises:
            InvalidStatusTransitionError: The upload is no longer pending
            ProcessingError: Staging or probing the original failed
            StorageError: Storing the original failed
            PersistenceError: The final commit failed
        """
        upload_id = upload.id
        video_id = upload.video_id
        await self._require_pending(upload_id)

        with correlation_scope(str(upload_id)):
            log_info(
                self.logger,
                f"Processing upload {upload_id} ({file_meta.filename})",
                upload_id=str(upload_id),
                video_id=str(video_id),
            )
            try:
                with pipeline_span("process_upload", upload_id=str(upload_id), video_id=str(video_id)):
                    return await self._run(upload_id, video_id, file_stream, file_meta)
            except asyncio.CancelledError:
                log_warning(self.logger, f"Upload {upload_id} cancelled", upload_id=str(upload_id))
                await asyncio.shield(
                    self._mark_failed(upload_id, UploadStatus.FAILED, CANCELLED_MESSAGE)
                )
                raise

    async def _require_pending(self, upload_id: uuid.UUID) -> None:
        # A finished or in-flight upload must not restage or overwrite stored objects
        async with self.session_factory() as session:
            current = await UploadRepository(session).get_by_id(upload_id)
        if current is None:
            raise UploadNotFoundError(f"Upload {upload_id} not found")
        if current.status != UploadStatus.PENDING.value:
            raise InvalidStatusTransitionError(
                f"Upload {upload_id} is {current.status}; only pending uploads can be processed"
            )

    async def _run(
        self,
        upload_id: uuid.UUID,
        video_id: uuid.UUID,
        file_stream: BinaryIO,
        file_meta: FileMeta,
    ) -> list[TierResult]:
        try:
            with self.workspace.workspace() as work_dir:
                return await self._run_in(work_dir, upload_id, video_id, file_stream, file_meta)
        except ProcessingError as e:
            record_failure(e)
            log_error(self.logger, f"Upload {upload_id} failed", exception=e, upload_id=str(upload_id))
            await self._mark_failed(upload_id, UploadStatus.FAILED, str(e))
            raise

    async def _run_in(
        self,
        work_dir: str,
        upload_id: uuid.UUID,
        video_id: uuid.UUID,
        file_stream: BinaryIO,
        file_meta: FileMeta,
    ) -> list[TierResult]:
        await self._set_status(upload_id, UploadStatus.PENDING, UploadPhase.STAGING)

        with pipeline_span("stage"):
            staged_path = os.path.join(work_dir, f"original{file_meta.extension}")
            try:
                checksum, size = await asyncio.to_thread(stage_stream, file_stream, staged_path)
            except OSError as e:
                raise ProcessingError("Failed to stage upload", cause=e)
            source = await self.probe.get_metadata(staged_path)

        log_info(
            self.logger,
            f"Staged {size} bytes ({source.width}x{source.height}, {source.duration:.1f}s)",
            upload_id=str(upload_id),
            checksum=checksum,
        )

        content_id = await self._store_original_in_content_store(
            upload_id, staged_path, size, file_meta
        )
        storage_path = f"{content_id}{file_meta.extension}"
        await self._store_original_in_object_store(
            upload_id, staged_path, storage_path, size, file_meta
        )

        results = await self._process_tiers(work_dir, upload_id, video_id, staged_path, source)

        await self._set_status(upload_id, UploadStatus.S3_COMPLETED, UploadPhase.FINALIZING)
        with pipeline_span("finalize", tiers=len(results)):
            try:
                await self.persistence.commit(
                    upload_id=upload_id,
                    video_id=video_id,
                    content_id=content_id,
                    storage_path=storage_path,
                    checksum=checksum,
                    results=results,
                )
            except PersistenceError as e:
                record_failure(e)
                log_error(self.logger, "Final commit failed", exception=e, upload_id=str(upload_id))
                await self._mark_failed(upload_id, UploadStatus.FAILED, str(e))
                raise

        log_info(
            self.logger,
            f"Upload {upload_id} completed with {len(results)} transcodes",
            upload_id=str(upload_id),
            content_id=content_id,
        )
        return results

    async def _store_original_in_content_store(
        self,
        upload_id: uuid.UUID,
        staged_path: str,
        size: int,
        file_meta: FileMeta,
    ) -> str:
        await self._set_status(upload_id, UploadStatus.IPFS_UPLOADING, UploadPhase.IPFS)
        recorder = ProgressRecorder(
            self.session_factory, upload_id, "ipfs_bytes_uploaded", logger=self.logger
        )

        with pipeline_span("ipfs_upload", file_size=size):
            try:
                content_id = await self.uploader.upload_to_content_store(
                    staged_path,
                    total_size=size,
                    on_progress=recorder,
                    filename=file_meta.filename,
                )
            except StorageError as e:
                record_failure(e)
                await recorder.drain()
                log_error(self.logger, "IPFS upload failed", exception=e, upload_id=str(upload_id))
                await self._mark_failed(upload_id, UploadStatus.IPFS_FAILED, str(e))
                raise
            await recorder.drain()

        await self._set_status(upload_id, UploadStatus.IPFS_COMPLETED, UploadPhase.IPFS)
        return content_id

    async def _store_original_in_object_store(
        self,
        upload_id: uuid.UUID,
        staged_path: str,
        storage_path: str,
        size: int,
        file_meta: FileMeta,
    ) -> str:
        await self._set_status(upload_id, UploadStatus.S3_UPLOADING, UploadPhase.S3)
        recorder = ProgressRecorder(
            self.session_factory, upload_id, "s3_bytes_uploaded", logger=self.logger
        )

        with pipeline_span("s3_upload", file_size=size, storage_key=storage_path):
            try:
                url = await self.uploader.upload_to_object_store(
                    staged_path,
                    storage_path,
                    total_size=size,
                    on_progress=recorder,
                    content_type=file_meta.content_type,
                )
            except StorageError as e:
                record_failure(e)
                await recorder.drain()
                log_error(self.logger, "Object store upload failed", exception=e, upload_id=str(upload_id))
                await self._mark_failed(upload_id, UploadStatus.S3_FAILED, str(e))
                raise
            await recorder.drain()

        await self._set_status(upload_id, UploadStatus.S3_COMPLETED, UploadPhase.TRANSCODING)
        return url

    async def _process_tiers(
        self,
        work_dir: str,
        upload_id: uuid.UUID,
        video_id: uuid.UUID,
        staged_path: str,
        source: VideoMetadata,
    ) -> list[TierResult]:
        results = []
        failed = []
        for resolution in self.resolutions:
            # Re-entering the status refreshes updated_at so the stale reaper skips this run
            await self._set_status(upload_id, UploadStatus.S3_COMPLETED, UploadPhase.TRANSCODING)
            with pipeline_span("transcode", resolution=resolution):
                result = await self._process_tier(work_dir, video_id, staged_path, source, resolution)
            if result is None:
                failed.append(resolution)
            else:
                results.append(result)

        if failed:
            log_warning(
                self.logger,
                f"{len(failed)} of {len(self.resolutions)} tiers failed: {', '.join(failed)}",
                failed_resolutions=failed,
            )
        return results

    async def _process_tier(
        self,
        work_dir: str,
        video_id: uuid.UUID,
        staged_path: str,
        source: VideoMetadata,
        resolution: str,
    ) -> Optional[TierResult]:
        output_path = os.path.join(work_dir, f"{resolution}.mp4")

        try:
            await self.transcoder.transcode(staged_path, output_path, resolution, source=source)
        except ProcessingError as e:
            log_warning(self.logger, f"Transcode to {resolution} failed: {e}", resolution=resolution)
            return None

        key = variant_key(video_id, resolution)
        try:
            url = await self.uploader.upload_to_object_store(
                output_path, key, content_type="video/mp4"
            )
        except StorageError as e:
            log_warning(self.logger, f"Object store upload of {resolution} failed: {e}", resolution=resolution)
            return None

        try:
            content_id = await self.uploader.upload_to_content_store(
                output_path, filename=f"{resolution}.mp4"
            )
        except StorageError as e:
            log_warning(self.logger, f"IPFS upload of {resolution} failed: {e}", resolution=resolution)
            content_id = ""

        try:
            variant = await self.probe.get_metadata(output_path)
        except ProcessingError as e:
            log_warning(self.logger, f"Probe of {resolution} failed: {e}", resolution=resolution)
            return None

        return TierResult(
            resolution=resolution,
            storage_path=key,
            content_id=content_id,
            duration=int(variant.duration),
            url=url,
        )

    async def _set_status(
        self,
        upload_id: uuid.UUID,
        status: UploadStatus,
        phase: UploadPhase,
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                updated = await UploadRepository(session).update_status(
                    upload_id, status, phase=phase
                )
        if not updated:
            log_warning(
                self.logger,
                f"Upload {upload_id} is already terminal, {status.value} not recorded",
                upload_id=str(upload_id),
            )

    async def _mark_failed(
        self,
        upload_id: uuid.UUID,
        status: UploadStatus,
        message: str,
    ) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await UploadRepository(session).update_status(
                        upload_id, status, error_message=message
                    )
        except (SQLAlchemyError, InvalidStatusTransitionError, UploadNotFoundError) as e:
            log_error(
                self.logger,
                f"Failed to record {status.value} for upload {upload_id}",
                exception=e,
                upload_id=str(upload_id),
            )
