"""Celery tasks for upload processing and housekeeping.

process_upload_task runs the pipeline for a file the HTTP layer has spooled
to disk. The beat tasks fail uploads that stopped making progress and remove
staging directories left behind by dead workers.
"""

import asyncio
import logging
import os
import uuid
from datetime import timedelta
from typing import Any, Optional

from celery.signals import worker_process_shutdown
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pavilion.core.celery_app import celery_app
from pavilion.core.config import settings
from pavilion.core.database import task_session_factory
from pavilion.core.exceptions import ProcessingError, UploadNotFoundError
from pavilion.core.logging import log_error, log_info, log_warning
from pavilion.core.tracing import shutdown_tracing
from pavilion.modules.ingest.coordinator import UploadCoordinator
from pavilion.modules.ingest.models import UploadPhase, UploadStatus, utc_now
from pavilion.modules.ingest.repository import UploadRepository
from pavilion.modules.ingest.schemas import FileMeta
from pavilion.modules.ingest.workspace import TempWorkspace

logger = logging.getLogger(__name__)

# Shared by every task run in this worker process
workspace = TempWorkspace.from_settings(settings, logger=logger)


@worker_process_shutdown.connect
def cleanup_workspace(**kwargs: Any) -> None:
    """Remove staging directories still held by this worker process."""
    failed = workspace.cleanup_all()
    if failed:
        log_warning(logger, f"Could not remove {len(failed)} staging directories")
    shutdown_tracing()


async def run_process_upload(
    session_factory: async_sessionmaker[AsyncSession],
    coordinator: UploadCoordinator,
    upload_id: uuid.UUID,
    staged_path: str,
    filename: str,
    content_type: str,
) -> dict:
    """Process a staged file and remove it afterwards.

    Returns:
        Summary with the upload id and the committed tiers

    Raises:
        UploadNotFoundError: If the upload does not exist
        ProcessingError: If the staged file cannot be opened; the upload is
            marked failed first
    """
    async with session_factory() as session:
        upload = await UploadRepository(session).get_by_id(upload_id)
    if upload is None:
        raise UploadNotFoundError(f"Upload {upload_id} not found")

    try:
        try:
            stream = open(staged_path, "rb")
        except OSError as e:
            log_error(logger, f"Staged file for upload {upload_id} is unreadable", exception=e)
            await _fail_upload(session_factory, upload_id, f"Staged file unreadable: {e}")
            raise ProcessingError(f"Staged file {staged_path} is unreadable", cause=e)

        with stream:
            file_meta = FileMeta(
                filename=filename,
                content_type=content_type,
                size=os.fstat(stream.fileno()).st_size,
            )
            results = await coordinator.process_upload(upload, stream, file_meta)
    finally:
        try:
            os.remove(staged_path)
        except FileNotFoundError:
            pass

    return {
        "upload_id": str(upload_id),
        "video_id": str(upload.video_id),
        "resolutions": [r.resolution for r in results],
    }


async def _fail_upload(
    session_factory: async_sessionmaker[AsyncSession],
    upload_id: uuid.UUID,
    message: str,
) -> None:
    async with session_factory() as session:
        async with session.begin():
            await UploadRepository(session).update_status(
                upload_id, UploadStatus.FAILED, error_message=message
            )


async def fail_stale_uploads(
    session_factory: async_sessionmaker[AsyncSession],
    max_age: timedelta,
) -> list[str]:
    """Mark uploads that made no progress within max_age as failed.

    Returns:
        IDs of the uploads that were failed
    """
    cutoff = utc_now() - max_age
    failed = []
    async with session_factory() as session:
        async with session.begin():
            repo = UploadRepository(session)
            for upload in await repo.get_stale(cutoff):
                updated = await repo.update_status(
                    upload.id,
                    UploadStatus.FAILED,
                    phase=UploadPhase(upload.current_phase),
                    error_message=f"No progress for {max_age}",
                )
                if updated:
                    failed.append(str(upload.id))
    return failed


async def _process_upload(
    upload_id: str,
    staged_path: str,
    filename: str,
    content_type: str,
) -> dict:
    async with task_session_factory() as session_factory:
        coordinator = UploadCoordinator.from_settings(
            settings, session_factory, workspace=workspace, logger=logger
        )
        return await run_process_upload(
            session_factory,
            coordinator,
            uuid.UUID(upload_id),
            staged_path,
            filename,
            content_type,
        )


async def _fail_stale_uploads() -> list[str]:
    async with task_session_factory() as session_factory:
        return await fail_stale_uploads(
            session_factory, timedelta(hours=settings.STALE_UPLOAD_HOURS)
        )


@celery_app.task(
    bind=True,
    name="pavilion.ingest.process_upload",
    acks_late=True,
)
def process_upload_task(
    self,
    upload_id: str,
    staged_path: str,
    filename: str,
    content_type: str = "application/octet-stream",
) -> dict:
    """Run the upload pipeline for a spooled file.

    Args:
        upload_id: Upload created by VideoService.initialize_upload
        staged_path: File written by the HTTP layer; removed when done
        filename: Original file name
        content_type: MIME type of the upload
    """
    log_info(logger, f"Task {self.request.id} processing upload {upload_id}")
    return asyncio.run(_process_upload(upload_id, staged_path, filename, content_type))


@celery_app.task(name="pavilion.ingest.fail_stale_uploads")
def fail_stale_uploads_task() -> dict:
    """Fail uploads stuck in a non-terminal status."""
    failed = asyncio.run(_fail_stale_uploads())
    if failed:
        log_warning(logger, f"Failed {len(failed)} stale uploads", upload_ids=failed)
    return {"failed": failed}


@celery_app.task(name="pavilion.ingest.cleanup_temp_dirs")
def cleanup_temp_dirs_task(max_age_hours: Optional[float] = None) -> dict:
    """Remove staging directories abandoned by dead workers."""
    hours = max_age_hours if max_age_hours is not None else settings.STALE_UPLOAD_HOURS
    removed = workspace.purge_orphans(hours * 3600)
    if removed:
        log_info(logger, f"Removed {len(removed)} orphaned staging directories")
    return {"removed": removed}
