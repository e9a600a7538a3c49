"""Tests for VideoService validation, queries and deletion."""

import uuid
from unittest.mock import MagicMock

import pytest
from hypothesis import given, settings, strategies as st

from pavilion.core.exceptions import StorageError, UploadNotFoundError, ValidationError, VideoNotFoundError
from pavilion.modules.ingest.models import UploadPhase, UploadStatus
from pavilion.modules.ingest.service import MAX_PAGE_SIZE, UploadLimits, VideoService


def _service(session_factory=None, **kwargs) -> VideoService:
    return VideoService(session_factory, **kwargs)


class TestValidationProperties:
    """**Feature: video-ingest, Property 1: Upload request validation**"""

    @settings(max_examples=100)
    @given(size=st.integers(max_value=0))
    def test_non_positive_size_rejected(self, size: int) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _service().validate_video_upload("clip.mp4", size, "Valid title")
        assert exc_info.value.field == "file"

    @settings(max_examples=100)
    @given(extra=st.integers(min_value=1, max_value=10**9))
    def test_oversized_file_rejected(self, extra: int) -> None:
        limits = UploadLimits(max_size=1000)
        with pytest.raises(ValidationError) as exc_info:
            _service(limits=limits).validate_video_upload("clip.mp4", 1000 + extra, "Valid title")
        assert exc_info.value.field == "file"

    @settings(max_examples=100)
    @given(title=st.text(max_size=2))
    def test_short_title_rejected(self, title: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _service().validate_video_upload("clip.mp4", 10, title)
        assert exc_info.value.field == "title"

    @settings(max_examples=100)
    @given(
        title=st.text(
            alphabet=st.characters(blacklist_categories=("Zs", "Zl", "Zp", "Cc", "Cs")),
            min_size=3,
            max_size=100,
        ),
        size=st.integers(min_value=1, max_value=1000),
    )
    def test_valid_requests_accepted(self, title: str, size: int) -> None:
        limits = UploadLimits(max_size=1000)
        _service(limits=limits).validate_video_upload("clip.MP4", size, title)


class TestValidation:

    def test_boundary_size_accepted(self) -> None:
        _service(limits=UploadLimits(max_size=50)).validate_video_upload("a.mkv", 50, "Title")

    def test_unsupported_extension(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _service().validate_video_upload("notes.txt", 10, "Title")
        assert exc_info.value.field == "file"

    def test_title_is_trimmed_before_length_check(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _service().validate_video_upload("a.mp4", 10, "   ab   ")
        assert exc_info.value.field == "title"

    def test_long_title_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _service().validate_video_upload("a.mp4", 10, "x" * 101)
        assert exc_info.value.field == "title"

    def test_long_description_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _service().validate_video_upload("a.mp4", 10, "Title", "d" * 5001)
        assert exc_info.value.field == "description"

    def test_missing_filename_skips_format_check(self) -> None:
        _service().validate_video_upload(None, 10, "Title")


class TestVideoService:
    """Database-backed operations."""

    @pytest.mark.asyncio
    async def test_initialize_creates_video_and_pending_upload(self, session_factory) -> None:
        service = _service(session_factory)

        upload = await service.initialize_upload("  My video  ", "About it", 2048, filename="v.mp4")

        assert upload.status == UploadStatus.PENDING.value
        assert upload.current_phase == UploadPhase.PENDING.value
        assert upload.ipfs_bytes_uploaded == 0
        assert upload.s3_bytes_uploaded == 0
        video = await service.get_video(upload.video_id)
        assert video.title == "My video"
        assert video.description == "About it"
        assert video.file_size == 2048
        assert video.content_id is None
        assert video.deleted_at is None

    @pytest.mark.asyncio
    async def test_invalid_request_creates_nothing(self, session_factory) -> None:
        service = _service(session_factory)

        with pytest.raises(ValidationError):
            await service.initialize_upload("ok title", None, 0)

        assert await service.list_videos() == []

    @pytest.mark.asyncio
    async def test_unknown_ids_raise(self, session_factory) -> None:
        service = _service(session_factory)

        with pytest.raises(VideoNotFoundError):
            await service.get_video(uuid.uuid4())
        with pytest.raises(UploadNotFoundError):
            await service.get_upload(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_upload_status_carries_message(self, session_factory) -> None:
        service = _service(session_factory)
        upload = await service.initialize_upload("Status test", None, 10)

        status = await service.get_upload_status(upload.id)

        assert status.status == UploadStatus.PENDING.value
        assert status.video_id == upload.video_id
        assert status.message

    @pytest.mark.asyncio
    async def test_list_excludes_deleted_and_paginates(self, session_factory) -> None:
        service = _service(session_factory)
        uploads = [await service.initialize_upload(f"Video {i}", None, 10) for i in range(5)]
        await service.delete_video(uploads[0].video_id)

        first = await service.list_videos(page=1, limit=3)
        second = await service.list_videos(page=2, limit=3)

        listed = {v.id for v in first + second}
        assert len(first) == 3
        assert len(second) == 1
        assert uploads[0].video_id not in listed
        assert listed == {u.video_id for u in uploads[1:]}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, MAX_PAGE_SIZE + 1)])
    async def test_list_rejects_bad_paging(self, session_factory, page: int, limit: int) -> None:
        with pytest.raises(ValidationError):
            await _service(session_factory).list_videos(page=page, limit=limit)

    @pytest.mark.asyncio
    async def test_update_video(self, session_factory) -> None:
        service = _service(session_factory)
        upload = await service.initialize_upload("Old title", None, 10)

        await service.update_video(upload.video_id, title=" New title ", description="new")

        video = await service.get_video(upload.video_id)
        assert video.title == "New title"
        assert video.description == "new"

    @pytest.mark.asyncio
    async def test_update_deleted_video_raises(self, session_factory) -> None:
        service = _service(session_factory)
        upload = await service.initialize_upload("Gone soon", None, 10)
        await service.delete_video(upload.video_id)

        with pytest.raises(VideoNotFoundError):
            await service.update_video(upload.video_id, title="Revived")

    @pytest.mark.asyncio
    async def test_delete_removes_object_store_files(self, session_factory) -> None:
        object_store = MagicMock()
        service = _service(session_factory, object_store=object_store)
        upload = await service.initialize_upload("To delete", None, 10)

        deleted = await service.delete_video(upload.video_id)

        assert deleted.deleted_at is not None
        object_store.delete.assert_called_once_with(f"videos/{upload.video_id}/")
        video = await service.get_video(upload.video_id)
        assert video.is_deleted

    @pytest.mark.asyncio
    async def test_delete_survives_object_store_failure(self, session_factory) -> None:
        object_store = MagicMock()
        object_store.delete.side_effect = StorageError("bucket unavailable")
        service = _service(session_factory, object_store=object_store)
        upload = await service.initialize_upload("To delete", None, 10)

        await service.delete_video(upload.video_id)

        assert (await service.get_video(upload.video_id)).is_deleted
        with pytest.raises(VideoNotFoundError):
            await service.delete_video(upload.video_id)
