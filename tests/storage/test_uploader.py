"""Tests for DualStorageUploader retry and progress behavior."""

import io

import pytest

from pavilion.core.exceptions import StorageError
from pavilion.core.retry import RetryConfig
from pavilion.modules.storage.uploader import DualStorageUploader


class FlakyStore:
    """Content/object store double failing a fixed number of times."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.received = []

    def _consume(self, stream) -> bytes:
        self.calls += 1
        data = b""
        while True:
            chunk = stream.read(7)
            if not chunk:
                break
            data += chunk
        if self.calls <= self.failures:
            raise StorageError(f"transient failure {self.calls}")
        self.received.append(data)
        return data

    def upload(self, stream, key=None, filename=None, content_type=None) -> str:
        data = self._consume(stream)
        return key or f"cid-{len(data)}"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def payload_file(tmp_path):
    path = tmp_path / "payload.bin"
    path.write_bytes(b"0123456789" * 10)
    return str(path)


def _uploader(content_store, object_store, sleep, attempts=3) -> DualStorageUploader:
    return DualStorageUploader(
        content_store=content_store,
        object_store=object_store,
        retry_config=RetryConfig(max_attempts=attempts, initial_delay=1.0, max_delay=30.0),
        sleep=sleep,
    )


class TestDualStorageUploader:
    """Retry and progress delivery."""

    @pytest.mark.asyncio
    async def test_path_source_retries_with_backoff(self, payload_file) -> None:
        content_store = FlakyStore(failures=2)
        sleep = RecordingSleep()
        uploader = _uploader(content_store, FlakyStore(), sleep)

        cid = await uploader.upload_to_content_store(payload_file)

        assert cid == "cid-100"
        assert content_store.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_path_source_gives_up_after_max_attempts(self, payload_file) -> None:
        object_store = FlakyStore(failures=5)
        uploader = _uploader(FlakyStore(), object_store, RecordingSleep())

        with pytest.raises(StorageError):
            await uploader.upload_to_object_store(payload_file, "key.mp4")

        assert object_store.calls == 3

    @pytest.mark.asyncio
    async def test_stream_source_gets_single_attempt(self) -> None:
        content_store = FlakyStore(failures=1)
        sleep = RecordingSleep()
        uploader = _uploader(content_store, FlakyStore(), sleep)

        with pytest.raises(StorageError):
            await uploader.upload_to_content_store(io.BytesIO(b"data"), total_size=4)

        assert content_store.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_progress_reaches_total_and_never_decreases(self, payload_file) -> None:
        reports = []
        uploader = _uploader(FlakyStore(failures=1), FlakyStore(), RecordingSleep())

        await uploader.upload_to_content_store(
            payload_file, on_progress=lambda read, total: reports.append((read, total))
        )

        counts = [read for read, _ in reports]
        assert counts == sorted(counts)
        assert reports[-1] == (100, 100)

    @pytest.mark.asyncio
    async def test_object_store_receives_key_and_bytes(self, payload_file) -> None:
        object_store = FlakyStore()
        uploader = _uploader(FlakyStore(), object_store, RecordingSleep())

        url = await uploader.upload_to_object_store(payload_file, "videos/1/720p.mp4")

        assert url == "videos/1/720p.mp4"
        assert object_store.received == [b"0123456789" * 10]

    @pytest.mark.asyncio
    async def test_missing_path_raises_storage_error(self, tmp_path) -> None:
        uploader = _uploader(FlakyStore(), FlakyStore(), RecordingSleep())

        with pytest.raises(StorageError):
            await uploader.upload_to_content_store(str(tmp_path / "missing.bin"))
