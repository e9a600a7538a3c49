"""Dual-backend uploader.

Exposes two independent capabilities, one per backend. Ordering and which
backend is mandatory are decided by the caller. The blocking clients run in
worker threads; progress callbacks are delivered on the event loop.
"""

import asyncio
import logging
import os
import threading
from typing import Awaitable, BinaryIO, Callable, Optional, Union

from pavilion.core.exceptions import StorageError
from pavilion.core.retry import NO_RETRY, RetryConfig, retry_async
from pavilion.modules.storage.ipfs import IPFSClient
from pavilion.modules.storage.progress import HighWaterMark, ProgressCallback, ProgressReader
from pavilion.modules.storage.s3 import S3ObjectStore

UploadSource = Union[str, os.PathLike, BinaryIO]


class DualStorageUploader:
    """Uploads byte sources to the content store and the object store.

    Path sources are reopened on every attempt and retried on StorageError
    with exponential backoff. Stream sources get a single attempt.
    """

    def __init__(
        self,
        content_store: IPFSClient,
        object_store: S3ObjectStore,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.content_store = content_store
        self.object_store = object_store
        self.retry_config = retry_config or NO_RETRY
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, logger: Optional[logging.Logger] = None) -> "DualStorageUploader":
        return cls(
            content_store=IPFSClient.from_settings(settings, logger=logger),
            object_store=S3ObjectStore.from_settings(settings, logger=logger),
            retry_config=RetryConfig.from_settings(settings),
            logger=logger,
        )

    async def upload_to_content_store(
        self,
        source: UploadSource,
        total_size: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        filename: Optional[str] = None,
    ) -> str:
        """Upload to the content-addressable store.

        Returns:
            Content identifier

        Raises:
            StorageError: When every attempt fails
        """
        name = filename or _source_name(source)

        def send(stream: BinaryIO) -> str:
            return self.content_store.upload(stream, filename=name)

        return await self._upload(source, send, total_size, on_progress, "content store upload")

    async def upload_to_object_store(
        self,
        source: UploadSource,
        key: str,
        total_size: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload to the object store under key.

        Returns:
            Retrievable URL

        Raises:
            StorageError: When every attempt fails
        """
        def send(stream: BinaryIO) -> str:
            return self.object_store.upload(stream, key, content_type=content_type)

        return await self._upload(source, send, total_size, on_progress, f"object store upload of {key}")

    async def _upload(
        self,
        source: UploadSource,
        send: Callable[[BinaryIO], str],
        total_size: Optional[int],
        on_progress: Optional[ProgressCallback],
        description: str,
    ) -> str:
        loop = asyncio.get_running_loop()
        cancel_event = threading.Event()
        progress = HighWaterMark(on_progress)

        def threadsafe_progress(bytes_read: int, total: int) -> None:
            loop.call_soon_threadsafe(progress, bytes_read, total)

        if isinstance(source, (str, os.PathLike)):
            path = os.fspath(source)
            total = total_size if total_size is not None else _file_size(path)

            def attempt_path() -> str:
                with open(path, "rb") as f:
                    return send(ProgressReader(f, total, threadsafe_progress, cancel_event))

            async def attempt() -> str:
                try:
                    return await asyncio.to_thread(attempt_path)
                except OSError as e:
                    raise StorageError(f"Cannot read {path}", cause=e)

            retry_config = self.retry_config
        else:
            reader = ProgressReader(source, total_size or 0, threadsafe_progress, cancel_event)

            async def attempt() -> str:
                return await asyncio.to_thread(send, reader)

            retry_config = NO_RETRY

        try:
            return await retry_async(
                attempt,
                retry_config,
                retry_on=(StorageError,),
                description=description,
                sleep=self._sleep,
            )
        except asyncio.CancelledError:
            # The worker thread stops at its next read
            cancel_event.set()
            raise


def _file_size(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError as e:
        raise StorageError(f"Cannot read {path}", cause=e)


def _source_name(source: UploadSource) -> str:
    if isinstance(source, (str, os.PathLike)):
        return os.path.basename(os.fspath(source))
    return os.path.basename(getattr(source, "name", "") or "") or "file"
