"""Progress-reporting stream wrapper."""

import threading
from typing import BinaryIO, Callable, Optional

from pavilion.core.exceptions import StorageError

ProgressCallback = Callable[[int, int], None]


class ProgressReader:
    """Wraps a binary stream and reports bytes read on every read call.

    The reported count is clamped to the declared total and never decreases.
    Only ``read`` is exposed, so consumers treat the wrapper as a
    non-seekable stream of unknown length.

    Args:
        stream: Underlying binary stream
        total: Declared total size in bytes (0 when unknown)
        on_progress: Callback receiving (bytes_read, total)
        cancel_event: When set, the next read raises StorageError
    """

    def __init__(
        self,
        stream: BinaryIO,
        total: int = 0,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self._stream = stream
        self.total = max(total, 0)
        self.on_progress = on_progress
        self.cancel_event = cancel_event
        self.bytes_read = 0
        self._reported = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise StorageError("Upload cancelled")

        data = self._stream.read(size)
        self.bytes_read += len(data)

        reported = self.bytes_read
        if self.total:
            reported = min(reported, self.total)
        self._reported = max(self._reported, reported)

        if self.on_progress is not None:
            self.on_progress(self._reported, self.total)

        return data

    def close(self) -> None:
        self._stream.close()


class HighWaterMark:
    """Forwards progress only when it advances.

    Used across retry attempts so a restarted upload does not make the
    observed byte count go backwards.
    """

    def __init__(self, on_progress: Optional[ProgressCallback]):
        self.on_progress = on_progress
        self.value = 0

    def __call__(self, bytes_read: int, total: int) -> None:
        if bytes_read < self.value:
            return
        self.value = bytes_read
        if self.on_progress is not None:
            self.on_progress(bytes_read, total)
