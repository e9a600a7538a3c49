"""Managed temporary directories for staging uploads and variants."""

import logging
import os
import shutil
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

from pavilion.core.exceptions import ProcessingError


class TempWorkspace:
    """Creates and tracks scratch directories under a base directory.

    Every directory handed out is registered until it is cleaned up; the
    ``workspace()`` context manager removes its directory on every exit path.
    """

    def __init__(self, base_dir: str, logger: Optional[logging.Logger] = None):
        self.base_dir = os.path.abspath(base_dir)
        self.logger = logger or logging.getLogger(__name__)
        self._active: set[str] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, logger: Optional[logging.Logger] = None) -> "TempWorkspace":
        return cls(settings.TEMP_DIR, logger=logger)

    def create_temp_dir(self) -> str:
        """Create a uniquely named directory under the base directory.

        Raises:
            ProcessingError: If the directory cannot be created
        """
        path = os.path.join(self.base_dir, uuid.uuid4().hex)
        try:
            os.makedirs(path, mode=0o755)
        except OSError as e:
            raise ProcessingError(f"Failed to create temp directory {path}", cause=e)

        with self._lock:
            self._active.add(path)
        self.logger.debug(f"Created temp directory {path}")
        return path

    def is_managed(self, path: str) -> bool:
        with self._lock:
            return os.path.abspath(path) in self._active

    def active_dirs(self) -> list[str]:
        with self._lock:
            return sorted(self._active)

    def cleanup_dir(self, path: str) -> None:
        """Remove a managed directory and everything in it.

        Raises:
            ProcessingError: If the path is not managed or removal fails
        """
        path = os.path.abspath(path)
        with self._lock:
            if path not in self._active:
                raise ProcessingError(f"Directory is not managed: {path}")
            self._active.discard(path)

        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ProcessingError(f"Failed to remove temp directory {path}", cause=e)
        self.logger.debug(f"Removed temp directory {path}")

    def cleanup_all(self) -> list[str]:
        """Remove every managed directory.

        Returns:
            Paths that could not be removed
        """
        failed = []
        for path in self.active_dirs():
            try:
                self.cleanup_dir(path)
            except ProcessingError as e:
                self.logger.warning(str(e))
                failed.append(path)
        return failed

    def purge_orphans(self, max_age_seconds: float) -> list[str]:
        """Remove unmanaged directories under the base left by dead workers.

        Only directories older than max_age_seconds are removed, so work in
        progress in other processes is left alone.

        Returns:
            Paths removed
        """
        if not os.path.isdir(self.base_dir):
            return []

        cutoff = time.time() - max_age_seconds
        removed = []
        for entry in os.scandir(self.base_dir):
            if not entry.is_dir(follow_symlinks=False) or self.is_managed(entry.path):
                continue
            try:
                if entry.stat(follow_symlinks=False).st_mtime >= cutoff:
                    continue
                shutil.rmtree(entry.path)
            except OSError as e:
                self.logger.warning(f"Failed to remove orphaned directory {entry.path}: {e}")
                continue
            removed.append(entry.path)
        return removed

    @contextmanager
    def workspace(self) -> Iterator[str]:
        """Yield a managed directory that is removed when the block exits."""
        path = self.create_temp_dir()
        try:
            yield path
        finally:
            try:
                self.cleanup_dir(path)
            except ProcessingError as e:
                self.logger.warning(str(e))
