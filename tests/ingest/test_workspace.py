"""Tests for TempWorkspace."""

import os
import time

import pytest

from pavilion.core.exceptions import ProcessingError
from pavilion.modules.ingest.workspace import TempWorkspace


class TestTempWorkspace:
    """Managed staging directories."""

    def test_create_and_cleanup(self, tmp_path) -> None:
        workspace = TempWorkspace(str(tmp_path / "temp"))

        path = workspace.create_temp_dir()
        with open(os.path.join(path, "file"), "w") as f:
            f.write("x")

        assert workspace.is_managed(path)
        assert workspace.active_dirs() == [path]

        workspace.cleanup_dir(path)

        assert not os.path.exists(path)
        assert not workspace.is_managed(path)

    def test_cleanup_unmanaged_path_raises(self, tmp_path) -> None:
        workspace = TempWorkspace(str(tmp_path / "temp"))

        with pytest.raises(ProcessingError):
            workspace.cleanup_dir(str(tmp_path))

        assert os.path.exists(tmp_path)

    def test_create_failure_raises(self, tmp_path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file")
        workspace = TempWorkspace(str(blocker))

        with pytest.raises(ProcessingError):
            workspace.create_temp_dir()

    def test_scoped_workspace_is_removed_on_error(self, tmp_path) -> None:
        workspace = TempWorkspace(str(tmp_path / "temp"))

        with pytest.raises(RuntimeError):
            with workspace.workspace() as path:
                assert os.path.isdir(path)
                raise RuntimeError("boom")

        assert not os.path.exists(path)
        assert workspace.active_dirs() == []

    def test_cleanup_all(self, tmp_path) -> None:
        workspace = TempWorkspace(str(tmp_path / "temp"))
        paths = [workspace.create_temp_dir() for _ in range(3)]

        assert workspace.cleanup_all() == []

        assert workspace.active_dirs() == []
        assert not any(os.path.exists(p) for p in paths)

    def test_purge_orphans_skips_recent_and_managed(self, tmp_path) -> None:
        workspace = TempWorkspace(str(tmp_path / "temp"))
        managed = workspace.create_temp_dir()
        orphan = tmp_path / "temp" / "orphan"
        orphan.mkdir()
        recent = tmp_path / "temp" / "recent"
        recent.mkdir()
        old = time.time() - 7200
        os.utime(orphan, (old, old))
        os.utime(managed, (old, old))

        removed = workspace.purge_orphans(3600)

        assert removed == [str(orphan)]
        assert os.path.isdir(managed)
        assert os.path.isdir(recent)
