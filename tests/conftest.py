"""Shared fixtures: in-process SQLite database and fake media tools."""

import json
import os
import stat
import sys
import textwrap

# Settings require these before any pavilion import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pavilion.core.database import Base
from pavilion.modules.ingest import models  # noqa: F401

PROBE_JSON = {
    "streams": [
        {"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
        {"codec_type": "audio", "codec_name": "aac"},
    ],
    "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "12.7", "bit_rate": "1500000"},
}


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory on a fresh SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


def write_tool(directory, name: str, body: str) -> str:
    """Write an executable Python script and return its path."""
    path = os.path.join(str(directory), name)
    with open(path, "w") as f:
        f.write(f"#!{sys.executable}\n")
        f.write(textwrap.dedent(body))
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def make_ffprobe(directory, payload=None, exit_code: int = 0, raw: str = None, sleep: float = 0) -> str:
    """Fake ffprobe printing a fixed payload for any existing file."""
    output = raw if raw is not None else json.dumps(payload or PROBE_JSON)
    return write_tool(directory, "ffprobe", f"""
        import os, sys, time
        time.sleep({sleep!r})
        if not os.path.exists(sys.argv[-1]):
            sys.exit(1)
        sys.stdout.write({output!r})
        sys.exit({exit_code!r})
    """)


def make_ffmpeg(directory, fail_sizes=(), empty_output: bool = False, sleep: float = 0) -> str:
    """Fake ffmpeg writing its arguments as JSON into the output file.

    Exits 1 when the requested ``-s`` size is in fail_sizes.
    """
    return write_tool(directory, "ffmpeg", f"""
        import json, sys, time
        args = sys.argv[1:]
        size = args[args.index("-s") + 1]
        sys.stderr.write("frame=1 fps=30 size=" + size + "\\n")
        time.sleep({sleep!r})
        if size in {list(fail_sizes)!r}:
            sys.stderr.write("Conversion failed!\\n")
            sys.exit(1)
        with open(args[-1], "w") as out:
            if not {empty_output!r}:
                json.dump(args, out)
        sys.exit(0)
    """)


class MediaTools:
    """Writes fake ffprobe and ffmpeg executables into one directory."""

    def __init__(self, directory):
        self.directory = directory

    def ffprobe(self, **kwargs) -> str:
        return make_ffprobe(self.directory, **kwargs)

    def ffmpeg(self, **kwargs) -> str:
        return make_ffmpeg(self.directory, **kwargs)


@pytest.fixture
def media_tools(tmp_path):
    tools = tmp_path / "tools"
    tools.mkdir()
    return MediaTools(tools)
