"""Managed child processes for ffmpeg and ffprobe.

A ManagedProcess drains stderr concurrently with waiting for exit, so a
chatty encoder never blocks on a full pipe. Cancellation and timeouts kill
and reap the child.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Sequence

from pavilion.core.exceptions import ProcessingError

STDERR_TAIL_LINES = 50


@dataclass
class ProcessResult:
    """Outcome of a finished child process."""
    returncode: int
    stdout: bytes
    stderr_tail: list[str]

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    def diagnostics(self) -> str:
        return "\n".join(self.stderr_tail)


class ManagedProcess:
    """Runs one command to completion under caller control.

    Args:
        args: Command and arguments
        capture_stdout: Collect stdout (ffprobe); otherwise discard it
        timeout: Seconds to wait before killing the child, None for no limit
        logger: Logger for drained diagnostics
    """

    def __init__(
        self,
        args: Sequence[str],
        capture_stdout: bool = False,
        timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.args = list(args)
        self.capture_stdout = capture_stdout
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    async def _start(self) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *self.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if self.capture_stdout else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessingError(f"Failed to start {self.args[0]}", cause=e)

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            self._stderr_tail.append(text)
            self.logger.debug(text, extra={"command": self.args[0]})

    async def _read_stdout(self, stream: Optional[asyncio.StreamReader]) -> bytes:
        if stream is None:
            return b""
        return await stream.read()

    async def _communicate(self, process: asyncio.subprocess.Process) -> tuple[bytes, int]:
        stdout, _ = await asyncio.gather(
            self._read_stdout(process.stdout),
            self._drain_stderr(process.stderr),
        )
        returncode = await process.wait()
        return stdout, returncode

    async def _kill(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    async def _reap(self, io_task: asyncio.Future) -> None:
        await self._kill()
        io_task.cancel()
        await asyncio.gather(io_task, return_exceptions=True)

    async def run(self) -> ProcessResult:
        """Start the process and wait for it to exit.

        Returns:
            ProcessResult with exit code, stdout and the stderr tail

        Raises:
            ProcessingError: If the command cannot be started or times out
            asyncio.CancelledError: After killing the child
        """
        self._process = await self._start()
        process = self._process

        io_task = asyncio.ensure_future(self._communicate(process))

        try:
            stdout, returncode = await asyncio.wait_for(
                asyncio.shield(io_task), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await self._reap(io_task)
            raise ProcessingError(
                f"{self.args[0]} timed out after {self.timeout}s"
            )
        except asyncio.CancelledError:
            await self._reap(io_task)
            raise

        return ProcessResult(
            returncode=returncode,
            stdout=stdout,
            stderr_tail=list(self._stderr_tail),
        )
