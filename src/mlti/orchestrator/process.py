"""Process descriptions and the OS launch adapter."""

import asyncio
import signal
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import structlog

from ..core.errors import SpawnError


logger = structlog.get_logger()

# Longest output line forwarded in one piece, in bytes
LINE_LIMIT = 1024 * 1024
READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class ProcessSpec:
    """An immutable description of one command to run."""
    executable: str
    args: tuple[str, ...] = field(default_factory=tuple)
    name: str = ""
    index: int = 0
    color: Optional[str] = None
    hidden: bool = False
    command: str = ""

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]


class ProcessLauncher:
    """
    Starts child processes.

    stdout is piped and stderr is merged into it, so one line-oriented
    stream carries everything the child writes.
    """

    async def launch(self, spec: ProcessSpec) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                spec.executable,
                *spec.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=LINE_LIMIT,
            )
        except FileNotFoundError as e:
            raise SpawnError(
                f"Command not found: {spec.executable}",
                executable=spec.executable,
                task_index=spec.index,
                not_found=True,
            ) from e
        except OSError as e:
            raise SpawnError(
                f"Could not start {spec.executable}: {e.strerror or e}",
                executable=spec.executable,
                task_index=spec.index,
            ) from e


async def terminate_process(
    process: asyncio.subprocess.Process,
    signal_name: str = "SIGTERM",
    timeout: float = 5.0,
) -> Optional[int]:
    """
    Ask a child to stop, killing it if it outlives `timeout` seconds.

    Returns the exit code, or None if the process could not be reaped.
    """
    if process.returncode is not None:
        return process.returncode

    try:
        process.send_signal(getattr(signal, signal_name))
    except ProcessLookupError:
        return await process.wait()

    try:
        return await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("process_kill_escalated", pid=process.pid, signal=signal_name)

    try:
        process.kill()
    except ProcessLookupError:
        pass
    try:
        return await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("process_unreaped", pid=process.pid)
        return None


async def read_lines(
    reader: asyncio.StreamReader,
    limit: int = LINE_LIMIT,
) -> AsyncIterator[bytes]:
    """
    Yield output lines as they arrive, without the trailing newline.

    A line longer than `limit` bytes is yielded in `limit`-sized pieces, so
    output that never ends a line (a progress bar redrawn with carriage
    returns) cannot fail the read. Unterminated output at EOF is yielded last.
    """
    buffer = bytearray()
    while True:
        chunk = await reader.read(READ_CHUNK)
        if not chunk:
            break
        buffer.extend(chunk)

        start = 0
        while True:
            end = buffer.find(b"\n", start)
            if end < 0:
                break
            for piece in _pieces(bytes(buffer[start:end]), limit):
                yield piece
            start = end + 1
        del buffer[:start]

        while len(buffer) >= limit:
            yield bytes(buffer[:limit])
            del buffer[:limit]

    if buffer:
        yield bytes(buffer)


def _pieces(line: bytes, limit: int) -> list[bytes]:
    return [line[i:i + limit] for i in range(0, len(line), limit)] or [b""]
