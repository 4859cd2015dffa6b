from __future__ import annotations

import asyncio
import contextlib
import logging
import shlex
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 4096


@dataclass(slots=True)
class ProcessOutput:
    returncode: int
    stdout: str
    stderr: str
    stderr_truncated: bool = False


async def run_process(
    args: Sequence[str],
    *,
    stdout_limit: int = 0,
    stderr_limit: int = 8192,
    timeout: float | None = None,
) -> ProcessOutput:
    """Run a child process with an argument vector and bounded output capture.

    stdout keeps its first ``stdout_limit`` bytes (0 discards it), stderr keeps
    its last ``stderr_limit`` bytes. If the caller is cancelled or the timeout
    expires, the child is killed and reaped before the exception propagates.
    FileNotFoundError from a missing executable is left to the caller.
    """

    logger.debug("Running %s", shlex.join(str(arg) for arg in args))
    process = await asyncio.create_subprocess_exec(
        *[str(arg) for arg in args],
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE if stdout_limit > 0 else asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        collected = _collect(process, stdout_limit, stderr_limit)
        if timeout is not None:
            stdout, stderr, truncated = await asyncio.wait_for(collected, timeout)
        else:
            stdout, stderr, truncated = await collected
    except BaseException:
        await _terminate(process)
        raise

    return ProcessOutput(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        stderr_truncated=truncated,
    )


async def _collect(
    process: asyncio.subprocess.Process,
    stdout_limit: int,
    stderr_limit: int,
) -> tuple[bytes, bytes, bool]:
    stdout_task = _read_head(process.stdout, stdout_limit)
    stderr_task = _read_tail(process.stderr, stderr_limit)
    stdout, (stderr, truncated) = await asyncio.gather(stdout_task, stderr_task)
    await process.wait()
    return stdout, stderr, truncated


async def _read_head(stream: asyncio.StreamReader | None, limit: int) -> bytes:
    if stream is None:
        return b""
    buffer = bytearray()
    while chunk := await stream.read(READ_CHUNK_BYTES):
        if len(buffer) < limit:
            buffer.extend(chunk[: limit - len(buffer)])
    return bytes(buffer)


async def _read_tail(stream: asyncio.StreamReader | None, limit: int) -> tuple[bytes, bool]:
    if stream is None:
        return b"", False
    buffer = bytearray()
    truncated = False
    while chunk := await stream.read(READ_CHUNK_BYTES):
        buffer.extend(chunk)
        overflow = len(buffer) - limit
        if overflow > 0:
            del buffer[:overflow]
            truncated = True
    return bytes(buffer), truncated


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await asyncio.shield(process.wait())
    logger.info("Killed child process %s", process.pid)
