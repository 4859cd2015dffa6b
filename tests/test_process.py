from __future__ import annotations

import asyncio
import sys

import pytest

import trimkit.tool.process as process_module
from trimkit.tool.process import run_process


def test_run_process_captures_stdout_head_and_exit_code() -> None:
    completed = asyncio.run(
        run_process(
            [sys.executable, "-c", "import sys; print('hello world'); sys.exit(3)"],
            stdout_limit=5,
        )
    )

    assert completed.returncode == 3
    assert completed.stdout == "hello"
    assert completed.stderr == ""


def test_run_process_keeps_only_the_stderr_tail() -> None:
    script = "import sys; sys.stderr.write('x' * 10000 + 'END')"

    completed = asyncio.run(run_process([sys.executable, "-c", script], stderr_limit=100))

    assert completed.stderr_truncated is True
    assert len(completed.stderr) == 100
    assert completed.stderr.endswith("END")


def test_run_process_kills_child_on_timeout() -> None:
    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(run_process([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.2))


def test_cancelled_caller_kills_and_reaps_child(monkeypatch: pytest.MonkeyPatch) -> None:
    spawned: list[asyncio.subprocess.Process] = []
    real_exec = asyncio.create_subprocess_exec

    async def _spy(*args, **kwargs):
        process = await real_exec(*args, **kwargs)
        spawned.append(process)
        return process

    monkeypatch.setattr(process_module.asyncio, "create_subprocess_exec", _spy)

    async def _scenario() -> None:
        task = asyncio.create_task(run_process([sys.executable, "-c", "import time; time.sleep(30)"]))
        while not spawned:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_scenario())

    assert spawned[0].returncode is not None


def test_missing_executable_raises_file_not_found(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        asyncio.run(run_process([str(tmp_path / "no-such-ffmpeg"), "-version"]))
