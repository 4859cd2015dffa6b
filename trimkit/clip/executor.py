from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Callable

from trimkit.clip.command import build_trim_command, render_command
from trimkit.config import ExecuteSettings, OutputSettings
from trimkit.errors import ExecuteError, InvalidTimeRange, SubprocessFailedError, ToolMissingError
from trimkit.ingest.probe import probe_media
from trimkit.models import AspectRatio, ClipSuccess, MediaInfo, Timestamp
from trimkit.tool.locator import LocatedTool
from trimkit.tool.process import run_process

logger = logging.getLogger(__name__)

OUTPUT_SUFFIX = ".mp4"
FATAL_STDERR_PATTERN = re.compile(
    r"Conversion failed!"
    r"|Invalid data found when processing input"
    r"|Error opening (?:input|output)"
    r"|Could not open file"
    r"|No such file or directory"
    r"|Output file is empty",
    re.IGNORECASE,
)


class ClipExecutor:
    """Runs ffmpeg for one trim request against an already-local file."""

    def __init__(
        self,
        tool: LocatedTool,
        execute_settings: ExecuteSettings,
        output_settings: OutputSettings,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.tool = tool
        self.execute_settings = execute_settings
        self.output_settings = output_settings
        self._clock = clock

    async def execute(
        self,
        source_path: Path,
        start: Timestamp,
        end: Timestamp,
        ratio: AspectRatio,
        *,
        name_hint: str | None = None,
    ) -> ClipSuccess:
        if end.seconds <= start.seconds:
            raise InvalidTimeRange(f"End time {end} must be after start time {start}")

        media = await probe_media(self.tool, source_path)
        notes = clamping_notes(media, start, end)
        for note in notes:
            logger.warning("%s (%s)", note, source_path)

        output_path = await asyncio.to_thread(
            reserve_output_path,
            Path(self.output_settings.output_dir).expanduser(),
            name_hint or source_path.stem,
            self._clock(),
        )

        try:
            command = build_trim_command(
                ffmpeg=self.tool.ffmpeg,
                source_path=source_path,
                output_path=output_path,
                start=start,
                end=end,
                ratio=ratio,
                media=media,
                settings=self.execute_settings,
            )
            logger.debug("ffmpeg command: %s", render_command(command))
            await self._run(command, output_path, notes)
        except BaseException:
            _discard_output(output_path)
            raise

        logger.info("Clip written to %s", output_path)
        return ClipSuccess(output_path=output_path, notes=notes)

    async def _run(self, command: list[str], output_path: Path, notes: list[str]) -> None:
        try:
            completed = await run_process(
                command,
                stderr_limit=self.execute_settings.diagnostic_max_bytes,
            )
        except FileNotFoundError as exc:
            raise ToolMissingError(f"ffmpeg executable was not found at {self.tool.ffmpeg}") from exc
        except OSError as exc:
            raise ExecuteError(f"Failed to execute FFmpeg: {exc}") from exc

        diagnostic = completed.stderr.strip()
        if completed.stderr_truncated:
            diagnostic = f"[truncated] {diagnostic}"

        failed = completed.returncode != 0 or bool(FATAL_STDERR_PATTERN.search(diagnostic))
        if not failed and not _has_content(output_path):
            failed = True
            diagnostic = diagnostic or "ffmpeg finished but produced an empty output file"

        if failed:
            if notes:
                diagnostic = f"{diagnostic} ({'; '.join(notes)})" if diagnostic else "; ".join(notes)
            raise SubprocessFailedError(completed.returncode, diagnostic)


def clamping_notes(media: MediaInfo, start: Timestamp, end: Timestamp) -> list[str]:
    """Describe where ffmpeg will clamp the requested range to the media length."""

    duration = media.duration_seconds
    if duration is None:
        return []

    available = _format_seconds(duration)
    if start.seconds >= duration:
        return [f"start time {start} is beyond the media duration ({available})"]
    if end.seconds > duration:
        kept = _format_seconds(duration - start.seconds)
        return [f"end time {end} exceeds the media duration ({available}); clip was shortened to {kept}"]
    return []


def reserve_output_path(output_dir: Path, name_hint: str, moment: datetime) -> Path:
    """Claim a fresh output file name; existing files are never reused."""

    stem = _sanitize_stem(name_hint)
    base_name = f"{stem}_trimmed_{moment.strftime('%Y%m%d%H%M%S')}"
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        counter = 0
        while True:
            suffix = f"_{counter}" if counter else ""
            candidate = output_dir / f"{base_name}{suffix}{OUTPUT_SUFFIX}"
            try:
                with candidate.open("xb"):
                    return candidate
            except FileExistsError:
                counter += 1
    except OSError as exc:
        raise ExecuteError(f"Cannot create output file in {output_dir}: {exc}") from exc


def _sanitize_stem(raw_value: str) -> str:
    sanitized = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in raw_value).strip("_")
    return sanitized[:80] or "clip"


def _has_content(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except OSError:
        return False


def _discard_output(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove incomplete output %s: %s", path, exc)


def _format_seconds(value: float) -> str:
    return f"{max(value, 0.0):.1f}s"
