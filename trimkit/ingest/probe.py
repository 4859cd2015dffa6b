from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any

from trimkit.errors import MediaProbeError, ToolMissingError
from trimkit.models import MediaInfo
from trimkit.tool.locator import LocatedTool
from trimkit.tool.process import run_process

PROBE_STDOUT_LIMIT = 1024 * 1024
PROBE_TIMEOUT_SECONDS = 60.0

_DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_VIDEO_PATTERN = re.compile(r"Stream #[^:]+:\d+.*?: Video: (\w+)(.*)")
_AUDIO_PATTERN = re.compile(r"Stream #[^:]+:\d+.*?: Audio: (\w+)")
_DIMENSIONS_PATTERN = re.compile(r"[ ,](\d{2,5})x(\d{2,5})(?=[ ,\[]|$)")
_ROTATION_PATTERN = re.compile(r"rotation of (-?\d+(?:\.\d+)?) degrees")


async def probe_media(tool: LocatedTool, source_path: Path) -> MediaInfo:
    """Read dimensions, duration and codecs of ``source_path``.

    Uses ffprobe JSON when ffprobe is available, otherwise the stream banner
    ffmpeg prints for ``-i`` with no output.
    """

    if not source_path.exists():
        raise MediaProbeError(f"Video file not found: {source_path}")

    if tool.ffprobe is not None:
        payload = await _run_ffprobe(tool.ffprobe, source_path)
        return _normalize_probe_payload(payload)

    banner = await _run_ffmpeg_banner(tool.ffmpeg, source_path)
    return parse_ffmpeg_banner(banner)


async def _run_ffprobe(ffprobe: Path, source_path: Path) -> dict[str, Any]:
    command = [
        str(ffprobe),
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(source_path),
    ]

    try:
        completed = await run_process(
            command,
            stdout_limit=PROBE_STDOUT_LIMIT,
            timeout=PROBE_TIMEOUT_SECONDS,
        )
    except FileNotFoundError as exc:
        raise ToolMissingError(
            f"ffprobe executable was not found at {ffprobe}."
        ) from exc
    except asyncio.TimeoutError as exc:
        raise MediaProbeError(f"ffprobe timed out while reading {source_path}") from exc

    if completed.returncode != 0:
        stderr = completed.stderr.strip()
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise MediaProbeError(
            f"ffprobe failed to read media file: {source_path}.{details}"
        )

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise MediaProbeError("ffprobe returned invalid JSON output.") from exc


async def _run_ffmpeg_banner(ffmpeg: Path, source_path: Path) -> str:
    command = [str(ffmpeg), "-hide_banner", "-nostdin", "-i", str(source_path)]
    try:
        # ffmpeg exits non-zero here because no output is given; the banner is all we need.
        completed = await run_process(command, stderr_limit=PROBE_STDOUT_LIMIT, timeout=PROBE_TIMEOUT_SECONDS)
    except FileNotFoundError as exc:
        raise ToolMissingError(f"ffmpeg executable was not found at {ffmpeg}.") from exc
    except asyncio.TimeoutError as exc:
        raise MediaProbeError(f"ffmpeg timed out while reading {source_path}") from exc
    return completed.stderr


def parse_ffmpeg_banner(banner: str) -> MediaInfo:
    duration_seconds = None
    duration_match = _DURATION_PATTERN.search(banner)
    if duration_match:
        hours, minutes, seconds = duration_match.groups()
        duration_seconds = int(hours) * 3600 + int(minutes) * 60 + float(seconds)

    width = height = None
    video_codec = None
    video_match = _VIDEO_PATTERN.search(banner)
    if video_match:
        video_codec = video_match.group(1).lower()
        dimensions = _DIMENSIONS_PATTERN.search(video_match.group(2))
        if dimensions:
            width, height = int(dimensions.group(1)), int(dimensions.group(2))

    rotation_match = _ROTATION_PATTERN.search(banner)
    if rotation_match and width and height and _is_quarter_turn(float(rotation_match.group(1))):
        width, height = height, width

    audio_match = _AUDIO_PATTERN.search(banner)

    if video_codec is None and audio_match is None:
        raise MediaProbeError("ffmpeg could not find any media streams in the source.")

    return MediaInfo(
        width=width,
        height=height,
        duration_seconds=duration_seconds,
        video_codec=video_codec,
        audio_codec=audio_match.group(1).lower() if audio_match else None,
    )


def _normalize_probe_payload(payload: dict[str, Any]) -> MediaInfo:
    stream_entries = payload.get("streams", [])
    format_entry = payload.get("format", {})

    video_stream = next(
        (
            stream
            for stream in stream_entries
            if stream.get("codec_type") == "video"
            and not stream.get("disposition", {}).get("attached_pic")
        ),
        None,
    )
    audio_stream = next((stream for stream in stream_entries if stream.get("codec_type") == "audio"), None)

    if video_stream is None and audio_stream is None:
        raise MediaProbeError("ffprobe found no audio or video streams in the source.")

    width = height = None
    if video_stream is not None:
        width = _to_int(video_stream.get("width"))
        height = _to_int(video_stream.get("height"))
        if width and height and _is_quarter_turn(_stream_rotation(video_stream)):
            width, height = height, width

    duration_seconds = _to_float(format_entry.get("duration"))
    if duration_seconds is None and video_stream is not None:
        duration_seconds = _to_float(video_stream.get("duration"))

    return MediaInfo(
        width=width,
        height=height,
        duration_seconds=duration_seconds,
        video_codec=video_stream.get("codec_name") if video_stream else None,
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
    )


def _stream_rotation(stream: dict[str, Any]) -> float:
    for side_data in stream.get("side_data_list", []) or []:
        rotation = _to_float(side_data.get("rotation"))
        if rotation is not None:
            return rotation
    return _to_float(stream.get("tags", {}).get("rotate")) or 0.0


def _is_quarter_turn(rotation: float) -> bool:
    return round(abs(rotation)) % 180 == 90


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    try:
        return float(raw_value)
    except (TypeError, ValueError) as exc:
        raise MediaProbeError(f"ffprobe reported a malformed number: {raw_value!r}") from exc


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    try:
        return int(raw_value)
    except (TypeError, ValueError) as exc:
        raise MediaProbeError(f"ffprobe reported a malformed integer: {raw_value!r}") from exc
