from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Iterable
from urllib.parse import urlsplit

from trimkit.config import DownloadSettings
from trimkit.errors import SegmentDownloadError
from trimkit.models import Timestamp
from trimkit.source.downloader import discard_file, reserve_temp_file
from trimkit.tool.process import run_process

logger = logging.getLogger(__name__)

SEGMENT_SUFFIX = ".mp4"
YT_DLP_COMMAND = (sys.executable, "-m", "yt_dlp")


def is_segment_source(url: str, hosts: Iterable[str]) -> bool:
    """True for streaming-site pages that must go through yt-dlp."""

    hostname = (urlsplit(url).hostname or "").lower()
    for host in hosts:
        host = host.lower()
        if hostname == host or hostname.endswith(f".{host}"):
            return True
    return False


def build_segment_command(
    url: str,
    start: Timestamp,
    end: Timestamp,
    target: Path,
    *,
    ffmpeg: Path,
    video_format: str,
) -> list[str]:
    return [
        *YT_DLP_COMMAND,
        "-f",
        video_format,
        "--download-sections",
        f"*{start.seconds:g}-{end.seconds:g}",
        "--force-keyframes-at-cuts",
        "--ffmpeg-location",
        str(ffmpeg),
        "--concurrent-fragments",
        "4",
        "--no-mtime",
        "--no-playlist",
        "--no-progress",
        "--force-overwrites",
        "-o",
        str(target),
        url,
    ]


async def download_segment(
    url: str,
    start: Timestamp,
    end: Timestamp,
    settings: DownloadSettings,
    *,
    ffmpeg: Path,
) -> Path:
    """Fetch only ``start``..``end`` of a streaming-site video into a temp file.

    The file starts at ``start`` of the original media. Partial and
    intermediate files are removed when the download fails or is cancelled.
    """

    target = await asyncio.to_thread(reserve_temp_file, settings.temp_dir, SEGMENT_SUFFIX)
    command = build_segment_command(
        url,
        start,
        end,
        target,
        ffmpeg=ffmpeg,
        video_format=settings.segment_format,
    )

    logger.info("Downloading %s-%s of %s with yt-dlp", start, end, url)
    try:
        try:
            completed = await run_process(command)
        except OSError as exc:
            raise SegmentDownloadError(f"Failed to execute yt-dlp: {exc}") from exc

        if completed.returncode != 0:
            diagnostic = completed.stderr.strip()
            detail = f": {diagnostic}" if diagnostic else ""
            raise SegmentDownloadError(
                "yt-dlp failed to download the video segment. The URL might be invalid, "
                f"private, or require a login{detail}"
            )
        if not await asyncio.to_thread(_has_content, target):
            raise SegmentDownloadError("yt-dlp finished, but the expected output file was not written")
    except BaseException:
        await asyncio.to_thread(_discard_segment_files, target)
        raise

    logger.info("Downloaded segment of %s to %s", url, target)
    return target


def _has_content(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except OSError:
        return False


def _discard_segment_files(target: Path) -> None:
    # yt-dlp leaves format-specific pieces such as <stem>.f18.mp4.part next to the target.
    discard_file(target)
    for leftover in target.parent.glob(f"{target.stem}.*"):
        discard_file(leftover)
