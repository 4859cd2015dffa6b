from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from urllib.parse import urlsplit

import httpx

from trimkit.config import DownloadSettings
from trimkit.errors import InvalidSourceError
from trimkit.models import ResolvedSource, Timestamp
from trimkit.source.downloader import download
from trimkit.source.segment import download_segment, is_segment_source

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = {"http", "https"}


def classify_source(source: str) -> tuple[str, Path | str]:
    """Return ("local", path) or ("remote", url); raise InvalidSourceError otherwise."""

    candidate = source.strip()
    if not candidate:
        raise InvalidSourceError(source)

    local_path = _existing_file(candidate)
    if local_path is not None:
        return "local", local_path

    if is_remote_url(candidate):
        return "remote", candidate

    raise InvalidSourceError(source)


def is_remote_url(candidate: str) -> bool:
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return False
    return parts.scheme.lower() in REMOTE_SCHEMES and bool(parts.hostname)


async def resolve(
    source: str,
    settings: DownloadSettings,
    *,
    client: httpx.AsyncClient | None = None,
    clip_range: tuple[Timestamp, Timestamp] | None = None,
    ffmpeg: Path | None = None,
) -> ResolvedSource:
    """Turn a path or http(s) URL into a local file owned by the caller.

    Streaming-site pages (``download.segment_hosts``) go through yt-dlp and
    only ``clip_range`` is fetched; that needs ``ffmpeg`` for the cut. Other
    URLs are downloaded whole.
    """

    kind, location = await asyncio.to_thread(classify_source, source)
    if kind == "local":
        logger.info("Using local source %s", location)
        return ResolvedSource(local_path=Path(location), is_temporary=False)

    url = str(location)
    if clip_range is not None and ffmpeg is not None and is_segment_source(url, settings.segment_hosts):
        start, end = clip_range
        segment_path = await download_segment(url, start, end, settings, ffmpeg=ffmpeg)
        return ResolvedSource(
            local_path=segment_path,
            is_temporary=True,
            content_type="video/mp4",
            time_offset=start.seconds,
        )

    result = await download(url, settings, client=client)
    return ResolvedSource(
        local_path=result.path,
        is_temporary=True,
        content_type=result.content_type,
        warnings=list(result.warnings),
    )


def _existing_file(candidate: str) -> Path | None:
    try:
        path = Path(candidate).expanduser()
        if path.is_file():
            return path.resolve()
    except (OSError, ValueError):
        return None
    return None
