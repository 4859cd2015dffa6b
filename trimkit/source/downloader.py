from __future__ import annotations

import asyncio
import logging
import re
import secrets
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable
from urllib.parse import urlsplit

import httpx

from trimkit.config import DownloadSettings
from trimkit.errors import (
    DownloadDiskError,
    DownloadNetworkError,
    DownloadStatusError,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int | None], Awaitable[None]]

DEFAULT_SUFFIX = ".mp4"
PLAYABLE_CONTENT_TYPES = {"application/octet-stream", "binary/octet-stream"}
_SUFFIX_PATTERN = re.compile(r"^\.[A-Za-z0-9]{1,5}$")


@dataclass(slots=True)
class DownloadResult:
    path: Path
    content_type: str | None
    bytes_written: int
    warnings: list[str] = field(default_factory=list)


async def download(
    url: str,
    settings: DownloadSettings,
    *,
    client: httpx.AsyncClient | None = None,
    on_progress: ProgressCallback | None = None,
    suffix: str | None = None,
    expect_video: bool = True,
) -> DownloadResult:
    """Stream ``url`` into a uniquely named temporary file.

    The body is written chunk by chunk; nothing beyond one chunk is held in
    memory. On any failure, including cancellation, the partial file is
    removed before the exception propagates. There is no retry.
    """

    target = await asyncio.to_thread(
        reserve_temp_file,
        settings.temp_dir,
        suffix or _guess_suffix(url),
    )
    try:
        return await _stream_to_file(
            url,
            target,
            settings,
            client=client,
            on_progress=on_progress,
            expect_video=expect_video,
        )
    except BaseException:
        discard_file(target)
        raise


async def _stream_to_file(
    url: str,
    target: Path,
    settings: DownloadSettings,
    *,
    client: httpx.AsyncClient | None,
    on_progress: ProgressCallback | None,
    expect_video: bool,
) -> DownloadResult:
    warnings: list[str] = []
    bytes_written = 0

    try:
        async with _client_scope(client, settings) as http:
            async with http.stream("GET", url) as response:
                if not response.is_success:
                    raise DownloadStatusError(url, response.status_code)

                content_type = _media_type(response.headers.get("content-type"))
                if expect_video and not _looks_playable(content_type):
                    warning = f"Server reported content type {content_type!r}, which may not be a playable video"
                    logger.warning("%s (%s)", warning, url)
                    warnings.append(warning)

                total = _content_length(response.headers.get("content-length"))
                logger.info("Downloading %s to %s", url, target)

                handle = await asyncio.to_thread(target.open, "wb")
                try:
                    async for chunk in response.aiter_bytes(settings.chunk_size):
                        await asyncio.to_thread(handle.write, chunk)
                        bytes_written += len(chunk)
                        if on_progress is not None:
                            await on_progress(bytes_written, total)
                finally:
                    handle.close()
    except OSError as exc:
        raise DownloadDiskError(f"Failed to write download to {target}: {exc}") from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise DownloadNetworkError(f"Failed to fetch {url}: {exc}") from exc

    logger.info("Downloaded %d bytes from %s", bytes_written, url)
    return DownloadResult(
        path=target,
        content_type=content_type,
        bytes_written=bytes_written,
        warnings=warnings,
    )


@asynccontextmanager
async def _client_scope(
    client: httpx.AsyncClient | None,
    settings: DownloadSettings,
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return

    timeout = httpx.Timeout(
        settings.read_timeout_seconds,
        connect=settings.connect_timeout_seconds,
    )
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as owned:
        yield owned


def reserve_temp_file(temp_dir: Path | None, suffix: str) -> Path:
    directory = Path(temp_dir).expanduser() if temp_dir else Path(tempfile.gettempdir())
    try:
        directory.mkdir(parents=True, exist_ok=True)
        while True:
            candidate = directory / f"trimkit_{time.time_ns()}_{secrets.token_hex(4)}{suffix}"
            try:
                with candidate.open("xb"):
                    return candidate
            except FileExistsError:
                continue
    except OSError as exc:
        raise DownloadDiskError(f"Failed to create temporary file in {directory}: {exc}") from exc


def discard_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove partial download %s: %s", path, exc)


def _guess_suffix(url: str) -> str:
    name = urlsplit(url).path.rsplit("/", 1)[-1]
    suffix = Path(name).suffix
    if suffix and _SUFFIX_PATTERN.match(suffix):
        return suffix.lower()
    return DEFAULT_SUFFIX


def _media_type(raw_value: str | None) -> str | None:
    if not raw_value:
        return None
    return raw_value.split(";", 1)[0].strip().lower() or None


def _looks_playable(content_type: str | None) -> bool:
    if content_type is None:
        return True
    return content_type.startswith("video/") or content_type in PLAYABLE_CONTENT_TYPES


def _content_length(raw_value: str | None) -> int | None:
    if raw_value is None:
        return None
    try:
        length = int(raw_value)
    except ValueError:
        return None
    return length if length > 0 else None
