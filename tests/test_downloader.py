from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from trimkit.config import DownloadSettings
from trimkit.errors import DownloadDiskError, DownloadNetworkError, DownloadStatusError
from trimkit.source.downloader import download


def _settings(temp_dir: Path) -> DownloadSettings:
    return DownloadSettings(temp_dir=temp_dir, chunk_size=4)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_download_streams_body_into_unique_temp_file(tmp_path: Path) -> None:
    body = b"fake-mp4-bytes-0123456789"
    progress: list[tuple[int, int | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "video/mp4"}, content=body)

    async def _on_progress(done: int, total: int | None) -> None:
        progress.append((done, total))

    async def _scenario():
        async with _client(handler) as client:
            return await download(
                "https://videos.example/path/clip.MOV?sig=1",
                _settings(tmp_path),
                client=client,
                on_progress=_on_progress,
            )

    result = asyncio.run(_scenario())

    assert result.path.parent == tmp_path
    assert result.path.name.startswith("trimkit_")
    assert result.path.suffix == ".mov"
    assert result.path.read_bytes() == body
    assert result.bytes_written == len(body)
    assert result.warnings == []
    assert progress[-1] == (len(body), len(body))


def test_non_success_status_leaves_no_file(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not here")

    async def _scenario():
        async with _client(handler) as client:
            return await download("https://videos.example/missing.mp4", _settings(tmp_path), client=client)

    with pytest.raises(DownloadStatusError, match="HTTP 404") as excinfo:
        asyncio.run(_scenario())

    assert excinfo.value.status_code == 404
    assert list(tmp_path.iterdir()) == []


def test_connection_error_is_a_network_failure(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def _scenario():
        async with _client(handler) as client:
            return await download("https://videos.example/clip.mp4", _settings(tmp_path), client=client)

    with pytest.raises(DownloadNetworkError, match="connection refused"):
        asyncio.run(_scenario())
    assert list(tmp_path.iterdir()) == []


def test_unexpected_content_type_is_a_warning_not_a_failure(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/html; charset=utf-8"}, content=b"<html>")

    async def _scenario():
        async with _client(handler) as client:
            return await download("https://videos.example/watch", _settings(tmp_path), client=client)

    result = asyncio.run(_scenario())

    assert result.path.exists()
    assert result.path.suffix == ".mp4"
    assert result.content_type == "text/html"
    assert len(result.warnings) == 1
    assert "text/html" in result.warnings[0]


def test_unwritable_temp_dir_is_a_disk_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async def _scenario():
        async with _client(handler) as client:
            return await download("https://videos.example/clip.mp4", _settings(blocker), client=client)

    with pytest.raises(DownloadDiskError):
        asyncio.run(_scenario())


def test_cancellation_mid_stream_removes_partial_file(tmp_path: Path) -> None:
    async def _scenario() -> None:
        first_chunk_sent = asyncio.Event()

        async def body():
            yield b"partial-bytes"
            first_chunk_sent.set()
            await asyncio.sleep(3600)
            yield b"never"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "video/mp4"}, content=body())

        async with _client(handler) as client:
            task = asyncio.create_task(
                download("https://videos.example/clip.mp4", _settings(tmp_path), client=client)
            )
            await asyncio.wait_for(first_chunk_sent.wait(), timeout=5.0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    asyncio.run(_scenario())

    assert list(tmp_path.iterdir()) == []
