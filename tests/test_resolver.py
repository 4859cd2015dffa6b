from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from trimkit.config import DownloadSettings
from trimkit.errors import InvalidSourceError
from trimkit.source.resolver import classify_source, is_remote_url, resolve


def test_classify_source_accepts_existing_file(tmp_path: Path) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")

    kind, location = classify_source(f"  {video}  ")

    assert kind == "local"
    assert location == video.resolve()


@pytest.mark.parametrize(
    "source",
    ["", "   ", "ftp://videos.example/clip.mp4", "https://", "/definitely/not/here.mp4", "clip"],
)
def test_classify_source_rejects_everything_else(source: str) -> None:
    with pytest.raises(InvalidSourceError):
        classify_source(source)


def test_is_remote_url_requires_http_scheme_and_host() -> None:
    assert is_remote_url("https://videos.example/clip.mp4")
    assert is_remote_url("HTTP://videos.example")
    assert not is_remote_url("file:///tmp/clip.mp4")
    assert not is_remote_url("http:///clip.mp4")


def test_resolve_local_file_is_not_temporary(tmp_path: Path) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")

    async def _scenario():
        async with await resolve(str(video), DownloadSettings(temp_dir=tmp_path / "tmp")) as resolved:
            return resolved

    resolved = asyncio.run(_scenario())

    assert resolved.is_temporary is False
    assert video.exists()


def test_resolve_invalid_source_makes_no_request(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async def _scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await resolve("not a url", DownloadSettings(temp_dir=tmp_path), client=client)

    with pytest.raises(InvalidSourceError, match="not a url"):
        asyncio.run(_scenario())
    assert list(tmp_path.iterdir()) == []


def test_resolve_remote_url_downloads_into_temp_file(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "video/mp4"}, content=b"remote-video")

    async def _scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            resolved = await resolve(
                "https://videos.example/clip.mp4",
                DownloadSettings(temp_dir=tmp_path),
                client=client,
            )
        contents = resolved.local_path.read_bytes()
        await resolved.__aexit__(None, None, None)
        return resolved, contents

    resolved, contents = asyncio.run(_scenario())

    assert resolved.is_temporary is True
    assert resolved.content_type == "video/mp4"
    assert contents == b"remote-video"
    assert list(tmp_path.iterdir()) == []
