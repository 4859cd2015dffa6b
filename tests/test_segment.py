from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

import trimkit.source.segment as segment
from trimkit.config import DownloadSettings
from trimkit.errors import SegmentDownloadError
from trimkit.models import Timestamp
from trimkit.source.resolver import resolve
from trimkit.source.segment import build_segment_command, download_segment, is_segment_source
from trimkit.tool.process import ProcessOutput

HOSTS = ["youtube.com", "youtu.be"]
WATCH_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def _fake_yt_dlp(monkeypatch: pytest.MonkeyPatch, *, returncode: int = 0, stderr: str = "", leftovers: bool = False) -> list[list[str]]:
    calls: list[list[str]] = []

    async def _fake_run_process(args, **kwargs) -> ProcessOutput:
        calls.append(list(args))
        target = Path(args[args.index("-o") + 1])
        if leftovers:
            target.with_name(f"{target.stem}.f18.mp4.part").write_bytes(b"partial")
        if returncode == 0:
            target.write_bytes(b"segment-bytes")
        return ProcessOutput(returncode=returncode, stdout="", stderr=stderr)

    monkeypatch.setattr(segment, "run_process", _fake_run_process)
    return calls


def test_is_segment_source_matches_hosts_and_subdomains() -> None:
    assert is_segment_source(WATCH_URL, HOSTS)
    assert is_segment_source("https://youtu.be/dQw4w9WgXcQ", HOSTS)
    assert is_segment_source("https://m.youtube.com/watch?v=abc", HOSTS)
    assert not is_segment_source("https://notyoutube.com/watch?v=abc", HOSTS)
    assert not is_segment_source("https://videos.example/clip.mp4", HOSTS)


def test_segment_command_requests_only_the_clip_range(tmp_path: Path) -> None:
    command = build_segment_command(
        WATCH_URL,
        Timestamp.parse("00:01:05"),
        Timestamp.parse("00:01:10.5"),
        tmp_path / "out.mp4",
        ffmpeg=Path("/opt/ff/ffmpeg"),
        video_format="best[ext=mp4]/best",
    )

    assert command[command.index("--download-sections") + 1] == "*65-70.5"
    assert "--force-keyframes-at-cuts" in command
    assert command[command.index("--ffmpeg-location") + 1] == "/opt/ff/ffmpeg"
    assert command[command.index("-o") + 1] == str(tmp_path / "out.mp4")
    assert command[-1] == WATCH_URL


def test_download_segment_returns_written_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_yt_dlp(monkeypatch)

    path = asyncio.run(
        download_segment(
            WATCH_URL,
            Timestamp.parse("00:00:10"),
            Timestamp.parse("00:00:20"),
            DownloadSettings(temp_dir=tmp_path),
            ffmpeg=Path("/opt/ff/ffmpeg"),
        )
    )

    assert path.parent == tmp_path
    assert path.suffix == ".mp4"
    assert path.read_bytes() == b"segment-bytes"
    assert len(calls) == 1


def test_failed_segment_download_removes_every_piece(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_yt_dlp(monkeypatch, returncode=1, stderr="ERROR: Private video", leftovers=True)

    with pytest.raises(SegmentDownloadError, match="Private video"):
        asyncio.run(
            download_segment(
                WATCH_URL,
                Timestamp.parse("00:00:10"),
                Timestamp.parse("00:00:20"),
                DownloadSettings(temp_dir=tmp_path),
                ffmpeg=Path("/opt/ff/ffmpeg"),
            )
        )

    assert list(tmp_path.iterdir()) == []


def test_resolver_routes_streaming_pages_to_segment_download(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_yt_dlp(monkeypatch)
    start, end = Timestamp.parse("00:02:00"), Timestamp.parse("00:02:30")

    async def _scenario():
        async with await resolve(
            WATCH_URL,
            DownloadSettings(temp_dir=tmp_path),
            clip_range=(start, end),
            ffmpeg=Path("/opt/ff/ffmpeg"),
        ) as resolved:
            assert resolved.local_path.exists()
            return resolved

    resolved = asyncio.run(_scenario())

    assert resolved.is_temporary is True
    assert resolved.time_offset == pytest.approx(120.0)
    assert calls[0][calls[0].index("--download-sections") + 1] == "*120-150"
    assert list(tmp_path.iterdir()) == []
