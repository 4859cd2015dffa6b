from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from trimkit.config import ToolSettings


@dataclass(frozen=True, slots=True)
class LocatedTool:
    ffmpeg: Path
    ffprobe: Path | None = None
    origin: str = "path"


def executable_name(name: str) -> str:
    return f"{name}.exe" if sys.platform.startswith("win") else name


def locate(settings: ToolSettings) -> LocatedTool | None:
    """Find a usable ffmpeg without touching the filesystem beyond stat calls.

    Order: explicit override, app-local install directory, then PATH.
    Returns None when nothing usable is found.
    """

    if settings.ffmpeg_path is not None:
        override = Path(settings.ffmpeg_path).expanduser()
        if _is_executable(override):
            return LocatedTool(ffmpeg=override, ffprobe=_sibling_probe(override), origin="override")

    install_dir = Path(settings.install_dir).expanduser()
    bundled = install_dir / executable_name("ffmpeg")
    if _is_executable(bundled):
        return LocatedTool(ffmpeg=bundled, ffprobe=_sibling_probe(bundled), origin="install_dir")

    on_path = shutil.which("ffmpeg")
    if on_path:
        ffmpeg_path = Path(on_path)
        probe_on_path = shutil.which("ffprobe")
        return LocatedTool(
            ffmpeg=ffmpeg_path,
            ffprobe=Path(probe_on_path) if probe_on_path else _sibling_probe(ffmpeg_path),
            origin="path",
        )

    return None


def _sibling_probe(ffmpeg_path: Path) -> Path | None:
    candidate = ffmpeg_path.with_name(executable_name("ffprobe"))
    return candidate if _is_executable(candidate) else None


def _is_executable(path: Path) -> bool:
    try:
        return path.is_file() and os.access(path, os.X_OK)
    except OSError:
        return False
