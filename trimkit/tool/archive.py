from __future__ import annotations

import logging
import lzma
import os
import platform
import shutil
import stat
import tarfile
import zipfile
from pathlib import Path
from typing import IO

from trimkit.errors import ProvisionError, ProvisionFailure
from trimkit.tool.locator import executable_name

logger = logging.getLogger(__name__)

# Static release builds, keyed by (system, machine).
RELEASE_ARCHIVES: dict[tuple[str, str], str] = {
    ("linux", "x86_64"): "https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-amd64-static.tar.xz",
    ("linux", "aarch64"): "https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-arm64-static.tar.xz",
    ("windows", "x86_64"): "https://www.gyan.dev/ffmpeg/builds/ffmpeg-release-essentials.zip",
    ("darwin", "x86_64"): "https://evermeet.cx/ffmpeg/getrelease/zip",
    ("darwin", "arm64"): "https://evermeet.cx/ffmpeg/getrelease/zip",
}

_MACHINE_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "arm64",
    "aarch64": "aarch64",
}

_CORRUPT_ERRORS = (zipfile.BadZipFile, tarfile.TarError, lzma.LZMAError, EOFError)


def release_archive_url(
    system: str | None = None,
    machine: str | None = None,
    override: str | None = None,
) -> str:
    """Pick the FFmpeg release archive for the host platform."""

    if override:
        return override

    resolved_system = (system or platform.system()).lower()
    raw_machine = (machine or platform.machine()).lower()
    resolved_machine = _MACHINE_ALIASES.get(raw_machine, raw_machine)

    url = RELEASE_ARCHIVES.get((resolved_system, resolved_machine))
    if url is None and resolved_system == "linux" and resolved_machine == "arm64":
        url = RELEASE_ARCHIVES[("linux", "aarch64")]
    if url is None:
        raise ProvisionError(
            ProvisionFailure.UNSUPPORTED_PLATFORM,
            f"No FFmpeg release archive known for {resolved_system}/{resolved_machine}",
        )
    return url


def install_from_archive(archive_path: Path, install_dir: Path) -> dict[str, Path]:
    """Extract ffmpeg (and ffprobe when bundled) into ``install_dir``.

    Returns the installed paths keyed by tool name. Raises ProvisionError with
    CORRUPT_ARCHIVE when the archive cannot be read or lacks ffmpeg, and DISK
    when the files cannot be written.
    """

    wanted = {executable_name("ffmpeg"): "ffmpeg", executable_name("ffprobe"): "ffprobe"}

    try:
        install_dir.mkdir(parents=True, exist_ok=True)
        if zipfile.is_zipfile(archive_path):
            installed = _extract_zip(archive_path, install_dir, wanted)
        else:
            installed = _extract_tar(archive_path, install_dir, wanted)
    except _CORRUPT_ERRORS as exc:
        raise ProvisionError(
            ProvisionFailure.CORRUPT_ARCHIVE,
            f"Unreadable FFmpeg archive {archive_path.name}: {exc}",
        ) from exc
    except OSError as exc:
        raise ProvisionError(
            ProvisionFailure.DISK,
            f"Could not write FFmpeg into {install_dir}: {exc}",
        ) from exc

    if "ffmpeg" not in installed:
        raise ProvisionError(
            ProvisionFailure.CORRUPT_ARCHIVE,
            f"Archive {archive_path.name} does not contain an ffmpeg executable",
        )

    logger.info("Installed %s into %s", ", ".join(sorted(installed)), install_dir)
    return installed


def _extract_zip(archive_path: Path, install_dir: Path, wanted: dict[str, str]) -> dict[str, Path]:
    installed: dict[str, Path] = {}
    with zipfile.ZipFile(archive_path) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            member_name = Path(info.filename).name
            tool = wanted.get(member_name)
            if tool is None or tool in installed:
                continue
            with archive.open(info) as source:
                installed[tool] = _place_binary(source, install_dir / member_name)
    return installed


def _extract_tar(archive_path: Path, install_dir: Path, wanted: dict[str, str]) -> dict[str, Path]:
    installed: dict[str, Path] = {}
    with tarfile.open(archive_path, mode="r:*") as archive:
        for member in archive:
            if not member.isfile():
                continue
            member_name = Path(member.name).name
            tool = wanted.get(member_name)
            if tool is None or tool in installed:
                continue
            source = archive.extractfile(member)
            if source is None:
                continue
            with source:
                installed[tool] = _place_binary(source, install_dir / member_name)
    return installed


def _place_binary(source: IO[bytes], destination: Path) -> Path:
    partial = destination.with_name(f".{destination.name}.partial")
    try:
        with partial.open("wb") as handle:
            shutil.copyfileobj(source, handle)
        mode = partial.stat().st_mode
        partial.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        os.replace(partial, destination)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    return destination
