from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable

import httpx

from trimkit.config import DownloadSettings, ToolSettings
from trimkit.errors import (
    DownloadDiskError,
    DownloadError,
    ProvisionError,
    ProvisionFailure,
    ToolNotReadyError,
)
from trimkit.events.bridge import TOOL_STATUS_TOPIC, EventBridge
from trimkit.models import ToolState, ToolStatus
from trimkit.source.downloader import download
from trimkit.tool.archive import install_from_archive, release_archive_url
from trimkit.tool.locator import LocatedTool, locate
from trimkit.tool.process import run_process

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ToolState, set[ToolState]] = {
    ToolState.UNKNOWN: {ToolState.CHECKING},
    ToolState.CHECKING: {ToolState.READY, ToolState.DOWNLOADING, ToolState.FAILED},
    ToolState.DOWNLOADING: {ToolState.DOWNLOADING, ToolState.INSTALLING, ToolState.FAILED},
    ToolState.INSTALLING: {ToolState.READY, ToolState.FAILED},
    ToolState.READY: {ToolState.CHECKING},
    ToolState.FAILED: {ToolState.CHECKING},
}

Locator = Callable[[ToolSettings], "LocatedTool | None"]
Installer = Callable[[Path, Path], "dict[str, Path]"]


class Provisioner:
    """Locate-or-install state machine for the ffmpeg binary.

    One instance per process. At most one provisioning run is in flight;
    concurrent callers await the same run and see the same terminal status.
    Every transition is published on the ``tool_status`` topic.
    """

    def __init__(
        self,
        tool_settings: ToolSettings,
        download_settings: DownloadSettings,
        bridge: EventBridge,
        *,
        client: httpx.AsyncClient | None = None,
        locator: Locator = locate,
        installer: Installer = install_from_archive,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.tool_settings = tool_settings
        self.download_settings = download_settings
        self.bridge = bridge
        self._client = client
        self._locator = locator
        self._installer = installer
        self._monotonic = monotonic

        self._status = ToolStatus(ToolState.UNKNOWN)
        self._located: LocatedTool | None = None
        self._run: asyncio.Task[ToolStatus] | None = None
        self._last_progress_at = 0.0
        self._last_progress_value: int | None = None
        self.install_attempts = 0

    @property
    def status(self) -> ToolStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status.state is ToolState.READY and self._located is not None

    @property
    def located(self) -> LocatedTool | None:
        return self._located

    def require_ready(self) -> LocatedTool:
        """Return the located tool or reject immediately when not READY."""

        if not self.is_ready or self._located is None:
            raise ToolNotReadyError(f"FFmpeg is not ready yet. Current status: {self._status.label}")
        return self._located

    async def ensure_ready(self) -> ToolStatus:
        """Start provisioning if needed and wait for its terminal status.

        Cheap once settled: READY or FAILED is re-published as-is. FAILED
        stays FAILED until ``retry()``.
        """

        if self._run is not None and not self._run.done():
            return await asyncio.shield(self._run)
        if self._status.is_terminal:
            await self.bridge.publish(TOOL_STATUS_TOPIC, self._status)
            return self._status
        return await self._start()

    async def retry(self) -> ToolStatus:
        """Restart the state machine after a failure."""

        if self._run is not None and not self._run.done():
            return await asyncio.shield(self._run)
        if self._status.state is ToolState.FAILED:
            logger.info("Retrying FFmpeg provisioning after: %s", self._status.label)
            return await self._start()
        return await self.ensure_ready()

    async def reprovision(self) -> ToolStatus:
        """Drop the READY verdict and run the locate-or-install sequence again."""

        if self._run is not None and not self._run.done():
            return await asyncio.shield(self._run)
        self._located = None
        return await self._start()

    async def _start(self) -> ToolStatus:
        self._run = asyncio.create_task(self._provision(), name="trimkit-provision")
        return await asyncio.shield(self._run)

    async def _provision(self) -> ToolStatus:
        try:
            await self._transition(ToolStatus(ToolState.CHECKING))
            located = await asyncio.to_thread(self._locator, self.tool_settings)
            if located is None:
                logger.info("FFmpeg not found locally; installing into %s", self.tool_settings.install_dir)
                located = await self._install()
            self._located = located
            logger.info("Using ffmpeg at %s (%s)", located.ffmpeg, located.origin)
            await self._transition(ToolStatus(ToolState.READY))
        except ProvisionError as exc:
            logger.error("FFmpeg provisioning failed: %s", exc)
            self._located = None
            await self._transition(
                ToolStatus(ToolState.FAILED, reason=exc.reason, detail=exc.detail)
            )
        except OSError as exc:
            logger.error("FFmpeg provisioning failed on the filesystem: %s", exc)
            self._located = None
            await self._transition(
                ToolStatus(ToolState.FAILED, reason=ProvisionFailure.DISK, detail=str(exc))
            )
        except asyncio.CancelledError:
            self._located = None
            self._status = ToolStatus(ToolState.UNKNOWN)
            raise
        except Exception as exc:
            logger.exception("FFmpeg provisioning stopped on an unexpected error")
            self._located = None
            await self._transition(
                ToolStatus(ToolState.FAILED, reason=ProvisionFailure.INTERNAL, detail=f"{type(exc).__name__}: {exc}")
            )
        return self._status

    async def _install(self) -> LocatedTool:
        self.install_attempts += 1
        url = release_archive_url(override=self.tool_settings.archive_url)

        self._last_progress_at = self._monotonic()
        self._last_progress_value = None
        await self._transition(ToolStatus(ToolState.DOWNLOADING))

        try:
            archive = await download(
                url,
                self.download_settings,
                client=self._client,
                on_progress=self._report_progress,
                suffix=_archive_suffix(url),
                expect_video=False,
            )
        except DownloadDiskError as exc:
            raise ProvisionError(ProvisionFailure.DISK, str(exc)) from exc
        except DownloadError as exc:
            raise ProvisionError(ProvisionFailure.NETWORK, str(exc)) from exc

        install_dir = Path(self.tool_settings.install_dir).expanduser()
        try:
            await self._transition(ToolStatus(ToolState.INSTALLING))
            installed = await asyncio.to_thread(self._installer, archive.path, install_dir)
        finally:
            archive.path.unlink(missing_ok=True)

        await self._verify(installed["ffmpeg"])

        located = await asyncio.to_thread(self._locator, self.tool_settings)
        if located is None:
            raise ProvisionError(
                ProvisionFailure.DISK,
                f"FFmpeg was installed into {install_dir} but cannot be executed from there",
            )
        return located

    async def _verify(self, ffmpeg: Path) -> None:
        try:
            completed = await run_process(
                [str(ffmpeg), "-version"],
                timeout=self.tool_settings.verify_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ProvisionError(
                ProvisionFailure.CORRUPT_ARCHIVE, f"{ffmpeg} did not answer -version in time"
            ) from exc
        except OSError as exc:
            raise ProvisionError(
                ProvisionFailure.CORRUPT_ARCHIVE, f"{ffmpeg} cannot be executed: {exc}"
            ) from exc

        if completed.returncode != 0:
            raise ProvisionError(
                ProvisionFailure.CORRUPT_ARCHIVE,
                f"{ffmpeg} -version exited with code {completed.returncode}",
            )

    async def _report_progress(self, bytes_done: int, bytes_total: int | None) -> None:
        percent = None
        if bytes_total:
            percent = min(100, int(bytes_done * 100 / bytes_total))

        now = self._monotonic()
        interval_elapsed = now - self._last_progress_at >= self.tool_settings.progress_interval_seconds
        percent_changed = percent is not None and percent != self._last_progress_value
        if not (interval_elapsed or percent_changed):
            return

        self._last_progress_at = now
        self._last_progress_value = percent
        progress = float(percent) if percent is not None else None
        await self._transition(ToolStatus(ToolState.DOWNLOADING, progress=progress))

    async def _transition(self, status: ToolStatus) -> None:
        allowed = ALLOWED_TRANSITIONS[self._status.state]
        if status.state not in allowed:
            raise RuntimeError(
                f"Illegal tool status transition {self._status.state.value} -> {status.state.value}"
            )
        state_changed = status.state is not self._status.state
        if state_changed:
            logger.info("FFmpeg status: %s", status.label)
        self._status = status
        # Repeated DOWNLOADING updates may be skipped for a backlogged listener.
        await self.bridge.publish(TOOL_STATUS_TOPIC, status, droppable=not state_changed)


def _archive_suffix(url: str) -> str:
    lowered = url.lower()
    for suffix in (".tar.xz", ".tar.gz", ".tgz", ".zip"):
        if lowered.endswith(suffix):
            return suffix
    if lowered.endswith("/zip"):
        return ".zip"
    return ".archive"
