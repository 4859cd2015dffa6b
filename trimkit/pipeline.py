from __future__ import annotations

import logging
from datetime import datetime
from pathlib import PurePosixPath
from typing import Callable
from urllib.parse import parse_qs, unquote, urlsplit

import httpx

from trimkit.clip.executor import ClipExecutor
from trimkit.config import Settings
from trimkit.errors import (
    DownloadError,
    ExecuteError,
    InvalidRequestError,
    ResolveError,
)
from trimkit.models import (
    AspectRatio,
    ClipFailure,
    ClipRequest,
    ClipResult,
    ClipSuccess,
    ResolvedSource,
    Stage,
    Timestamp,
)
from trimkit.source.resolver import resolve
from trimkit.tool.provisioner import Provisioner

logger = logging.getLogger(__name__)


class ClipPipeline:
    """Resolve -> (download) -> execute for one request at a time per call.

    Calls are independent: each owns its temporary download, its ffmpeg child
    and its output file. The only shared input is the provisioner's READY
    gate, which is read, never written.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.provisioner = provisioner
        self.settings = settings
        self._client = client
        self._clock = clock

    async def run(
        self,
        source: str,
        start_time: str,
        end_time: str,
        ratio: str | AspectRatio,
    ) -> ClipResult:
        """Trim one clip.

        Raises ToolNotReadyError before touching the source when ffmpeg is not
        READY. Every other domain failure comes back as a ClipFailure naming
        its stage. Cancellation propagates after cleanup.
        """

        tool = self.provisioner.require_ready()

        try:
            request = ClipRequest.parse(source, start_time, end_time, ratio)
        except (ExecuteError, InvalidRequestError) as exc:
            return ClipFailure(stage=Stage.EXECUTE, message=str(exc))

        try:
            resolved = await resolve(
                request.source,
                self.settings.download,
                client=self._client,
                clip_range=(request.start, request.end),
                ffmpeg=tool.ffmpeg,
            )
        except ResolveError as exc:
            logger.error("Could not resolve source %r: %s", request.source, exc)
            return ClipFailure(stage=Stage.RESOLVE, message=str(exc))
        except DownloadError as exc:
            logger.error("Download failed for %s: %s", request.source, exc)
            return ClipFailure(stage=Stage.DOWNLOAD, message=f"Failed to download video: {exc}")

        executor = ClipExecutor(
            tool,
            self.settings.execute,
            self.settings.output,
            clock=self._clock,
        )
        async with resolved:
            start, end = _shift_range(request, resolved.time_offset)
            try:
                outcome = await executor.execute(
                    resolved.local_path,
                    start,
                    end,
                    request.ratio,
                    name_hint=_name_hint(request.source, resolved),
                )
            except (ExecuteError, InvalidRequestError) as exc:
                logger.error("Trim failed for %s: %s", request.source, exc)
                return ClipFailure(stage=Stage.EXECUTE, message=str(exc))

        return ClipSuccess(
            output_path=outcome.output_path,
            notes=[*resolved.warnings, *outcome.notes],
        )


def _shift_range(request: ClipRequest, offset: float) -> tuple[Timestamp, Timestamp]:
    if not offset:
        return request.start, request.end
    # A section download starts at the requested start time.
    return (
        Timestamp.from_seconds(request.start.seconds - offset),
        Timestamp.from_seconds(request.end.seconds - offset),
    )


def _name_hint(source: str, resolved: ResolvedSource) -> str:
    if not resolved.is_temporary:
        return resolved.local_path.stem
    parts = urlsplit(source)
    video_id = parse_qs(parts.query).get("v")
    if video_id:
        return video_id[0]
    name = PurePosixPath(unquote(parts.path)).stem
    return name or "download"
