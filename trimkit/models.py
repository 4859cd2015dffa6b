from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union

from trimkit.errors import InvalidRequestError, InvalidTimeRange, ProvisionFailure

logger = logging.getLogger(__name__)

CHECKING_LABEL = "Checking for FFmpeg..."
DOWNLOADING_LABEL = "Downloading FFmpeg... (in progress)"
INSTALLING_LABEL = "Installing FFmpeg..."
READY_LABEL = "FFmpeg is ready."
UNKNOWN_LABEL = "FFmpeg status unknown."

SUCCESS_PREFIX = "Success:"
ERROR_PREFIX = "Error:"

_TIMESTAMP_PATTERN = re.compile(r"^(\d{1,2}):([0-5]\d):([0-5]\d(?:\.\d{1,3})?)$")


class ToolState(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ToolStatus:
    """Snapshot of the provisioning state machine."""

    state: ToolState
    progress: float | None = None
    reason: ProvisionFailure | None = None
    detail: str | None = None

    @property
    def label(self) -> str:
        if self.state is ToolState.CHECKING:
            return CHECKING_LABEL
        if self.state is ToolState.DOWNLOADING:
            if self.progress is None:
                return DOWNLOADING_LABEL
            return f"Downloading FFmpeg... {int(self.progress)}%"
        if self.state is ToolState.INSTALLING:
            return INSTALLING_LABEL
        if self.state is ToolState.READY:
            return READY_LABEL
        if self.state is ToolState.FAILED:
            reason = self.reason.value if self.reason else "unknown reason"
            return f"FFmpeg setup failed ({reason}): {self.detail or 'no details'}"
        return UNKNOWN_LABEL

    @property
    def is_terminal(self) -> bool:
        return self.state in (ToolState.READY, ToolState.FAILED)


class AspectRatio(str, Enum):
    ORIGINAL = "Original"
    WIDESCREEN = "16:9"
    VERTICAL = "9:16"
    SQUARE = "1:1"

    @classmethod
    def parse(cls, label: str | AspectRatio) -> AspectRatio:
        if isinstance(label, AspectRatio):
            return label
        normalized = label.strip()
        for ratio in cls:
            if ratio.value.lower() == normalized.lower():
                return ratio
        choices = ", ".join(ratio.value for ratio in cls)
        raise InvalidRequestError(f"Unsupported ratio: {label!r} (expected one of {choices})")

    @property
    def proportions(self) -> tuple[int, int] | None:
        if self is AspectRatio.ORIGINAL:
            return None
        width, height = self.value.split(":")
        return int(width), int(height)


@dataclass(frozen=True, slots=True)
class Timestamp:
    """A media offset given as HH:MM:SS[.mmm]."""

    text: str
    seconds: float

    @classmethod
    def parse(cls, raw_value: str) -> Timestamp:
        text = raw_value.strip()
        match = _TIMESTAMP_PATTERN.match(text)
        if match is None:
            raise InvalidTimeRange(f"Invalid time format: {raw_value!r}. Expected HH:MM:SS")
        hours, minutes, seconds = match.groups()
        total = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
        return cls(text=text, seconds=total)

    @classmethod
    def from_seconds(cls, seconds: float) -> Timestamp:
        total_ms = max(0, round(seconds * 1000))
        whole_seconds, millis = divmod(total_ms, 1000)
        minutes, secs = divmod(whole_seconds, 60)
        hours, minutes = divmod(minutes, 60)
        text = f"{hours:02d}:{minutes:02d}:{secs:02d}"
        if millis:
            text = f"{text}.{millis:03d}"
        return cls(text=text, seconds=total_ms / 1000)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class ClipRequest:
    source: str
    start: Timestamp
    end: Timestamp
    ratio: AspectRatio

    @classmethod
    def parse(cls, source: str, start: str, end: str, ratio: str | AspectRatio) -> ClipRequest:
        """Validate raw caller input; the time range is checked before anything runs."""

        start_ts = Timestamp.parse(start)
        end_ts = Timestamp.parse(end)
        if end_ts.seconds <= start_ts.seconds:
            raise InvalidTimeRange(
                f"End time {end_ts} must be after start time {start_ts}"
            )
        return cls(
            source=source.strip(),
            start=start_ts,
            end=end_ts,
            ratio=AspectRatio.parse(ratio),
        )

    @property
    def duration_seconds(self) -> float:
        return self.end.seconds - self.start.seconds


@dataclass(slots=True)
class ResolvedSource:
    """A local, readable file for one pipeline invocation.

    Temporary files are removed when the owning ``async with`` block exits,
    whichever way it exits.

    ``time_offset`` is where the file starts inside the requested media; it
    is non-zero when only a section was downloaded.
    """

    local_path: Path
    is_temporary: bool
    content_type: str | None = None
    warnings: list[str] = field(default_factory=list)
    time_offset: float = 0.0

    async def __aenter__(self) -> ResolvedSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()

    def release(self) -> None:
        if not self.is_temporary:
            return
        try:
            self.local_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove temporary download %s: %s", self.local_path, exc)
        else:
            logger.debug("Removed temporary download %s", self.local_path)


@dataclass(frozen=True, slots=True)
class MediaInfo:
    width: int | None = None
    height: int | None = None
    duration_seconds: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None


class Stage(str, Enum):
    RESOLVE = "resolve"
    DOWNLOAD = "download"
    EXECUTE = "execute"


@dataclass(frozen=True, slots=True)
class ClipSuccess:
    output_path: Path
    notes: list[str] = field(default_factory=list)

    def render(self) -> str:
        message = f"{SUCCESS_PREFIX} Video trimmed successfully! Saved to: {self.output_path}"
        if self.notes:
            message = f"{message} ({'; '.join(self.notes)})"
        return message


@dataclass(frozen=True, slots=True)
class ClipFailure:
    stage: Stage
    message: str

    def render(self) -> str:
        return f"{ERROR_PREFIX} [{self.stage.value}] {self.message}"


ClipResult = Union[ClipSuccess, ClipFailure]
