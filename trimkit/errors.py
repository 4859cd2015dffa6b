from __future__ import annotations

from enum import Enum


class ProvisionFailure(str, Enum):
    """Why a provisioning run ended in FAILED."""

    NETWORK = "network failure"
    DISK = "disk failure"
    CORRUPT_ARCHIVE = "corrupt archive"
    UNSUPPORTED_PLATFORM = "unsupported platform"
    INTERNAL = "internal error"


class TrimkitError(Exception):
    """Base class for every error the clip core raises on purpose."""


class ProvisionError(TrimkitError):
    def __init__(self, reason: ProvisionFailure, detail: str):
        super().__init__(f"{reason.value}: {detail}")
        self.reason = reason
        self.detail = detail


class ToolNotReadyError(TrimkitError):
    """Raised when a clip is requested before FFmpeg is READY."""


class InvalidRequestError(TrimkitError):
    """Raised for malformed request fields other than the time range."""


class ResolveError(TrimkitError):
    pass


class InvalidSourceError(ResolveError):
    def __init__(self, source: str):
        super().__init__(f"Not an existing file or an http(s) URL: {source!r}")
        self.source = source


class DownloadError(TrimkitError):
    pass


class DownloadNetworkError(DownloadError):
    pass


class DownloadStatusError(DownloadError):
    def __init__(self, url: str, status_code: int):
        super().__init__(f"Server answered HTTP {status_code} for {url}")
        self.url = url
        self.status_code = status_code


class DownloadDiskError(DownloadError):
    pass


class SegmentDownloadError(DownloadError):
    """Raised when yt-dlp cannot fetch the requested section of a streaming-site video."""


class ExecuteError(TrimkitError):
    pass


class InvalidTimeRange(ExecuteError):
    pass


class ToolMissingError(ExecuteError):
    pass


class SubprocessFailedError(ExecuteError):
    def __init__(self, returncode: int | None, diagnostic: str):
        if returncode:
            message = f"ffmpeg exited with code {returncode}"
        else:
            message = "ffmpeg reported an error"
        if diagnostic:
            message = f"{message}: {diagnostic}"
        super().__init__(message)
        self.returncode = returncode
        self.diagnostic = diagnostic


class MediaProbeError(ExecuteError):
    """Raised when the source cannot be inspected before trimming."""
