from __future__ import annotations

import shlex
from pathlib import Path

from trimkit.clip.geometry import center_crop
from trimkit.config import ExecuteSettings
from trimkit.errors import MediaProbeError
from trimkit.models import AspectRatio, MediaInfo, Timestamp

MP4_VIDEO_CODECS = {"h264", "hevc", "mpeg4", "av1"}
MP4_AUDIO_CODECS = {"aac", "mp3", "ac3", "eac3", "alac", "opus"}


def can_stream_copy(media: MediaInfo) -> bool:
    """True when every stream can go into an mp4 container untouched."""

    if media.video_codec is None or media.video_codec not in MP4_VIDEO_CODECS:
        return False
    return media.audio_codec is None or media.audio_codec in MP4_AUDIO_CODECS


def build_trim_command(
    *,
    ffmpeg: Path,
    source_path: Path,
    output_path: Path,
    start: Timestamp,
    end: Timestamp,
    ratio: AspectRatio,
    media: MediaInfo,
    settings: ExecuteSettings,
) -> list[str]:
    """Build the ffmpeg argument vector for one trim.

    Every user-controlled value is its own argument; nothing is ever joined
    into a shell string.
    """

    command = [
        str(ffmpeg),
        "-hide_banner",
        "-nostdin",
        "-loglevel",
        "error",
        "-i",
        str(source_path),
        "-ss",
        start.text,
        "-to",
        end.text,
    ]

    if ratio is AspectRatio.ORIGINAL:
        if can_stream_copy(media):
            command += ["-c", "copy", "-avoid_negative_ts", "make_zero"]
        else:
            command += _encode_args(settings)
    else:
        if not media.width or not media.height:
            raise MediaProbeError(
                f"Cannot reframe to {ratio.value}: source video dimensions are unknown"
            )
        crop = center_crop(media.width, media.height, ratio)
        if crop is not None:
            command += ["-vf", crop.to_filter()]
        command += _encode_args(settings)

    command += ["-movflags", "+faststart", "-y", str(output_path)]
    return command


def render_command(command: list[str]) -> str:
    """Copy-paste form of a command, for logs only."""

    return shlex.join(command)


def _encode_args(settings: ExecuteSettings) -> list[str]:
    return [
        "-c:v",
        settings.video_codec,
        "-preset",
        settings.preset,
        "-crf",
        str(settings.crf),
        "-c:a",
        settings.audio_codec,
        "-b:a",
        settings.audio_bitrate,
    ]
