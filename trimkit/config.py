from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping, get_origin

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "TRIMKIT_"


class ToolSettings(BaseModel):
    install_dir: Path = Path("~/.trimkit/bin")
    ffmpeg_path: Path | None = None
    archive_url: str | None = None
    progress_interval_seconds: float = 1.0
    verify_timeout_seconds: float = 30.0


class DownloadSettings(BaseModel):
    temp_dir: Path | None = None
    chunk_size: int = 1024 * 1024
    connect_timeout_seconds: float = 15.0
    read_timeout_seconds: float = 60.0
    segment_hosts: list[str] = Field(default_factory=lambda: ["youtube.com", "youtu.be"])
    segment_format: str = "best[ext=mp4]/best"


class OutputSettings(BaseModel):
    output_dir: Path = Path("~/Downloads")


class ExecuteSettings(BaseModel):
    video_codec: str = "libx264"
    preset: str = "ultrafast"
    crf: int = 28
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    diagnostic_max_bytes: int = 8192


class EventSettings(BaseModel):
    queue_size: int = 256


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    tool: ToolSettings = Field(default_factory=ToolSettings)
    download: DownloadSettings = Field(default_factory=DownloadSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    execute: ExecuteSettings = Field(default_factory=ExecuteSettings)
    events: EventSettings = Field(default_factory=EventSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides.

    A missing config file is not an error: defaults apply and environment
    overrides are still honoured. ``TRIMKIT_<SECTION>__<FIELD>`` values are
    validated by the section model, so they take the field's declared type.
    """

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}

    for section, values in environment_overrides(os.environ).items():
        section_config = raw_config.get(section) or {}
        raw_config[section] = {**section_config, **values}

    return Settings.model_validate(raw_config)


def environment_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, Any]]:
    """Collect ``TRIMKIT_SECTION__FIELD`` variables that name a known setting."""

    overrides: dict[str, dict[str, Any]] = {}
    for key, raw_value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        section, separator, field_name = key[len(ENV_PREFIX) :].lower().partition("__")
        if not separator:
            continue

        section_field = Settings.model_fields.get(section)
        if section_field is None:
            continue
        field_info = section_field.annotation.model_fields.get(field_name)
        if field_info is None:
            continue

        overrides.setdefault(section, {})[field_name] = _parse_env_value(raw_value, field_info.annotation)
    return overrides


def _parse_env_value(raw_value: str, annotation: Any) -> Any:
    if raw_value == "":
        return None
    if get_origin(annotation) is list:
        if raw_value.lstrip().startswith("["):
            return json.loads(raw_value)
        return [item.strip() for item in raw_value.split(",") if item.strip()]
    # Scalars stay strings; pydantic converts them to the field type.
    return raw_value
