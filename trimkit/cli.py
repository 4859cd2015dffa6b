from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Awaitable, Callable, TypeVar

import typer

from trimkit.config import Settings, load_settings
from trimkit.logging_config import configure_logging
from trimkit.models import ERROR_PREFIX, ToolState, ToolStatus
from trimkit.service import TrimService
from trimkit.tool.locator import locate

app = typer.Typer(help="Trim and reframe video clips with a self-provisioned FFmpeg.")
config_app = typer.Typer(help="Configuration commands.")
tool_app = typer.Typer(help="FFmpeg provisioning commands.")

app.add_typer(config_app, name="config")
app.add_typer(tool_app, name="tool")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="TRIMKIT_CONFIG",
    help="Path to YAML configuration file.",
)


async def _run_with_progress(
    step_index: int,
    total_steps: int,
    label: str,
    work: Callable[[], Awaitable[T]],
) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = await work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


async def _provision_with_events(service: TrimService, *, retry: bool = False) -> ToolStatus:
    """Drive provisioning while echoing each status label to stderr."""

    async with service.tool_events() as events:
        start = service.retry_tool_setup if retry else service.ensure_tool_ready
        work = asyncio.create_task(start())
        while not work.done():
            getter = asyncio.ensure_future(events.get())
            await asyncio.wait({getter, work}, return_when=asyncio.FIRST_COMPLETED)
            if getter.done():
                _echo_status(getter.result().payload)
            else:
                getter.cancel()
        while events.pending():
            _echo_status(events.get_nowait().payload)
        await work
    return service.tool_status


def _echo_status(status: ToolStatus) -> None:
    typer.echo(f"  {status.label}", err=True)


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@tool_app.command("locate")
def locate_tool(config_path: Path = CONFIG_OPTION) -> None:
    """Show which ffmpeg would be used, without installing anything."""

    settings = _bootstrap(config_path)
    located = locate(settings.tool)
    if located is None:
        typer.echo(json.dumps({"status": "not_found"}, indent=2))
        raise typer.Exit(code=1)

    typer.echo(
        json.dumps(
            {
                "status": "found",
                "ffmpeg": str(located.ffmpeg),
                "ffprobe": str(located.ffprobe) if located.ffprobe else None,
                "origin": located.origin,
            },
            indent=2,
        )
    )


@tool_app.command("ensure")
def ensure_tool(
    config_path: Path = CONFIG_OPTION,
    retry: bool = typer.Option(False, "--retry", help="Restart provisioning even after a failure."),
) -> None:
    """Locate FFmpeg or install it into the app data directory."""

    settings = _bootstrap(config_path)
    service = TrimService(settings)
    status = asyncio.run(_provision_with_events(service, retry=retry))

    if status.state is not ToolState.READY:
        typer.echo(f"{ERROR_PREFIX} {status.label}", err=True)
        raise typer.Exit(code=1)
    typer.echo(status.label)


@app.command("trim")
def trim(
    source: str = typer.Argument(..., help="Local video path or http(s) URL."),
    start: str = typer.Option(..., "--start", "-s", help="Clip start as HH:MM:SS."),
    end: str = typer.Option(..., "--end", "-e", help="Clip end as HH:MM:SS."),
    ratio: str = typer.Option("Original", "--ratio", "-r", help="Original, 16:9, 9:16 or 1:1."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for the trimmed clip."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Trim a clip from SOURCE, provisioning FFmpeg first when needed."""

    settings = _bootstrap(config_path)
    if output_dir is not None:
        settings.output.output_dir = output_dir
    service = TrimService(settings)

    async def _run() -> str:
        await _run_with_progress(1, 2, "Ensure FFmpeg", lambda: _provision_with_events(service))
        return await _run_with_progress(
            2,
            2,
            "Trim clip",
            lambda: service.trim_clip(source, start, end, ratio),
        )

    message = asyncio.run(_run())
    if message.startswith(ERROR_PREFIX):
        logger.error("Trim failed: %s", message)
        typer.echo(message, err=True)
        raise typer.Exit(code=1)
    typer.echo(message)


if __name__ == "__main__":
    app()
