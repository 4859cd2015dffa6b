from __future__ import annotations

import logging

import httpx

from trimkit.config import Settings
from trimkit.errors import ToolNotReadyError
from trimkit.events.bridge import TOOL_STATUS_TOPIC, EventBridge, Subscription
from trimkit.models import ERROR_PREFIX, AspectRatio, ClipResult, ToolStatus
from trimkit.pipeline import ClipPipeline
from trimkit.tool.provisioner import Provisioner

logger = logging.getLogger(__name__)

NOT_READY_TAG = "[not ready]"


class TrimService:
    """Host-facing surface: "ensure tool ready" and "trim clip"."""

    def __init__(
        self,
        settings: Settings,
        *,
        bridge: EventBridge | None = None,
        provisioner: Provisioner | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.bridge = bridge or EventBridge(queue_size=settings.events.queue_size)
        self.provisioner = provisioner or Provisioner(
            settings.tool,
            settings.download,
            self.bridge,
            client=client,
        )
        self.pipeline = ClipPipeline(self.provisioner, settings, client=client)

    def tool_events(self) -> Subscription:
        return self.bridge.subscribe(TOOL_STATUS_TOPIC)

    async def ensure_tool_ready(self) -> None:
        """Run provisioning; progress and outcome arrive on ``tool_events()``."""

        await self.provisioner.ensure_ready()

    async def retry_tool_setup(self) -> None:
        await self.provisioner.retry()

    @property
    def tool_status(self) -> ToolStatus:
        return self.provisioner.status

    async def run_clip(
        self,
        source: str,
        start_time: str,
        end_time: str,
        ratio: str | AspectRatio,
    ) -> ClipResult:
        return await self.pipeline.run(source, start_time, end_time, ratio)

    async def trim_clip(
        self,
        source: str,
        start_time: str,
        end_time: str,
        ratio: str | AspectRatio,
    ) -> str:
        """Trim a clip and describe the outcome in one line.

        Success lines start with ``Success:``, failures with ``Error:``.
        """

        try:
            result = await self.run_clip(source, start_time, end_time, ratio)
        except ToolNotReadyError as exc:
            logger.warning("Rejected trim request: %s", exc)
            return f"{ERROR_PREFIX} {NOT_READY_TAG} {exc}"
        except Exception as exc:
            logger.exception("Unexpected failure while trimming %s", source)
            return f"{ERROR_PREFIX} [internal] {exc}"
        return result.render()
