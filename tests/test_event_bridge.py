from __future__ import annotations

import asyncio

from trimkit.events.bridge import TOOL_STATUS_TOPIC, EventBridge


def test_each_listener_receives_events_in_publish_order() -> None:
    async def _scenario() -> tuple[list[str], list[str]]:
        bridge = EventBridge()
        first = bridge.subscribe(TOOL_STATUS_TOPIC)
        second = bridge.subscribe(TOOL_STATUS_TOPIC)
        for payload in ("checking", "downloading", "ready"):
            await bridge.publish(TOOL_STATUS_TOPIC, payload)
        received_first = [(await first.get()).payload for _ in range(3)]
        received_second = [(await second.get()).payload for _ in range(3)]
        return received_first, received_second

    received_first, received_second = asyncio.run(_scenario())

    assert received_first == ["checking", "downloading", "ready"]
    assert received_second == ["checking", "downloading", "ready"]


def test_late_listener_gets_latest_event_then_live_events() -> None:
    async def _scenario() -> list[str]:
        bridge = EventBridge()
        await bridge.publish(TOOL_STATUS_TOPIC, "checking")
        await bridge.publish(TOOL_STATUS_TOPIC, "ready")
        late = bridge.subscribe(TOOL_STATUS_TOPIC)
        await bridge.publish(TOOL_STATUS_TOPIC, "ready-again")
        return [(await late.get()).payload for _ in range(2)]

    assert asyncio.run(_scenario()) == ["ready", "ready-again"]


def test_topics_are_isolated() -> None:
    async def _scenario() -> int:
        bridge = EventBridge()
        listener = bridge.subscribe(TOOL_STATUS_TOPIC)
        await bridge.publish("other", "noise")
        return listener.pending()

    assert asyncio.run(_scenario()) == 0


def test_closed_subscription_stops_receiving() -> None:
    async def _scenario() -> tuple[int, int]:
        bridge = EventBridge()
        async with bridge.subscribe(TOOL_STATUS_TOPIC) as listener:
            await bridge.publish(TOOL_STATUS_TOPIC, "first")
        await bridge.publish(TOOL_STATUS_TOPIC, "second")
        return bridge.listener_count(TOOL_STATUS_TOPIC), listener.pending()

    listeners, pending = asyncio.run(_scenario())

    assert listeners == 0
    assert pending == 1


def test_idle_listener_never_blocks_publishers() -> None:
    async def _scenario() -> tuple[list[str], list[str]]:
        bridge = EventBridge(queue_size=2)
        idle = bridge.subscribe(TOOL_STATUS_TOPIC)
        active = bridge.subscribe(TOOL_STATUS_TOPIC)
        received: list[str] = []

        await bridge.publish(TOOL_STATUS_TOPIC, "downloading")
        for percent in range(10):
            await asyncio.wait_for(
                bridge.publish(TOOL_STATUS_TOPIC, f"{percent}%", droppable=True),
                timeout=1.0,
            )
            received.append((await active.get()).payload)
        await asyncio.wait_for(bridge.publish(TOOL_STATUS_TOPIC, "ready"), timeout=1.0)

        backlog = [idle.get_nowait().payload for _ in range(idle.pending())]
        return received, backlog

    received, backlog = asyncio.run(_scenario())

    assert received == ["downloading"] + [f"{percent}%" for percent in range(9)]
    assert backlog == ["downloading", "0%", "ready"]
