from __future__ import annotations

import asyncio
import threading

import pytest

from kanban_orchestrator.events import Event, EventBus, WebSocketHub, channel_for


def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus()
    received: list[Event] = []

    def _broken(_: Event) -> None:
        raise RuntimeError("observer crashed")

    bus.subscribe(_broken)
    bus.subscribe(received.append)

    event = bus.publish("task-created", task_id="task-1", payload={"title": "x"})

    assert received == [event]
    assert event.payload == {"title": "x"}


def test_unsubscribe_and_sequence_numbers() -> None:
    bus = EventBus()
    received: list[Event] = []
    unsubscribe = bus.subscribe(received.append)

    first = bus.publish("session-started", task_id="t", session_id="s")
    unsubscribe()
    second = bus.publish("session-completed", task_id="t", session_id="s")

    assert received == [first]
    assert second.seq == first.seq + 1


def test_unknown_event_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        EventBus().publish("task-exploded")


def test_channel_mapping() -> None:
    assert channel_for("task-moved") == "tasks"
    assert channel_for("session-progress") == "sessions"
    assert channel_for("plan-approved") == "plans"
    assert channel_for("heartbeat") == "system"


def test_publish_sync_from_background_thread_uses_attached_loop() -> None:
    async def _run() -> None:
        hub = WebSocketHub()
        received: list[dict[str, object]] = []
        done = asyncio.Event()

        async def _fake_publish(message: dict[str, object]) -> None:
            received.append(message)
            done.set()

        hub.publish = _fake_publish  # type: ignore[method-assign]
        hub.attach_loop(asyncio.get_running_loop())

        worker = threading.Thread(target=lambda: hub.publish_sync({"channel": "system", "type": "test"}))
        worker.start()
        worker.join(timeout=2)

        await asyncio.wait_for(done.wait(), timeout=2)
        assert received == [{"channel": "system", "type": "test"}]

    asyncio.run(_run())


def test_hub_attached_to_bus_forwards_events_with_channel() -> None:
    async def _run() -> None:
        bus = EventBus()
        hub = WebSocketHub()
        received: list[dict[str, object]] = []
        done = asyncio.Event()

        async def _fake_publish(message: dict[str, object]) -> None:
            received.append(message)
            done.set()

        hub.publish = _fake_publish  # type: ignore[method-assign]
        hub.attach_loop(asyncio.get_running_loop())
        hub.attach(bus)

        worker = threading.Thread(target=lambda: bus.publish("plan-ready", task_id="task-1"))
        worker.start()
        worker.join(timeout=2)

        await asyncio.wait_for(done.wait(), timeout=2)
        assert received[0]["channel"] == "plans"
        assert received[0]["type"] == "plan-ready"
        assert received[0]["task_id"] == "task-1"

    asyncio.run(_run())
