import asyncio

from riresume.core.events import EventBus


def test_listeners_receive_events_in_order_and_can_unsubscribe() -> None:
    bus = EventBus()
    received: list[int] = []
    unsubscribe = bus.listen("task:1", lambda event: received.append(event["n"]))

    bus.publish("task:1", {"n": 1})
    bus.publish("task:2", {"n": 99})
    bus.publish("task:1", {"n": 2})
    unsubscribe()
    bus.publish("task:1", {"n": 3})

    assert received == [1, 2]
    assert bus.listener_count("task:1") == 0


def test_failing_listener_does_not_block_others() -> None:
    bus = EventBus()
    received: list[dict] = []

    def broken(event: dict) -> None:
        raise RuntimeError("boom")

    bus.listen("analysis:1", broken)
    bus.listen("analysis:1", received.append)
    bus.publish("analysis:1", {"type": "analysis_changed"})

    assert received == [{"type": "analysis_changed"}]


def test_async_subscriber_gets_published_events() -> None:
    async def scenario() -> list[dict]:
        bus = EventBus()
        stream = bus.subscribe("tasks:user:u1")
        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        bus.publish("tasks:user:u1", {"type": "task_changed"})
        first = await asyncio.wait_for(pending, timeout=1)
        await stream.aclose()
        return [first, {"remaining": bus.listener_count("tasks:user:u1")}]

    first, remaining = asyncio.run(scenario())
    assert first == {"type": "task_changed"}
    assert remaining == {"remaining": 0}
