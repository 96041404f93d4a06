from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from typing import Any

from riresume.types import AnalysisRecord

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


def task_topic(task_id: int) -> str:
    return f"task:{task_id}"


def analysis_topic(analysis_id: int) -> str:
    return f"analysis:{analysis_id}"


def user_tasks_topic(user_id: str) -> str:
    return f"tasks:user:{user_id}"


class EventBus:
    """Per-topic fan-out of change events.

    Listeners registered with ``listen`` run synchronously inside ``publish``;
    async subscribers receive events through their own queue on their loop.
    Events on one topic are delivered in publish order.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._queues: dict[str, list[tuple[asyncio.AbstractEventLoop, asyncio.Queue[dict[str, Any]]]]] = (
            defaultdict(list)
        )
        self._lock = threading.Lock()

    def publish(self, topic: str, event: dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(topic, []))
            queues = list(self._queues.get(topic, []))

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener on %s failed", topic)

        for loop, queue in queues:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(queue.put_nowait, event)

    def listen(self, topic: str, callback: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners.get(topic, []):
                    self._listeners[topic].remove(callback)

        return unsubscribe

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._listeners.get(topic, [])) + len(self._queues.get(topic, []))

    async def subscribe(self, topic: str) -> AsyncIterator[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        entry = (asyncio.get_running_loop(), queue)
        with self._lock:
            self._queues[topic].append(entry)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            with self._lock:
                if entry in self._queues.get(topic, []):
                    self._queues[topic].remove(entry)


def task_event(task: dict[str, Any], analysis: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"type": "task_changed", "task": task, "analysis": analysis}


def analysis_event(analysis: dict[str, Any], *, deleted: bool = False) -> dict[str, Any]:
    return {"type": "analysis_deleted" if deleted else "analysis_changed", "analysis": analysis}


def publish_analysis(bus: EventBus, record: AnalysisRecord, *, deleted: bool = False) -> None:
    bus.publish(analysis_topic(record.id), analysis_event(record.model_dump(mode="json"), deleted=deleted))
