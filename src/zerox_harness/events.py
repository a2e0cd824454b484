"""Fan a managed process's output chunks out to sinks and watchers.

Everything runs on one event loop, so the bus holds no lock. ``publish``
delivers to the subscribers of the chunk's topic one at a time, in the order
they subscribed, and awaits each async handler before calling the next. A
file sink subscribed before a readiness watcher has therefore written a chunk
by the time the watcher sees it.
"""

from __future__ import annotations

import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger("zerox-harness")


@dataclass(frozen=True)
class OutputChunk:
    """One raw read from a process pipe."""

    process: str
    topic: str
    chunk: bytes


ChunkHandler = Callable[[OutputChunk], Awaitable[None] | None]


class EventBus:
    """Per-topic subscriber lists keyed by subscription id."""

    def __init__(self) -> None:
        self._subs: dict[str, dict[int, ChunkHandler]] = {}
        self._id_to_topic: dict[int, str] = {}
        self._id_gen = itertools.count(1)

    def subscribe(self, topic: str, handler: ChunkHandler) -> int:
        """Subscribe handler to a topic. Returns subscription id."""
        sub_id = next(self._id_gen)
        self._subs.setdefault(topic, {})[sub_id] = handler
        self._id_to_topic[sub_id] = topic
        return sub_id

    def unsubscribe(self, sub_id: int) -> bool:
        """Remove subscription by id. Returns True if removed."""
        topic = self._id_to_topic.pop(sub_id, None)
        if topic is None:
            return False
        topic_subs = self._subs[topic]
        del topic_subs[sub_id]
        if not topic_subs:
            del self._subs[topic]
        return True

    def subscriber_count(self, topic: str) -> int:
        return len(self._subs.get(topic, {}))

    async def publish(self, event: OutputChunk) -> None:
        # Snapshot: a handler may unsubscribe itself (or others) mid-delivery.
        handlers = list(self._subs.get(event.topic, {}).values())
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    f"[{event.process}] {event.topic} handler {handler!r} failed"
                )
