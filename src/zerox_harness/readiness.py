"""Wait for a process to log a set of readiness lines.

A :class:`ReadinessWatcher` is one watch session. It is fed raw output
chunks (usually from a :class:`~zerox_harness.events.EventBus` subscription)
and resolves once every pattern has matched some line, or fails with
:class:`~zerox_harness.exceptions.ReadinessTimeout` when the timeout fires
first. Exactly one of those two outcomes ever happens.

Matching rules:
- Each chunk is split on ``"\\n"`` by itself. A trailing partial line is
  tested as it is and is not stitched to the next chunk.
- A line is checked against the pending patterns in declaration order and
  satisfies at most the first one that matches.
- An empty pattern set is satisfied immediately.

Example:
    watcher = ReadinessWatcher([r"ready"], "service never became ready")
    bus.subscribe("stdout", lambda event: watcher.feed(event.chunk))
    await watcher.wait()
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .exceptions import ReadinessTimeout

logger = logging.getLogger("zerox-harness")

DEFAULT_TIMEOUT = 10.0  # seconds
STREAM_CHUNK_SIZE = 4096

PatternLike = Union[str, re.Pattern, Callable[[str], bool]]


class WatchState(str, Enum):
    WAITING = "waiting"
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class LinePattern:
    """A single readiness rule: a label plus a line predicate."""

    source: str
    predicate: Callable[[str], bool]

    def matches(self, line: str) -> bool:
        return bool(self.predicate(line))

    @classmethod
    def compile(cls, pattern: PatternLike | LinePattern) -> LinePattern:
        """Build a rule from a regex string, compiled regex or callable.

        Strings are compiled as regular expressions and use search
        semantics, so ``"ready"`` matches anywhere in the line.
        """
        if isinstance(pattern, LinePattern):
            return pattern
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        if isinstance(pattern, re.Pattern):
            return cls(source=pattern.pattern, predicate=pattern.search)
        if callable(pattern):
            name = getattr(pattern, "__name__", repr(pattern))
            return cls(source=name, predicate=pattern)
        raise TypeError(f"Unsupported readiness pattern: {pattern!r}")


def _decode(chunk: bytes | str) -> str:
    if isinstance(chunk, bytes):
        return chunk.decode("utf-8", errors="replace")
    return chunk


class ReadinessWatcher:
    """One watch session over a stream of output chunks.

    Args:
        patterns: Ordered readiness rules (see :meth:`LinePattern.compile`).
        message: Message carried by the ``ReadinessTimeout`` on failure.
        timeout: Seconds to wait once :meth:`wait` is first awaited.
    """

    def __init__(
        self,
        patterns: Iterable[PatternLike | LinePattern],
        message: str,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._patterns = tuple(LinePattern.compile(p) for p in patterns)
        self._pending: tuple[LinePattern, ...] = self._patterns
        self._message = message
        self._timeout = timeout
        self._state = WatchState.WAITING
        self._future: asyncio.Future[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        if not self._pending:
            self._state = WatchState.SATISFIED

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def pending(self) -> tuple[str, ...]:
        """Sources of the patterns that have not matched yet."""
        return tuple(p.source for p in self._pending)

    @property
    def done(self) -> bool:
        return self._state is not WatchState.WAITING

    def feed(self, chunk: bytes | str) -> None:
        """Test every line of ``chunk`` against the pending patterns."""
        if self._state is not WatchState.WAITING:
            return
        for line in _decode(chunk).split("\n"):
            matched = self._match_line(line)
            if matched is not None:
                logger.debug(f"Readiness pattern matched: {matched.source!r}")
            if not self._pending:
                self._finish(WatchState.SATISFIED)
                return

    def _match_line(self, line: str) -> LinePattern | None:
        for i, pattern in enumerate(self._pending):
            if pattern.matches(line):
                self._pending = self._pending[:i] + self._pending[i + 1 :]
                return pattern
        return None

    async def wait(self) -> None:
        """Resolve when all patterns matched; raise ``ReadinessTimeout`` otherwise."""
        if self._state is WatchState.SATISFIED:
            return
        if self._state is WatchState.TIMED_OUT:
            raise ReadinessTimeout(self._message, self.pending)

        loop = asyncio.get_running_loop()
        if self._future is None:
            self._future = loop.create_future()
            self._timer = loop.call_later(self._timeout, self._on_timeout)

        try:
            await asyncio.shield(self._future)
        except asyncio.CancelledError:
            if self._future.done() and not self._future.cancelled():
                raise
            self._finish(WatchState.CANCELLED)
            raise

    def _on_timeout(self) -> None:
        if self._state is not WatchState.WAITING:
            return
        logger.warning(f"{self._message} (still pending: {', '.join(self.pending)})")
        self._finish(WatchState.TIMED_OUT)

    def _finish(self, state: WatchState) -> None:
        if self._state is not WatchState.WAITING:
            return
        self._state = state
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        future = self._future
        if future is None or future.done():
            return
        if state is WatchState.SATISFIED:
            future.set_result(None)
        elif state is WatchState.TIMED_OUT:
            future.set_exception(ReadinessTimeout(self._message, self.pending))
        else:
            future.cancel()


async def wait_for_patterns(
    reader: asyncio.StreamReader,
    message: str,
    patterns: Iterable[PatternLike | LinePattern],
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """Consume ``reader`` until every pattern matched or ``timeout`` elapsed.

    The reader is read in fixed-size chunks; it is left open and unread past
    the point of success.
    """
    watcher = ReadinessWatcher(patterns, message, timeout)
    if watcher.done:
        return

    async def _consume() -> None:
        while not watcher.done:
            chunk = await reader.read(STREAM_CHUNK_SIZE)
            if not chunk:
                return
            watcher.feed(chunk)

    consumer = asyncio.create_task(_consume())
    try:
        await watcher.wait()
    finally:
        consumer.cancel()
        await asyncio.gather(consumer, return_exceptions=True)
