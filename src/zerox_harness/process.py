"""External process with its output fanned out over an EventBus.

stdout and stderr are each pumped by a background task that reads raw
chunks and publishes them as :class:`~zerox_harness.events.OutputChunk`
events on the ``stdout`` / ``stderr`` topics. Log sinks and readiness
watchers are just subscribers, so any number of them can observe the same
stream.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence

from .events import EventBus, OutputChunk
from .exceptions import DeploymentError
from .readiness import (
    DEFAULT_TIMEOUT,
    STREAM_CHUNK_SIZE,
    LinePattern,
    PatternLike,
    ReadinessWatcher,
)

logger = logging.getLogger("zerox-harness")

STDOUT = "stdout"
STDERR = "stderr"

# How long stop() lets pumps drain after the child exited. Grandchildren
# (yarn -> node) can keep the pipes open past that.
_PUMP_DRAIN_SECONDS = 1.0


class ManagedProcess:
    """A spawned command whose output is published on ``self.bus``.

    Subscribe sinks before :meth:`start`. :meth:`wait_for_patterns` must be
    called right after ``start()`` returns, before anything else yields to
    the event loop, so that the pumps cannot deliver a chunk first.
    """

    def __init__(
        self,
        name: str,
        command: Sequence[str],
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ):
        if not command:
            raise DeploymentError(f"[{name}] empty command")
        self.name = name
        self.bus = EventBus()
        self._command = list(command)
        self._cwd = cwd
        self._env = dict(env) if env is not None else None
        self._proc: asyncio.subprocess.Process | None = None
        self._pumps: list[asyncio.Task[None]] = []
        self._closers: list[Callable[[], None]] = []
        self._stopped = False

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc else None

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def add_closer(self, closer: Callable[[], None]) -> None:
        """Register a callback run once the process has been stopped."""
        self._closers.append(closer)

    async def start(self) -> None:
        if self._proc is not None:
            raise DeploymentError(f"[{self.name}] already started")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._command,
                cwd=self._cwd,
                env=self._env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise DeploymentError(
                f"[{self.name}] command not found: '{self._command[0]}'"
            ) from None
        logger.info(f"[{self.name}] started pid={self._proc.pid}: {' '.join(self._command)}")

        assert self._proc.stdout is not None and self._proc.stderr is not None
        self._pumps = [
            asyncio.create_task(self._pump(STDOUT, self._proc.stdout)),
            asyncio.create_task(self._pump(STDERR, self._proc.stderr)),
        ]

    async def _pump(self, topic: str, reader: asyncio.StreamReader) -> None:
        while True:
            chunk = await reader.read(STREAM_CHUNK_SIZE)
            if not chunk:
                return
            await self.bus.publish(OutputChunk(self.name, topic, chunk))

    async def wait_for_patterns(
        self,
        message: str,
        patterns: Iterable[PatternLike | LinePattern],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Block until stdout logged every pattern; raise ReadinessTimeout otherwise."""
        watcher = ReadinessWatcher(patterns, message, timeout)
        sub_id = self.bus.subscribe(STDOUT, lambda event: watcher.feed(event.chunk))
        try:
            await watcher.wait()
            logger.info(f"[{self.name}] ready")
        finally:
            self.bus.unsubscribe(sub_id)

    async def stop(self, grace: float = 5.0) -> None:
        """Terminate the process (SIGKILL after ``grace`` seconds). Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        proc = self._proc
        if proc is not None:
            if proc.returncode is None:
                try:
                    proc.terminate()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(proc.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    logger.warning(f"[{self.name}] did not exit within {grace}s, killing")
                    proc.kill()
                    await proc.wait()
            logger.info(f"[{self.name}] stopped (rc={proc.returncode})")

        if self._pumps:
            _, still_running = await asyncio.wait(self._pumps, timeout=_PUMP_DRAIN_SECONDS)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*self._pumps, return_exceptions=True)
            self._pumps = []

        for closer in self._closers:
            try:
                closer()
            except Exception as e:
                logger.warning(f"[{self.name}] closer failed: {e}")
        self._closers.clear()
