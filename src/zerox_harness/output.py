"""Log sinks for managed-process output: hidden, console or file."""

from __future__ import annotations

import logging
from pathlib import Path

from .config import LogType
from .events import OutputChunk
from .process import STDERR, STDOUT, ManagedProcess

logger = logging.getLogger("zerox-harness")


def neatly_print_chunk(prefix: str, chunk: bytes | str) -> None:
    """Log every non-empty line of ``chunk`` as ``"<prefix> <line>"``."""
    text = chunk.decode("utf-8", errors="replace") if isinstance(chunk, bytes) else chunk
    for line in text.split("\n"):
        if line == "":
            continue
        logger.info(f"{prefix} {line.strip()}")


def error_prefix(prefix: str) -> str:
    """``"[0x-api]"`` -> ``"[0x-api | error]"``."""
    if prefix.endswith("]"):
        return f"{prefix[:-1]} | error]"
    return f"{prefix} | error"


def _append_to_file(process: ManagedProcess, topic: str, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = path.open("ab")

    def _write(event: OutputChunk) -> None:
        handle.write(event.chunk)
        handle.flush()

    process.bus.subscribe(topic, _write)
    process.add_closer(handle.close)


def attach_output(
    process: ManagedProcess,
    log_type: LogType,
    *,
    prefix: str,
    log_path: str | Path,
    error_path: str | Path,
) -> None:
    """Route ``process`` stdout/stderr according to ``log_type``.

    Must be called before ``process.start()`` so no output is missed.
    """
    log_type = LogType(log_type)
    if log_type is LogType.CONSOLE:
        err_prefix = error_prefix(prefix)
        process.bus.subscribe(STDOUT, lambda e: neatly_print_chunk(prefix, e.chunk))
        process.bus.subscribe(STDERR, lambda e: neatly_print_chunk(err_prefix, e.chunk))
    elif log_type is LogType.FILE:
        _append_to_file(process, STDOUT, Path(log_path))
        _append_to_file(process, STDERR, Path(error_path))
