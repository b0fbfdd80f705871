"""Line-delimited JSON-RPC over the bridge process's own stdin/stdout.

Blocking pipe I/O is pushed to worker threads so the event loop keeps
serving in-flight requests:

1. ``iter_lines`` reads stdin one line at a time; a pending read is abandoned
   (not waited for) when the surrounding scope is cancelled.
2. ``LineWriter`` serialises frames under a lock and returns only once the
   line has been written and flushed, so a slow consumer applies
   backpressure instead of letting output pile up in memory.
"""

import io
import json
import logging
import sys
from collections.abc import AsyncIterator
from typing import Any, TextIO

import anyio

logger = logging.getLogger(__name__)


def open_stdio() -> tuple[TextIO, TextIO]:
    """Return UTF-8 text wrappers around the process's binary stdin/stdout."""
    stdin = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
    stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", newline="\n")
    return stdin, stdout


async def iter_lines(stream: TextIO) -> AsyncIterator[str]:
    """Yield lines from ``stream`` until EOF."""
    while True:
        line = await anyio.to_thread.run_sync(stream.readline, abandon_on_cancel=True)
        if not line:
            logger.debug("stdin closed (EOF)")
            return
        yield line


class LineWriter:
    """Writes one JSON message per line to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._lock = anyio.Lock()

    async def write_message(self, message: dict[str, Any]) -> None:
        data = json.dumps(message) + "\n"
        async with self._lock:
            await anyio.to_thread.run_sync(self._write, data)

    def _write(self, data: str) -> None:
        self._stream.write(data)
        self._stream.flush()
