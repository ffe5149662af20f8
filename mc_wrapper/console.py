"""Local operator console: lines typed on stdin, replies on stdout."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from collections.abc import AsyncIterator
from typing import TextIO

log = logging.getLogger(__name__)


class LocalConsole:
    """Reads operator input on a daemon thread.

    A thread works for terminals, pipes and redirected files alike, which
    ``loop.connect_read_pipe`` does not.  The thread hands each line to the
    event loop with ``call_soon_threadsafe``; ``None`` marks end of input.
    """

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _reader_thread(self) -> None:
        assert self._loop is not None
        try:
            for line in iter(self._stdin.readline, ""):
                self._loop.call_soon_threadsafe(self._queue.put_nowait, line.rstrip("\r\n"))
        except (OSError, ValueError) as exc:
            log.error("Local console reader crashed: %s", exc)
        finally:
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, None)
            except RuntimeError:
                pass  # loop already closed

    def start(self) -> None:
        if self._thread is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._thread = threading.Thread(
            target=self._reader_thread, name="local-console", daemon=True,
        )
        self._thread.start()

    async def lines(self) -> AsyncIterator[str]:
        """Operator lines in the order they were typed, until end of input."""
        self.start()
        while True:
            line = await self._queue.get()
            if line is None:
                return
            yield line

    def reply(self, text: str) -> None:
        self._stdout.write(text + "\n")
        self._stdout.flush()
