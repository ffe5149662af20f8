"""Line reader: turns a child process pipe into a stream of RawLines."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import datetime

from mc_wrapper.models import RawLine

log = logging.getLogger(__name__)

# Passed as the StreamReader limit when spawning; longer lines are dropped
STREAM_LIMIT = 1024 * 1024


async def read_lines(
    stream: asyncio.StreamReader,
    name: str = "stdout",
) -> AsyncIterator[RawLine]:
    """Yield each newline-terminated line of ``stream`` until EOF.

    A fresh generator is created for every spawned process; it ends when the
    process closes its end of the pipe.
    """
    while True:
        try:
            chunk = await stream.readline()
        except ValueError:
            # readline() has already discarded the oversized line
            log.warning("Discarded a %s line longer than %d bytes", name, STREAM_LIMIT)
            continue

        if not chunk:
            return

        yield RawLine(
            text=chunk.decode("utf-8", errors="replace").rstrip("\r\n"),
            arrival_time=datetime.now(),
            stream=name,
        )
