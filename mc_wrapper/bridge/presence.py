"""Presence publisher: keeps the bot's status in sync with the roster."""

from __future__ import annotations

import asyncio
import logging

from mc_wrapper.bridge.link import GatewayLink
from mc_wrapper.errors import GatewayError
from mc_wrapper.formatter import format_presence
from mc_wrapper.roster import RosterTracker

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0


class PresencePublisher:
    """Publishes a roster summary on a timer and right after roster changes.

    A failed update is logged and left for the next tick; there is no retry.
    A timer tick with an unchanged summary is skipped.
    """

    def __init__(
        self,
        roster: RosterTracker,
        link: GatewayLink,
        shutdown: asyncio.Event,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        self.roster = roster
        self.link = link
        self.interval = interval
        self._shutdown = shutdown
        self._poke = asyncio.Event()
        self._published: str | None = None

    def notify(self) -> None:
        """The roster changed; publish as soon as possible."""
        self._poke.set()

    def summary(self) -> str:
        return format_presence(self.roster.snapshot())

    async def publish(self, *, force: bool = False) -> bool:
        """Push the current summary.  Returns True if the gateway accepted it."""
        if not self.link.connected:
            return False

        text = self.summary()
        if not force and text == self._published:
            return False

        try:
            await self.link.gateway.update_presence(text)
        except GatewayError as exc:
            log.warning("Failed to update presence to %r: %s", text, exc)
            return False
        except Exception:
            log.exception("Failed to update presence to %r", text)
            return False

        self._published = text
        return True

    async def run(self) -> None:
        while not self._shutdown.is_set():
            poked = await self._wait_for_tick()
            if self._shutdown.is_set():
                break
            if poked:
                self._poke.clear()
            await self.publish(force=poked)

    async def _wait_for_tick(self) -> bool:
        """Sleep until the next tick or a poke.  Returns True if poked."""
        poke = asyncio.create_task(self._poke.wait())
        stop = asyncio.create_task(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait({poke, stop}, timeout=self.interval,
                                         return_when=asyncio.FIRST_COMPLETED)
        finally:
            poke.cancel()
            stop.cancel()
        return poke in done
