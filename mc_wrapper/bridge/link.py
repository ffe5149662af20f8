"""Gateway link: the connection-owning half of the bridge router."""

from __future__ import annotations

import asyncio
import logging

from mc_wrapper.errors import GatewayError
from mc_wrapper.gateway import ChatGateway
from mc_wrapper.models import ConnectionSnapshot, ConnectionState

log = logging.getLogger(__name__)


def reconnect_delay(attempt: int, initial: float, maximum: float) -> float:
    """Exponential backoff: initial, 2x, 4x ... capped at ``maximum``."""
    return min(initial * (2 ** max(attempt - 1, 0)), maximum)


class GatewayLink:
    """Keeps a gateway session open, reconnecting with capped backoff forever.

    The link is the only writer of the connection state; the router and
    presence publisher read it through ``snapshot()`` / ``connected``.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        shutdown: asyncio.Event,
        *,
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0,
    ) -> None:
        self.gateway = gateway
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._shutdown = shutdown
        self._snapshot = ConnectionSnapshot()
        self._connected = asyncio.Event()

    def snapshot(self) -> ConnectionSnapshot:
        return self._snapshot

    @property
    def connected(self) -> bool:
        return self._snapshot.state == ConnectionState.CONNECTED

    async def wait_connected(self) -> None:
        await self._connected.wait()

    def _enter(self, state: ConnectionState, attempt: int = 0) -> None:
        if state != self._snapshot.state:
            log.info("Chat gateway %s", state.value + (f" (attempt {attempt})" if attempt else ""))
        self._snapshot = ConnectionSnapshot(state=state, attempt=attempt)
        if state == ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()

    async def run(self) -> None:
        """Connect, wait for the session to drop, back off, repeat until shutdown."""
        attempt = 0
        try:
            while not self._shutdown.is_set():
                if attempt == 0:
                    self._enter(ConnectionState.CONNECTING)
                try:
                    await self.gateway.open_session()
                except GatewayError as exc:
                    log.warning("Could not connect to chat gateway: %s", exc)
                except Exception:
                    log.exception("Unexpected error connecting to chat gateway")
                else:
                    attempt = 0
                    self._enter(ConnectionState.CONNECTED)
                    try:
                        await self.gateway.wait_session_closed()
                    except GatewayError as exc:
                        log.warning("%s", exc)
                    except Exception:
                        log.exception("Chat gateway session ended unexpectedly")

                if self._shutdown.is_set():
                    break

                attempt += 1
                self._enter(ConnectionState.RECONNECTING, attempt)
                delay = reconnect_delay(attempt, self.initial_backoff, self.max_backoff)
                log.info("Reconnecting to chat gateway in %gs", delay)
                if await self._sleep_unless_shutdown(delay):
                    break
        finally:
            self._enter(ConnectionState.DISCONNECTED)

    async def _sleep_unless_shutdown(self, delay: float) -> bool:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
