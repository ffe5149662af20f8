"""Bridge router: the single control loop between the server and the chat.

Three pump tasks feed one inbox: console events and process notices from
the supervisor, events from the chat gateway, and lines typed by the
operator.  Each pump is sequential, so per-source order is preserved; the
dispatcher handles inbox items one at a time in arrival order and is the
only writer of the roster.

Messages for the chat channel go through a bounded outbound queue drained
by a single sender task.  They are queued only while the gateway link is
connected; anything that can't be queued or sent is logged and dropped.

The channel topic follows the roster (or reads "offline" once the server
is gone) through its own task, which skips straight to the newest topic
when edits are slow.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from mc_wrapper.bridge.link import GatewayLink
from mc_wrapper.bridge.presence import PresencePublisher
from mc_wrapper.bridge.transform import CHAT_PREFIX, MentionResolver, render_message
from mc_wrapper.console import LocalConsole
from mc_wrapper.errors import GatewayError, WriteError
from mc_wrapper.formatter import (
    OFFLINE_TOPIC,
    DiscordFormatter,
    Formatter,
    format_online_players,
)
from mc_wrapper.gateway import MemberUpdated, MessageCreated
from mc_wrapper.models import (
    BridgeMessage,
    ChatMessage,
    LogLevel,
    MessageOrigin,
    PlayerJoined,
    PlayerLeft,
    ProcessNotice,
    ProcessState,
    ServerEvent,
    ServerReady,
)
from mc_wrapper.process_manager import ServerSupervisor
from mc_wrapper.roster import RosterTracker

log = logging.getLogger(__name__)
# Everything the server prints, and chat injected into the game
server_log = logging.getLogger("mc")

DEFAULT_COMMAND_PREFIX = "!mc "
OUTBOUND_LIMIT = 100
TOPIC_TIMEOUT = 5.0

_LOG_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LocalInput:
    """One line typed by the operator."""
    text: str


class BridgeRouter:
    def __init__(
        self,
        supervisor: ServerSupervisor,
        roster: RosterTracker,
        *,
        link: GatewayLink | None = None,
        presence: PresencePublisher | None = None,
        console: LocalConsole | None = None,
        formatter: Formatter | None = None,
        command_prefix: str = DEFAULT_COMMAND_PREFIX,
        outbound_limit: int = OUTBOUND_LIMIT,
        update_topic: bool = True,
    ) -> None:
        self.supervisor = supervisor
        self.roster = roster
        self.link = link
        self.presence = presence
        self.console = console
        self.formatter = formatter or DiscordFormatter()
        self.command_prefix = command_prefix
        self.update_topic = update_topic and link is not None

        self._inbox: asyncio.Queue[object] = asyncio.Queue()
        self._outbound: asyncio.Queue[str] = asyncio.Queue(maxsize=outbound_limit)
        self._tasks: list[asyncio.Task[None]] = []
        # member id -> display name, refreshed by MemberUpdated
        self._names: dict[int, str] = {}
        # Latest wanted channel topic; the topic task only ever sets the newest
        self._topic: str | None = None
        self._topic_published: str | None = None
        self._topic_poke = asyncio.Event()

        self.resolver: MentionResolver | None = None
        if link is not None:
            self.resolver = MentionResolver(
                member_name=self._member_name,
                channel_name=link.gateway.channel_name,
                role_name=link.gateway.role_name,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the pumps, the dispatcher and the sender."""
        if self._tasks:
            return

        self._tasks.append(asyncio.create_task(self._pump_supervisor(), name="pump-server"))
        if self.link is not None:
            self._tasks.append(asyncio.create_task(self._pump_gateway(), name="pump-gateway"))
            self._tasks.append(asyncio.create_task(self._send_loop(), name="chat-sender"))
        if self.update_topic:
            self._tasks.append(asyncio.create_task(self._topic_loop(), name="channel-topic"))
        if self.console is not None:
            self._tasks.append(asyncio.create_task(self._pump_console(), name="pump-console"))
        self._tasks.append(asyncio.create_task(self._dispatch_loop(), name="router"))

    async def flush(self, timeout: float = 5.0) -> None:
        """Give the dispatcher and sender a chance to catch up."""
        try:
            await asyncio.wait_for(self._drained(), timeout)
        except asyncio.TimeoutError:
            log.warning("Router did not drain within %gs", timeout)

    async def _drained(self) -> None:
        while not self.supervisor.events.empty():
            await asyncio.sleep(0.01)
        await self._inbox.join()
        if self.link is not None:
            await self._outbound.join()

    async def shutdown(self) -> None:
        """Stop routing and the server, mark the channel offline, close the gateway."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        discarded = 0
        while not self._outbound.empty():
            self._outbound.get_nowait()
            self._outbound.task_done()
            discarded += 1
        if discarded:
            log.info("Discarded %d queued chat messages", discarded)

        await self.supervisor.stop()
        if self.link is not None:
            if self.update_topic:
                await self._publish_offline_topic()
            await self.link.gateway.close()

    # ------------------------------------------------------------------
    # Pumps
    # ------------------------------------------------------------------

    async def _pump_supervisor(self) -> None:
        while True:
            await self._inbox.put(await self.supervisor.events.get())

    async def _pump_gateway(self) -> None:
        assert self.link is not None
        async for event in self.link.gateway.events():
            await self._inbox.put(event)

    async def _pump_console(self) -> None:
        assert self.console is not None
        async for line in self.console.lines():
            await self._inbox.put(LocalInput(line))
        log.info("Local console closed")

    async def _dispatch_loop(self) -> None:
        while True:
            item = await self._inbox.get()
            try:
                await self.dispatch(item)
            except Exception:
                log.exception("Failed to handle %r", item)
            finally:
                self._inbox.task_done()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, item: object) -> None:
        if isinstance(item, ServerEvent):
            self._on_server_event(item)
        elif isinstance(item, ProcessNotice):
            self._on_notice(item)
        elif isinstance(item, MessageCreated):
            await self._on_chat_message(item)
        elif isinstance(item, MemberUpdated):
            self._names[item.member_id] = item.display_name
        elif isinstance(item, LocalInput):
            await self._on_local_input(item.text)
        else:
            log.warning("Unexpected inbox item: %r", item)

    def _on_server_event(self, event: ServerEvent) -> None:
        self._echo(event)

        changed = self.roster.apply(event)
        if changed:
            if self.presence is not None:
                self.presence.notify()
            self._want_topic(format_online_players(self.roster.snapshot(), short=True))

        if isinstance(event, ChatMessage):
            self._relay(self.formatter.format_chat(
                BridgeMessage(MessageOrigin.MINECRAFT, event.name, event.text)
            ))
        elif isinstance(event, PlayerJoined) and changed:
            self._relay(self.formatter.format_join(event.name))
        elif isinstance(event, PlayerLeft) and changed:
            self._relay(self.formatter.format_leave(event.name))
        elif isinstance(event, ServerReady):
            log.info("Server is ready (started in %gs)", event.elapsed)
            self._relay(self.formatter.format_ready(event.elapsed))
            self._want_topic(format_online_players(self.roster.snapshot(), short=True))

    def _on_notice(self, notice: ProcessNotice) -> None:
        if notice.state in (ProcessState.CRASHED, ProcessState.STOPPED):
            # Nobody is online on a dead server
            if self.roster.clear() and self.presence is not None:
                self.presence.notify()
            self._want_topic(OFFLINE_TOPIC)

        text = self.formatter.format_notice(notice)
        if text:
            self._relay(text)

    async def _on_chat_message(self, message: MessageCreated) -> None:
        if self.link is None or message.channel_id != self.link.gateway.channel_id:
            return
        if message.author_is_bot:
            return

        if message.content.startswith(self.command_prefix):
            answer = self.run_command(message.content)
            if answer is not None:
                self._relay(answer)
            return

        if self.supervisor.state != ProcessState.RUNNING:
            log.debug("Server is %s, dropping chat from %s", self.supervisor.state.value, message.author)
            return

        assert self.resolver is not None
        chat = render_message(message, self.resolver)
        if not chat.text and not chat.placeholders:
            return

        try:
            await self.supervisor.send_command(chat.tellraw())
        except WriteError as exc:
            log.warning("Dropped chat from %s: %s", message.author, exc)
            return
        server_log.info("%s%s", CHAT_PREFIX, chat.plain())

    async def _on_local_input(self, text: str) -> None:
        if text.startswith(self.command_prefix):
            answer = self.run_command(text)
            if answer is not None and self.console is not None:
                self.console.reply(answer)
            return

        if not text.strip():
            return

        try:
            await self.supervisor.send_command(text)
        except WriteError as exc:
            log.warning("Could not send %r to the server: %s", text, exc)

    def run_command(self, text: str) -> str | None:
        """Answer an operator command, or None if it isn't one we know."""
        name = text[len(self.command_prefix):].strip().lower()
        if name == "list":
            return format_online_players(self.roster.snapshot())
        log.debug("Ignoring unknown command %r", name)
        return None

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _relay(self, text: str) -> None:
        if self.link is None or not self.link.connected:
            return
        try:
            self._outbound.put_nowait(text)
        except asyncio.QueueFull:
            log.warning("Outbound queue is full, dropping %r", text)

    async def _send_loop(self) -> None:
        assert self.link is not None
        while True:
            text = await self._outbound.get()
            try:
                if not self.link.connected:
                    log.warning("Chat gateway is %s, dropping %r",
                                self.link.snapshot().state.value, text)
                    continue
                await self.link.gateway.send_message(text)
            except GatewayError as exc:
                log.warning("Failed to send %r: %s", text, exc)
            except Exception:
                log.exception("Failed to send %r", text)
            finally:
                self._outbound.task_done()

    # ------------------------------------------------------------------
    # Channel topic
    # ------------------------------------------------------------------

    def _want_topic(self, text: str) -> None:
        if not self.update_topic:
            return
        self._topic = text
        self._topic_poke.set()

    async def _topic_loop(self) -> None:
        assert self.link is not None
        while True:
            await self._topic_poke.wait()
            self._topic_poke.clear()
            text = self._topic
            if text is None or text == self._topic_published or not self.link.connected:
                continue
            if await self._set_topic(text):
                self._topic_published = text

    async def _set_topic(self, text: str) -> bool:
        assert self.link is not None
        try:
            await self.link.gateway.set_topic(text)
        except GatewayError as exc:
            log.warning("Failed to set channel topic to %r: %s", text, exc)
        except Exception:
            log.exception("Failed to set channel topic to %r", text)
        else:
            return True
        return False

    async def _publish_offline_topic(self) -> None:
        assert self.link is not None
        if self._topic_published == OFFLINE_TOPIC or not self.link.connected:
            return
        try:
            if await asyncio.wait_for(self._set_topic(OFFLINE_TOPIC), TOPIC_TIMEOUT):
                self._topic_published = OFFLINE_TOPIC
        except asyncio.TimeoutError:
            log.warning("Timed out setting the channel topic to %r", OFFLINE_TOPIC)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _member_name(self, member_id: int) -> str | None:
        name = self._names.get(member_id)
        if name is not None:
            return name
        assert self.link is not None
        return self.link.gateway.member_name(member_id)

    @staticmethod
    def _echo(event: ServerEvent) -> None:
        if event.line is not None:
            server_log.log(_LOG_LEVELS.get(event.line.level, logging.INFO), "%s", event.line.message)
        elif event.raw.stream == "stderr":
            server_log.warning("%s", event.raw.text)
        else:
            server_log.info("%s", event.raw.text)
