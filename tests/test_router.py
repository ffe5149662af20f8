"""End-to-end tests for BridgeRouter.

The server is a Python script that records everything written to its stdin
in received.txt; console output is injected straight into the supervisor's
event queue.
"""

from __future__ import annotations

import asyncio
import io
import textwrap
from pathlib import Path

import pytest

from conftest import FakeGateway, python_server, raw, wait_until
from mc_wrapper.bridge import BridgeRouter, GatewayLink, PresencePublisher
from mc_wrapper.console import LocalConsole
from mc_wrapper.formatter import OFFLINE_TOPIC
from mc_wrapper.gateway import MemberUpdated, MessageCreated
from mc_wrapper.models import ConnectionState, ExitInfo, ProcessNotice, ProcessState
from mc_wrapper.parse import parse
from mc_wrapper.process_manager import ServerSupervisor
from mc_wrapper.roster import RosterTracker

RECORDING_SERVER = textwrap.dedent("""
    import sys
    print('[12:00:00] [Server thread/INFO]: Done (2.0s)! For help, type "help"', flush=True)
    with open("received.txt", "a", encoding="utf-8") as out:
        for line in sys.stdin:
            out.write(line)
            out.flush()
            if line.strip() == "stop":
                break
""")

CHANNEL = 42


class Bridge:
    """A router wired to a FakeGateway and a recording server."""

    def __init__(self, tmp_path: Path, gateway: FakeGateway) -> None:
        jar = tmp_path / "server.jar"
        jar.write_bytes(b"")
        self.received_path = tmp_path / "received.txt"
        self.gateway = gateway
        self.shutdown = asyncio.Event()
        self.supervisor = ServerSupervisor(jar, command=python_server(RECORDING_SERVER))
        self.roster = RosterTracker()
        self.link = GatewayLink(gateway, self.shutdown, initial_backoff=30)
        self.presence = PresencePublisher(self.roster, self.link, self.shutdown, interval=3600)
        self.router: BridgeRouter | None = None
        self._tasks: list[asyncio.Task] = []

    async def start(
        self,
        *,
        server: bool = True,
        console: LocalConsole | None = None,
        outbound_limit: int = 100,
        router: bool = True,
    ) -> BridgeRouter:
        self._tasks.append(asyncio.create_task(self.link.run()))
        await asyncio.wait_for(self.link.wait_connected(), 5)
        self._tasks.append(asyncio.create_task(self.presence.run()))

        if server:
            self._tasks.append(asyncio.create_task(self.supervisor.run()))
            await wait_until(lambda: self.supervisor.state == ProcessState.RUNNING)

        self.router = BridgeRouter(
            self.supervisor,
            self.roster,
            link=self.link,
            presence=self.presence,
            console=console,
            outbound_limit=outbound_limit,
        )
        if router:
            self.router.start()
            if server and self.link.connected:
                await wait_until(lambda: any("server is online" in t for t in self.gateway.sent))
        return self.router

    def console_output(self, text: str) -> None:
        self.supervisor.events.put_nowait(parse(raw(text)))

    def received(self) -> str:
        if not self.received_path.exists():
            return ""
        return self.received_path.read_text(encoding="utf-8")

    async def stop(self) -> None:
        self.shutdown.set()
        if self.router is not None:
            await self.router.shutdown()
        else:
            await self.supervisor.stop()
            await self.gateway.close()
        await asyncio.wait_for(asyncio.gather(*self._tasks, return_exceptions=True), 15)


def chat(content: str, **kwargs) -> MessageCreated:
    return MessageCreated(channel_id=kwargs.pop("channel_id", CHANNEL), author="Bob", content=content, **kwargs)


@pytest.fixture
async def bridge(tmp_path: Path, gateway: FakeGateway):
    b = Bridge(tmp_path, gateway)
    yield b
    await b.stop()


# ==============================================================================
# Console -> Discord
# ==============================================================================


@pytest.mark.asyncio
async def test_join_updates_roster_presence_and_channel(bridge: Bridge, gateway: FakeGateway) -> None:
    await bridge.start()

    bridge.console_output("[12:00:05] [Server thread/INFO]: Steve joined the game")

    await wait_until(lambda: "Steve" in bridge.roster.snapshot())
    await wait_until(lambda: "Minecraft with Steve" in gateway.presences)
    await wait_until(lambda: "_**Steve** joined the game_" in gateway.sent)


@pytest.mark.asyncio
async def test_duplicate_join_phrasings_are_announced_once(bridge: Bridge, gateway: FakeGateway) -> None:
    router = await bridge.start()

    bridge.console_output(
        "[12:00:05] [Server thread/INFO]: Steve[/127.0.0.1:5000] logged in with entity id 7 at (0.5, 64.0, 0.5)"
    )
    bridge.console_output("[12:00:05] [Server thread/INFO]: Steve joined the game")
    bridge.console_output("[12:01:00] [Server thread/INFO]: Steve lost connection: Disconnected")
    bridge.console_output("[12:01:00] [Server thread/INFO]: Steve left the game")
    await router.flush()

    assert gateway.sent.count("_**Steve** joined the game_") == 1
    assert gateway.sent.count("_**Steve** left the game_") == 1


@pytest.mark.asyncio
async def test_player_chat_is_relayed(bridge: Bridge, gateway: FakeGateway) -> None:
    router = await bridge.start()

    bridge.console_output("[12:00:06] [Async Chat Thread - #1/INFO]: <Steve> hello *world*")
    await router.flush()

    assert "**Steve** hello *world*" in gateway.sent


@pytest.mark.asyncio
async def test_command_echoes_are_not_relayed(bridge: Bridge, gateway: FakeGateway) -> None:
    router = await bridge.start()
    await router.flush()
    before = list(gateway.sent)

    bridge.console_output("[12:00:06] [Server thread/INFO]: [Server] hello")
    await router.flush()

    assert gateway.sent == before


@pytest.mark.asyncio
async def test_crash_notice_is_announced_and_roster_cleared(bridge: Bridge, gateway: FakeGateway) -> None:
    router = await bridge.start(server=False)
    bridge.console_output("[12:00:05] [Server thread/INFO]: Steve joined the game")
    await router.flush()

    bridge.supervisor.events.put_nowait(ProcessNotice(
        state=ProcessState.CRASHED,
        exit_info=ExitInfo(code=1, runtime=12.0),
        restart_delay=5.0,
        attempt=1,
    ))
    await router.flush()

    assert len(bridge.roster) == 0
    assert any("restarting in 5s" in text for text in gateway.sent)


@pytest.mark.asyncio
async def test_send_failures_are_logged_and_dropped(
    bridge: Bridge, gateway: FakeGateway, caplog: pytest.LogCaptureFixture,
) -> None:
    router = await bridge.start(server=False)
    gateway.fail_sends = True

    bridge.console_output("[12:00:06] [Server thread/INFO]: <Steve> hi")
    await router.flush()

    assert gateway.sent == []
    assert "Failed to send '**Steve** hi'" in caplog.text


@pytest.mark.asyncio
async def test_full_outbound_queue_drops_new_messages(
    bridge: Bridge, gateway: FakeGateway, caplog: pytest.LogCaptureFixture,
) -> None:
    # The router isn't started, so nothing drains the queue
    router = await bridge.start(server=False, outbound_limit=1, router=False)

    await router.dispatch(parse(raw("[12:00:06] [Server thread/INFO]: <Steve> one")))
    await router.dispatch(parse(raw("[12:00:06] [Server thread/INFO]: <Steve> two")))

    assert "Outbound queue is full" in caplog.text
    assert "two" in caplog.text


@pytest.mark.asyncio
async def test_transport_errors_do_not_stop_the_sender(
    bridge: Bridge, gateway: FakeGateway, caplog: pytest.LogCaptureFixture,
) -> None:
    router = await bridge.start(server=False)
    gateway.send_errors = [ConnectionResetError("reset by peer")]

    bridge.console_output("[12:00:06] [Server thread/INFO]: <Steve> one")
    bridge.console_output("[12:00:07] [Server thread/INFO]: <Steve> two")
    await router.flush()

    assert gateway.sent == ["**Steve** two"]
    assert "Failed to send '**Steve** one'" in caplog.text


# ==============================================================================
# Channel topic
# ==============================================================================


@pytest.mark.asyncio
async def test_channel_topic_follows_the_roster(bridge: Bridge, gateway: FakeGateway) -> None:
    await bridge.start(server=False)

    bridge.console_output("[12:00:05] [Server thread/INFO]: Steve joined the game")
    await wait_until(lambda: gateway.topics[-1:] == ["Steve is playing Minecraft"])

    bridge.console_output("[12:01:00] [Server thread/INFO]: Steve left the game")
    await wait_until(lambda: gateway.topics[-1:] == ["Nobody is playing Minecraft"])


@pytest.mark.asyncio
async def test_channel_topic_reads_offline_when_the_server_exits(bridge: Bridge, gateway: FakeGateway) -> None:
    await bridge.start(server=False)

    bridge.supervisor.events.put_nowait(ProcessNotice(
        state=ProcessState.CRASHED,
        exit_info=ExitInfo(code=1, runtime=12.0),
        restart_delay=5.0,
        attempt=1,
    ))

    await wait_until(lambda: gateway.topics[-1:] == [OFFLINE_TOPIC])


@pytest.mark.asyncio
async def test_shutdown_marks_the_channel_offline(bridge: Bridge, gateway: FakeGateway) -> None:
    await bridge.start(server=False)
    bridge.console_output("[12:00:05] [Server thread/INFO]: Steve joined the game")
    await wait_until(lambda: gateway.topics[-1:] == ["Steve is playing Minecraft"])

    await bridge.stop()

    assert gateway.topics[-1] == OFFLINE_TOPIC
    assert gateway.closed


@pytest.mark.asyncio
async def test_topic_failures_are_logged_and_the_next_change_still_lands(
    bridge: Bridge, gateway: FakeGateway, caplog: pytest.LogCaptureFixture,
) -> None:
    await bridge.start(server=False)
    gateway.topic_errors = [OSError("connection reset")]

    bridge.console_output("[12:00:05] [Server thread/INFO]: Steve joined the game")
    await wait_until(lambda: "Failed to set channel topic" in caplog.text)

    bridge.console_output("[12:00:06] [Server thread/INFO]: Alex joined the game")
    await wait_until(lambda: gateway.topics[-1:] == ["Alex and Steve are playing Minecraft"])


# ==============================================================================
# Discord -> console
# ==============================================================================


@pytest.mark.asyncio
async def test_mentions_are_resolved_before_reaching_the_server(bridge: Bridge, gateway: FakeGateway) -> None:
    gateway.members[1] = "Alex"
    await bridge.start()

    gateway.push(chat("hi <@1>"))

    await wait_until(lambda: "tellraw @a" in bridge.received())
    received = bridge.received()
    assert "<Bob> hi @Alex" in received
    assert "<@1>" not in received


@pytest.mark.asyncio
async def test_member_updates_refresh_display_names(bridge: Bridge, gateway: FakeGateway) -> None:
    gateway.members[1] = "Alex"
    await bridge.start()

    gateway.push(MemberUpdated(member_id=1, display_name="Alexandra"))
    gateway.push(chat("hi <@1>"))

    await wait_until(lambda: "tellraw @a" in bridge.received())
    assert "@Alexandra" in bridge.received()


@pytest.mark.asyncio
async def test_bots_and_other_channels_are_ignored(bridge: Bridge, gateway: FakeGateway) -> None:
    router = await bridge.start()

    gateway.push(chat("from a bot", author_is_bot=True))
    gateway.push(chat("elsewhere", channel_id=7))
    gateway.push(chat("marker"))

    await wait_until(lambda: "marker" in bridge.received())
    await router.flush()
    assert "from a bot" not in bridge.received()
    assert "elsewhere" not in bridge.received()


@pytest.mark.asyncio
async def test_chat_is_dropped_while_the_server_is_down(bridge: Bridge, gateway: FakeGateway) -> None:
    await bridge.start(server=False)

    gateway.push(chat("anyone there?"))
    gateway.push(chat("!mc list"))
    await wait_until(lambda: "Nobody is playing Minecraft" in gateway.sent)

    assert bridge.received() == ""


@pytest.mark.asyncio
async def test_list_command_in_the_channel(bridge: Bridge, gateway: FakeGateway) -> None:
    router = await bridge.start()
    bridge.console_output("[12:00:05] [Server thread/INFO]: Steve joined the game")
    await router.flush()

    gateway.push(chat("!mc list"))

    await wait_until(lambda: "Steve is playing Minecraft" in gateway.sent)
    assert "list" not in bridge.received()


# ==============================================================================
# Local console
# ==============================================================================


@pytest.mark.asyncio
async def test_local_console_commands_and_passthrough(bridge: Bridge) -> None:
    stdout = io.StringIO()
    console = LocalConsole(stdin=io.StringIO("!mc list\n!mc nonsense\nsay hi\n"), stdout=stdout)

    await bridge.start(console=console)

    await wait_until(lambda: "say hi" in bridge.received())
    assert stdout.getvalue() == "Nobody is playing Minecraft\n"
    assert "!mc" not in bridge.received()


# ==============================================================================
# Gateway disconnects
# ==============================================================================


@pytest.mark.asyncio
async def test_disconnect_keeps_the_roster_but_sends_nothing(bridge: Bridge, gateway: FakeGateway) -> None:
    router = await bridge.start(server=False)
    await router.flush()
    sent_before = list(gateway.sent)

    gateway.drop()
    await wait_until(lambda: bridge.link.snapshot().state == ConnectionState.RECONNECTING)
    assert bridge.link.snapshot().attempt == 1

    bridge.console_output("[12:00:05] [Server thread/INFO]: Steve joined the game")
    bridge.console_output("[12:00:06] [Server thread/INFO]: <Steve> anyone?")
    await router.flush()

    assert bridge.roster.snapshot().names == ["Steve"]
    assert gateway.sent == sent_before


@pytest.mark.asyncio
async def test_messages_queued_before_a_disconnect_are_not_sent(
    bridge: Bridge, gateway: FakeGateway, caplog: pytest.LogCaptureFixture,
) -> None:
    # Queue while connected, but don't start the sender yet
    router = await bridge.start(server=False, router=False)
    await router.dispatch(parse(raw("[12:00:06] [Server thread/INFO]: <Steve> before the drop")))

    gateway.drop()
    await wait_until(lambda: bridge.link.snapshot().state == ConnectionState.RECONNECTING)
    router.start()
    await router.flush()

    assert gateway.sent == []
    assert "dropping '**Steve** before the drop'" in caplog.text
