"""Wires the supervisor, the router and (optionally) the Discord bridge together."""

from __future__ import annotations

import asyncio
import logging
import signal

from mc_wrapper.bridge import BridgeRouter, GatewayLink, PresencePublisher
from mc_wrapper.config import Config
from mc_wrapper.console import LocalConsole
from mc_wrapper.discord_gateway import DiscordGateway
from mc_wrapper.gateway import ChatGateway
from mc_wrapper.models import ProcessSnapshot
from mc_wrapper.process_manager import RestartPolicy, ServerSupervisor
from mc_wrapper.roster import RosterTracker

log = logging.getLogger(__name__)


def build_supervisor(config: Config) -> ServerSupervisor:
    policy = RestartPolicy(
        backoff_schedule=config.restart_backoff,
        max_attempts=config.restart_max_attempts,
        stability_window=config.stability_window,
    )
    return ServerSupervisor(
        config.server_path,
        config.memory,
        config.jvm_flags,
        java=config.java,
        policy=policy,
        stop_timeout=config.stop_timeout,
    )


def build_gateway(config: Config) -> ChatGateway:
    assert config.channel_id is not None
    return DiscordGateway(config.discord_token, config.channel_id)


async def run(
    config: Config,
    *,
    supervisor: ServerSupervisor | None = None,
    gateway: ChatGateway | None = None,
    console: LocalConsole | None = None,
    shutdown: asyncio.Event | None = None,
) -> ProcessSnapshot:
    """Run until a signal arrives or the supervisor gives up.

    Returns the supervisor's final snapshot.
    """
    shutdown = shutdown or asyncio.Event()
    supervisor = supervisor or build_supervisor(config)
    roster = RosterTracker()

    link: GatewayLink | None = None
    presence: PresencePublisher | None = None
    if config.enable_bridge or gateway is not None:
        link = GatewayLink(gateway or build_gateway(config), shutdown)
        if config.update_status:
            presence = PresencePublisher(roster, link, shutdown, config.presence_interval)

    router = BridgeRouter(
        supervisor,
        roster,
        link=link,
        presence=presence,
        console=console,
        command_prefix=config.command_prefix,
        update_topic=config.update_topic,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    background: list[asyncio.Task[None]] = []
    try:
        router.start()
        if link is not None:
            background.append(asyncio.create_task(link.run(), name="gateway-link"))
        if presence is not None:
            background.append(asyncio.create_task(presence.run(), name="presence"))

        server_task = asyncio.create_task(supervisor.run(), name="supervisor")
        stop_task = asyncio.create_task(shutdown.wait())
        await asyncio.wait({server_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if server_task.done():
            # Stopped from the console, or out of restart attempts
            log.info("Server supervisor finished (%s)", server_task.result().state.value)
            await router.flush()
        else:
            log.info("Signal received, shutting down")
        stop_task.cancel()
        shutdown.set()

        await router.shutdown()
        await server_task
    finally:
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    return supervisor.snapshot()
