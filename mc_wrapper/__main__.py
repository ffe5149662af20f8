"""Run a Minecraft server under supervision, optionally bridged to Discord.

Usage:
    python -m mc_wrapper [SERVER_PATH] [-m MEMORY] [--bridge-to-discord]

Everything else is read from the environment (or a .env file); see
mc_wrapper/config.py for the variables.
"""

import argparse
import asyncio
import logging
import sys

from .app import run
from .config import Config
from .console import LocalConsole
from .errors import ConfigError
from .models import ProcessState

log = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="mc_wrapper", description="Minecraft server wrapper with a Discord chat bridge",
    )
    parser.add_argument(
        "server_path", nargs="?", default=None,
        help="Path to the server jar (default: $MC_SERVER_PATH or ./server.jar)",
    )
    parser.add_argument(
        "-m", "--memory", type=int, default=None,
        help="Memory for the JVM in MB (default: $MC_MEMORY or 1024)",
    )
    parser.add_argument(
        "--bridge-to-discord", action="store_true",
        help="Bridge the server chat to Discord (needs DISCORD_TOKEN and DISCORD_CHANNEL_ID)",
    )
    args = parser.parse_args()

    try:
        config = Config.from_env().with_overrides(
            server_path=args.server_path,
            memory=args.memory,
            enable_bridge=args.bridge_to_discord,
        ).validate()
    except ConfigError as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # The gateway heartbeat chatter drowns out the server console
    logging.getLogger("discord").setLevel(logging.WARNING)

    snapshot = asyncio.run(run(config, console=LocalConsole()))
    if snapshot.state == ProcessState.CRASHED:
        sys.exit(1)


if __name__ == "__main__":
    main()
