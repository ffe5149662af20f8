from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be true or false, got {raw!r}")


def _parse_number(name: str, raw: str, kind: type = float):
    try:
        value = kind(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value


def _parse_schedule(name: str, raw: str) -> tuple[float, ...]:
    """"5,10,30,60" -> (5.0, 10.0, 30.0, 60.0)"""
    parts = [p for p in raw.split(",") if p.strip()]
    if not parts:
        raise ConfigError(f"{name} must list at least one delay")
    schedule = tuple(_parse_number(name, p) for p in parts)
    if any(b < a for a, b in zip(schedule, schedule[1:])):
        raise ConfigError(f"{name} must not decrease, got {raw!r}")
    return schedule


@dataclass(frozen=True)
class Config:
    server_path: Path = Path("server.jar")
    memory: int = 1024                      # MB, used for both -Xmx and -Xms
    jvm_flags: str = ""
    java: str = "java"

    restart_backoff: tuple[float, ...] = (5.0, 10.0, 30.0, 60.0)
    restart_max_attempts: int | None = None  # None: keep trying forever
    stability_window: float = 600.0
    stop_timeout: float = 30.0

    enable_bridge: bool = False
    discord_token: str = field(default="", repr=False)
    channel_id: int | None = None
    update_status: bool = True
    update_topic: bool = True
    command_prefix: str = "!mc "
    presence_interval: float = 60.0

    log_level: str = "INFO"

    def with_overrides(
        self,
        server_path: str | Path | None = None,
        memory: int | None = None,
        enable_bridge: bool | None = None,
    ) -> Config:
        """Apply command line arguments on top of the environment."""
        changes: dict = {}
        if server_path is not None:
            changes["server_path"] = Path(server_path)
        if memory is not None:
            changes["memory"] = memory
        if enable_bridge:
            changes["enable_bridge"] = True
        return replace(self, **changes) if changes else self

    def validate(self) -> Config:
        """Raise ConfigError if the wrapper can't run with this config."""
        if not self.server_path.is_file():
            raise ConfigError(f"Server jar not found: {self.server_path}")
        if self.memory <= 0:
            raise ConfigError(f"Memory must be positive, got {self.memory}")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigError(f"Unknown log level: {self.log_level}")
        if self.enable_bridge:
            if not self.discord_token:
                raise ConfigError("The Discord bridge is enabled but DISCORD_TOKEN is not set")
            if self.channel_id is None:
                raise ConfigError("The Discord bridge is enabled but DISCORD_CHANNEL_ID is not set")
        return self

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)
        env = os.environ

        raw_attempts = env.get("MC_RESTART_MAX_ATTEMPTS", "").strip()
        raw_channel = env.get("DISCORD_CHANNEL_ID", "").strip()
        if raw_channel and not raw_channel.isdigit():
            raise ConfigError(f"DISCORD_CHANNEL_ID must be a numeric id, got {raw_channel!r}")

        return cls(
            server_path=Path(env.get("MC_SERVER_PATH", "server.jar")),
            memory=_parse_number("MC_MEMORY", env.get("MC_MEMORY", "1024"), int),
            jvm_flags=env.get("MC_JVM_FLAGS", ""),
            java=env.get("MC_JAVA", "java"),
            restart_backoff=_parse_schedule(
                "MC_RESTART_BACKOFF", env.get("MC_RESTART_BACKOFF", "5,10,30,60"),
            ),
            restart_max_attempts=(
                _parse_number("MC_RESTART_MAX_ATTEMPTS", raw_attempts, int) if raw_attempts else None
            ),
            stability_window=_parse_number(
                "MC_STABILITY_WINDOW", env.get("MC_STABILITY_WINDOW", "600"),
            ),
            stop_timeout=_parse_number("MC_STOP_TIMEOUT", env.get("MC_STOP_TIMEOUT", "30")),
            enable_bridge=_parse_bool("DISCORD_BRIDGE", env.get("DISCORD_BRIDGE", "")),
            discord_token=env.get("DISCORD_TOKEN", ""),
            channel_id=int(raw_channel) if raw_channel else None,
            update_status=_parse_bool(
                "DISCORD_UPDATE_STATUS", env.get("DISCORD_UPDATE_STATUS", "true"),
            ),
            update_topic=_parse_bool(
                "DISCORD_UPDATE_TOPIC", env.get("DISCORD_UPDATE_TOPIC", "true"),
            ),
            command_prefix=env.get("MC_COMMAND_PREFIX", "!mc "),
            presence_interval=_parse_number(
                "MC_PRESENCE_INTERVAL", env.get("MC_PRESENCE_INTERVAL", "60"),
            ),
            log_level=env.get("MC_LOG_LEVEL", "INFO").upper(),
        )
