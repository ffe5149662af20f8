from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


# ---------------------------------------------------------------------------
# Console output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawLine:
    """One line of child process output, newline stripped."""
    text: str
    arrival_time: datetime = field(default_factory=datetime.now)
    stream: str = "stdout"     # "stdout" or "stderr"


class LogLevel(enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    DEBUG = "DEBUG"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: str) -> LogLevel:
        raw = raw.upper()
        if raw == "WARNING":
            return cls.WARN
        if raw in ("SEVERE", "FATAL"):
            return cls.ERROR
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ConsoleLine:
    """The decomposed `[time] [thread/LEVEL]: message` header of a log line."""
    timestamp: str
    thread: str
    level: LogLevel
    message: str

    def __str__(self) -> str:
        return f"[{self.timestamp}] [{self.level.value}]: {self.message}"


# ---------------------------------------------------------------------------
# ServerEvent: one per RawLine, produced by parse.parse()
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class ServerEvent:
    raw: RawLine
    line: ConsoleLine | None = None

    def display(self) -> str:
        """Text to echo to the operator."""
        return str(self.line) if self.line else self.raw.text


@dataclass(frozen=True)
class PlayerJoined(ServerEvent):
    name: str


@dataclass(frozen=True)
class PlayerLeft(ServerEvent):
    name: str
    reason: str | None = None


@dataclass(frozen=True)
class ChatMessage(ServerEvent):
    name: str
    text: str


@dataclass(frozen=True)
class ServerReady(ServerEvent):
    elapsed: float  # seconds


@dataclass(frozen=True)
class CommandEcho(ServerEvent):
    source: str     # "Server", "Rcon" or the name of the op who ran the command
    text: str


@dataclass(frozen=True)
class EulaRequired(ServerEvent):
    pass


@dataclass(frozen=True)
class Unrecognized(ServerEvent):
    pass


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Player:
    display_name: str


@dataclass(frozen=True)
class RosterSnapshot:
    """Immutable, name-sorted view of the online players."""
    players: tuple[Player, ...] = ()

    @classmethod
    def of(cls, names) -> RosterSnapshot:
        return cls(tuple(Player(n) for n in sorted(names)))

    @property
    def names(self) -> list[str]:
        return [p.display_name for p in self.players]

    def __len__(self) -> int:
        return len(self.players)

    def __iter__(self):
        return iter(self.players)

    def __contains__(self, name: object) -> bool:
        return any(p.display_name == name for p in self.players)


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------

class MessageOrigin(enum.Enum):
    MINECRAFT = "minecraft"
    CHAT = "chat"


@dataclass(frozen=True)
class BridgeMessage:
    origin: MessageOrigin
    author: str
    body: str


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ConnectionSnapshot:
    state: ConnectionState = ConnectionState.DISCONNECTED
    attempt: int = 0        # only meaningful while RECONNECTING


# ---------------------------------------------------------------------------
# Process lifecycle
# ---------------------------------------------------------------------------

class ProcessState(str, enum.Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ExitInfo:
    code: int | None
    runtime: float          # seconds spent running
    eula_required: bool = False

    def describe(self) -> str:
        if self.code is None:
            return "unknown exit status"
        if self.code < 0:
            return f"killed by signal {-self.code}"
        return f"exit code {self.code}"


@dataclass(frozen=True)
class ProcessSnapshot:
    state: ProcessState = ProcessState.NOT_STARTED
    exit_info: ExitInfo | None = None
    pid: int | None = None


@dataclass(frozen=True)
class ProcessNotice:
    """Lifecycle transition reported by the supervisor to the router.

    ``restart_delay`` is set when a restart has been scheduled; a CRASHED
    notice without one means the supervisor has given up.
    """
    state: ProcessState
    exit_info: ExitInfo | None = None
    restart_delay: float | None = None
    attempt: int = 0
    detail: str = ""
