"""Console parser: classifies raw server output lines into ServerEvents.

Classification is an ordered list of rules; the first rule whose pattern
matches wins.  When server distributions phrase the same thing differently
(vanilla vs. Spigot/Paper) the rule simply carries more than one pattern.
Adding support for another distribution means adding patterns here, never
new ServerEvent variants.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from .models import (
    ChatMessage,
    CommandEcho,
    ConsoleLine,
    EulaRequired,
    LogLevel,
    PlayerJoined,
    PlayerLeft,
    RawLine,
    ServerEvent,
    ServerReady,
    Unrecognized,
)

_ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

# ---------------------------------------------------------------------------
# Header decomposition
# ---------------------------------------------------------------------------

_HEADER_PATTERNS = (
    # vanilla:  [23:10:31] [Server thread/INFO]: Starting minecraft server
    # forge:    [23:10:31] [Server thread/INFO] [minecraft/DedicatedServer]: ...
    re.compile(
        r"^\[(?P<time>\d{1,2}:\d{2}:\d{2})\] \[(?P<thread>[^\]]*)/(?P<level>[A-Za-z]+)\]"
        r"(?: \[[^\]]*\])?: (?P<message>.*)$"
    ),
    # Spigot/Paper console:  [23:10:31 INFO]: Starting minecraft server
    re.compile(
        r"^\[(?P<time>\d{1,2}:\d{2}:\d{2}) (?P<level>[A-Za-z]+)\]: (?P<message>.*)$"
    ),
)


def parse_console_line(text: str) -> ConsoleLine | None:
    """Decompose a log header, or return None if the line doesn't have one."""
    text = _ANSI_ESCAPE_RE.sub("", text)
    for pattern in _HEADER_PATTERNS:
        m = pattern.match(text)
        if m:
            return ConsoleLine(
                timestamp=m["time"],
                thread=m.groupdict().get("thread") or "",
                level=LogLevel.parse(m["level"]),
                message=m["message"],
            )
    return None


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

_Builder = Callable[[re.Match, RawLine, ConsoleLine], "ServerEvent | None"]


@dataclass(frozen=True)
class Rule:
    """A named group of alternative patterns mapping to one ServerEvent variant.

    ``build`` may return None to decline a match (e.g. chat phrasing on a
    thread that never carries player chat); the parser then moves on to the
    next rule.
    """
    name: str
    patterns: tuple[re.Pattern[str], ...]
    build: _Builder
    info_only: bool = True

    def apply(self, raw: RawLine, line: ConsoleLine) -> ServerEvent | None:
        if self.info_only and line.level is not LogLevel.INFO:
            return None
        for pattern in self.patterns:
            m = pattern.match(line.message)
            if m:
                event = self.build(m, raw, line)
                if event is not None:
                    return event
        return None


def _is_chat_thread(thread: str) -> bool:
    # Spigot/Paper console lines have no thread at all
    return thread in ("", "Server thread") or thread.startswith("Async Chat Thread")


def _chat(m: re.Match, raw: RawLine, line: ConsoleLine) -> ServerEvent | None:
    if not _is_chat_thread(line.thread):
        return None
    return ChatMessage(name=m["name"], text=m["text"], raw=raw, line=line)


def _ready(m: re.Match, raw: RawLine, line: ConsoleLine) -> ServerEvent:
    return ServerReady(elapsed=float(m["elapsed"].replace(",", ".")), raw=raw, line=line)


_NAME = r"(?P<name>[^\s\[\]<>:]+)"

RULES: tuple[Rule, ...] = (
    Rule(
        name="eula",
        patterns=(re.compile(r"^You need to agree to the EULA in order to run the server"),),
        build=lambda m, raw, line: EulaRequired(raw=raw, line=line),
        info_only=False,
    ),
    Rule(
        name="join",
        patterns=(
            # Cldfire[/127.0.0.1:56538] logged in with entity id 121 at (-2.5, 63.0, 256.5)
            # Spigot: ... at ([world]8185.89, 65.0, -330.11)
            re.compile(_NAME + r"\[(?P<address>[^\]]*)\] logged in with entity id \d+ at \(.*\)$"),
            re.compile(_NAME + r" joined the game$"),
        ),
        build=lambda m, raw, line: PlayerJoined(name=m["name"], raw=raw, line=line),
    ),
    Rule(
        name="leave",
        patterns=(
            re.compile(_NAME + r" lost connection: (?P<reason>.*)$"),
            re.compile(_NAME + r" left the game$"),
        ),
        build=lambda m, raw, line: PlayerLeft(
            name=m["name"], reason=m.groupdict().get("reason"), raw=raw, line=line
        ),
    ),
    Rule(
        name="chat",
        patterns=(
            # vanilla "<Name> text"; Paper 1.19+ prefixes unsigned chat with "[Not Secure] "
            re.compile(r"^(?:\[Not Secure\] )?<(?P<name>[^<>\s]+)> (?P<text>.*)$"),
        ),
        build=_chat,
    ),
    Rule(
        name="ready",
        patterns=(re.compile(r"^Done \((?P<elapsed>\d+(?:[.,]\d+)?)s\)!"),),
        build=_ready,
    ),
    Rule(
        name="echo",
        patterns=(
            re.compile(r"^(?:\[Not Secure\] )?\[(?P<source>Server|Rcon)\] (?P<text>.*)$"),
            # op command feedback: [Cldfire: Set the time to 1000]
            re.compile(r"^\[(?P<source>[^\s\[\]:]+): (?P<text>.+)\]$"),
        ),
        build=lambda m, raw, line: CommandEcho(
            source=m["source"], text=m["text"], raw=raw, line=line
        ),
    ),
)


def parse(line: RawLine, rules: tuple[Rule, ...] = RULES) -> ServerEvent:
    """Classify ``line``.  Total: always returns exactly one ServerEvent."""
    console_line = parse_console_line(line.text)
    if console_line is None:
        return Unrecognized(raw=line)

    for rule in rules:
        event = rule.apply(line, console_line)
        if event is not None:
            return event

    return Unrecognized(raw=line, line=console_line)
