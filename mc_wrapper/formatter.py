"""Formatter: renders server-side happenings for the chat platform.

The Formatter is the bridge between semantic content (what happened on the
Minecraft server) and platform rendering (how it LOOKS on Discord).  Each
platform gets its own subclass; the router never deals with markup.

Player names are deliberately NOT markdown-escaped: escaping them produced
doubled asterisks in third-party display contexts.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from .models import BridgeMessage, ProcessNotice, ProcessState, RosterSnapshot

# ---------------------------------------------------------------------------
# Online player summaries (shared by commands and presence)
# ---------------------------------------------------------------------------

# Discord truncates activity names at 128 characters.  We leave room for
# "and <16 char name> (+ 999 more)" after the budget is reached.
PRESENCE_BUDGET = 95


OFFLINE_TOPIC = "Minecraft server is offline"


def format_online_players(snapshot: RosterSnapshot, *, short: bool = False) -> str:
    """Answer to the `list` command, identical on every channel.

    ``short`` names at most three players and counts the rest, for places
    like the channel topic.
    """
    names = snapshot.names
    if not names:
        return "Nobody is playing Minecraft"
    if len(names) == 1:
        return f"{names[0]} is playing Minecraft"
    if len(names) == 2:
        return f"{names[0]} and {names[1]} are playing Minecraft"
    if short:
        listed = f"{names[0]}, {names[1]}, and {names[2]}"
        if len(names) > 3:
            listed += f" (+ {len(names) - 3} more)"
        return f"{listed} are playing Minecraft"
    return f"{', '.join(names[:-1])}, and {names[-1]} are playing Minecraft"


def format_presence(snapshot: RosterSnapshot) -> str:
    """Short status line for the bot's presence.

    Lists as many full names as fit, then falls back to "(+ N more)".
    """
    names = snapshot.names
    if not names:
        return "Minecraft with nobody"
    if len(names) == 1:
        return f"Minecraft with {names[0]}"
    if len(names) == 2:
        return f"Minecraft with {names[0]} and {names[1]}"

    text = "Minecraft with "
    included = 0
    last = len(names) - 1
    for i, name in enumerate(names):
        if len(text) + len(name) + 2 > PRESENCE_BUDGET and i != last:
            break
        text += f"and {name}" if i == last else f"{name}, "
        included += 1

    if included < len(names):
        # At least two names are left here
        text += f"and {names[included]}"
        included += 1
        text += f" (+ {len(names) - included} more)"

    return text


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class Formatter(ABC):
    """Render server events into platform-specific strings."""

    @abstractmethod
    def format_chat(self, message: BridgeMessage) -> str:
        """Render a chat line sent by a player in game."""
        ...

    @abstractmethod
    def format_join(self, name: str) -> str:
        ...

    @abstractmethod
    def format_leave(self, name: str) -> str:
        ...

    @abstractmethod
    def format_ready(self, elapsed: float) -> str:
        ...

    @abstractmethod
    def format_notice(self, notice: ProcessNotice) -> str | None:
        """Render a process lifecycle notice, or None to stay quiet about it."""
        ...


# ---------------------------------------------------------------------------
# Discord implementation
# ---------------------------------------------------------------------------

# Match bare URLs not already inside <angle brackets>
_BARE_URL_RE = re.compile(r"(?<![<(])(https?://\S+)")


def _suppress_embeds(text: str) -> str:
    """Wrap bare URLs in <brackets> so Discord won't generate previews."""
    return _BARE_URL_RE.sub(r"<\1>", text)


class DiscordFormatter(Formatter):
    """Render server events for Discord markdown."""

    def format_chat(self, message: BridgeMessage) -> str:
        return f"**{message.author}** {_suppress_embeds(message.body)}"

    def format_join(self, name: str) -> str:
        return f"_**{name}** joined the game_"

    def format_leave(self, name: str) -> str:
        return f"_**{name}** left the game_"

    def format_ready(self, elapsed: float) -> str:
        return f"-# ℹ️ Minecraft server is online (started in {elapsed:g}s)"

    def format_notice(self, notice: ProcessNotice) -> str | None:
        if notice.state == ProcessState.RUNNING:
            return None

        if notice.state == ProcessState.CRASHED:
            why = notice.exit_info.describe() if notice.exit_info else "unknown cause"
            if notice.restart_delay is None:
                return f"❌ **Minecraft server crashed** ({why}); giving up on restarts"
            return (
                f"⚠️ **Minecraft server crashed** ({why}); "
                f"restarting in {notice.restart_delay:g}s (attempt {notice.attempt})"
            )

        if notice.state == ProcessState.STOPPED:
            if notice.detail:
                return f"-# ℹ️ Minecraft server stopped: {notice.detail}"
            return "-# ℹ️ Minecraft server stopped"

        return None
