"""Discord -> Minecraft console rendering.

The console has no rich text, so a chat message is flattened: markdown
emphasis is stripped, mentions become names, custom emoji, attachments and
embeds become bracketed placeholders.  Only caches are consulted; a mention
we can't resolve keeps its raw `<@123>` form rather than waiting on the
network.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass

from mc_wrapper.gateway import MessageCreated

CHAT_PREFIX = "[D] "

Lookup = Callable[[int], "str | None"]

# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------

# Order matters: longer markers first so "**a**" isn't eaten as "*" + "*a*" + "*"
_MARKDOWN_RULES = (
    re.compile(r"`([^`\n]+)`"),
    re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*", re.DOTALL),
    re.compile(r"__(?=\S)(.+?)(?<=\S)__", re.DOTALL),
    re.compile(r"~~(?=\S)(.+?)(?<=\S)~~", re.DOTALL),
    re.compile(r"\|\|(?=\S)(.+?)(?<=\S)\|\|", re.DOTALL),
    re.compile(r"\*(?=\S)([^*]+?)(?<=\S)\*"),
    # single underscores only count at word boundaries (snake_case stays intact)
    re.compile(r"(?<!\w)_(?=\S)([^_]+?)(?<=\S)_(?!\w)"),
)

_ESCAPE_RE = re.compile(r"\\([*_~`|>\\])")


def strip_markdown(text: str) -> str:
    """Remove paired emphasis markers and backslash escapes."""
    # Escaped markers must survive the stripping, so park them first.  NULs
    # delimit the parking slots and have no business in chat anyway.
    text = text.replace("\x00", "")
    parked: list[str] = []

    def park(m: re.Match) -> str:
        parked.append(m.group(1))
        return f"\x00{len(parked) - 1}\x00"

    text = _ESCAPE_RE.sub(park, text)
    for rule in _MARKDOWN_RULES:
        text = rule.sub(r"\1", text)
    return re.sub(r"\x00(\d+)\x00", lambda m: parked[int(m.group(1))], text)


# ---------------------------------------------------------------------------
# Mentions and emoji
# ---------------------------------------------------------------------------

_MENTION_RE = re.compile(
    r"<(?:@!?(?P<user>\d+)|@&(?P<role>\d+)|#(?P<channel>\d+)|a?:(?P<emoji>\w+):\d+)>"
)


@dataclass
class MentionResolver:
    """Cache-only lookups for the ids that appear in mentions."""

    member_name: Lookup
    channel_name: Lookup
    role_name: Lookup

    def render(self, text: str, mentions: dict[int, str] | None = None) -> str:
        mentions = mentions or {}

        def replace(m: re.Match) -> str:
            if m["user"]:
                uid = int(m["user"])
                name = mentions.get(uid) or self.member_name(uid)
                return f"@{name}" if name else m.group(0)
            if m["role"]:
                name = self.role_name(int(m["role"]))
                return f"@{name}" if name else m.group(0)
            if m["channel"]:
                name = self.channel_name(int(m["channel"]))
                return f"#{name}" if name else m.group(0)
            return f"[:{m['emoji']}:]"

        return _MENTION_RE.sub(replace, text)


def _no_lookup(_: int) -> None:
    return None


def transform_text(text: str, resolver: MentionResolver | None = None,
                   mentions: dict[int, str] | None = None) -> str:
    """Flatten Discord markup in ``text`` for the console.

    Text without any markup comes back unchanged.
    """
    resolver = resolver or MentionResolver(_no_lookup, _no_lookup, _no_lookup)
    return resolver.render(strip_markdown(text), mentions)


# ---------------------------------------------------------------------------
# Whole messages
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Placeholder:
    label: str              # "image: cat.png"
    url: str | None = None

    def __str__(self) -> str:
        return f"[{self.label}]"


@dataclass(frozen=True)
class ConsoleChat:
    """A Discord message flattened for the console."""

    author: str
    text: str
    placeholders: tuple[Placeholder, ...] = ()

    def plain(self) -> str:
        parts = [f"<{self.author}>"]
        if self.text:
            parts.append(self.text)
        parts.extend(str(p) for p in self.placeholders)
        return " ".join(parts)

    def tellraw(self, target: str = "@a") -> str:
        """A `tellraw` command; placeholders with a URL are clickable."""
        components: list[dict] = [
            "",
            {"text": CHAT_PREFIX, "bold": True, "color": "light_purple"},
            {"text": f"<{self.author}>" + (f" {self.text}" if self.text else "")},
        ]
        for p in self.placeholders:
            component: dict = {"text": f" {p}", "color": "gray", "italic": True}
            if p.url:
                component["underlined"] = True
                component["clickEvent"] = {"action": "open_url", "value": p.url}
                component["hoverEvent"] = {
                    "action": "show_text",
                    "contents": "Click to open in your web browser",
                }
            components.append(component)
        return f"tellraw {target} {json.dumps(components, ensure_ascii=False)}"


def render_message(message: MessageCreated, resolver: MentionResolver) -> ConsoleChat:
    placeholders = [
        Placeholder(f"{'image' if a.is_image else 'file'}: {a.filename}", a.url)
        for a in message.attachments
    ]
    for embed in message.embeds:
        if not embed.url:
            continue
        if embed.title and embed.provider:
            label = f"{embed.provider} - {embed.title}"
        else:
            label = embed.title or embed.url
        placeholders.append(Placeholder(f"link: {label}", embed.url))

    text = transform_text(message.content, resolver, message.mentions).strip()
    return ConsoleChat(author=message.author, text=text, placeholders=tuple(placeholders))
