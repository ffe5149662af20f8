from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

import aiohttp
import discord

from .errors import GatewayError
from .gateway import (
    AttachmentInfo,
    ChatGateway,
    EmbedInfo,
    GatewayEvent,
    MemberUpdated,
    MessageCreated,
)

log = logging.getLogger(__name__)

DISCORD_CHAR_LIMIT = 2000
DISCORD_TOPIC_LIMIT = 1024

# Transport failures that reach us from under discord.py
_NETWORK_ERRORS = (OSError, aiohttp.ClientError, asyncio.TimeoutError)

# Only ordinary chat is bridged (no pins, joins, thread notices...)
_BRIDGED_MESSAGE_TYPES = (discord.MessageType.default, discord.MessageType.reply)


def _embed_info(embed: discord.Embed) -> EmbedInfo:
    provider = getattr(embed.provider, "name", None)
    return EmbedInfo(url=embed.url, title=embed.title, provider=provider)


def _attachment_info(attachment: discord.Attachment) -> AttachmentInfo:
    if attachment.content_type:
        is_image = attachment.content_type.startswith("image/")
    else:
        is_image = attachment.height is not None
    return AttachmentInfo(filename=attachment.filename, url=attachment.url, is_image=is_image)


class DiscordGateway(discord.Client, ChatGateway):
    """ChatGateway over discord.py, bridging a single text channel.

    discord.py's own reconnect loop is switched off (``reconnect=False``):
    each session runs until the websocket drops and the router's GatewayLink
    decides when to open the next one.
    """

    def __init__(self, token: str, channel_id: int) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(intents=intents)

        self.channel_id = channel_id
        self._token = token
        self._inbound: asyncio.Queue[GatewayEvent] = asyncio.Queue()
        self._session_ready = asyncio.Event()
        self._session: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def open_session(self) -> None:
        if self.is_closed():
            # The previous session closed the client; start from a clean slate
            self.clear()
        self._session_ready.clear()

        try:
            await self.login(self._token)
        except (discord.DiscordException, *_NETWORK_ERRORS) as exc:
            raise GatewayError(f"Discord login failed: {exc}") from exc

        self._session = asyncio.create_task(
            self.connect(reconnect=False), name="discord-session",
        )
        ready = asyncio.create_task(self._session_ready.wait())
        done, _ = await asyncio.wait(
            {self._session, ready}, return_when=asyncio.FIRST_COMPLETED,
        )
        if ready not in done:
            ready.cancel()
            await self.wait_session_closed()
            raise GatewayError("Discord session closed before it became ready")

    async def wait_session_closed(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            await session
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise GatewayError(f"Discord session lost: {exc!r}") from exc
        finally:
            self._session = None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def events(self) -> AsyncIterator[GatewayEvent]:
        while True:
            yield await self._inbound.get()

    async def on_ready(self) -> None:
        channel = self.get_channel(self.channel_id)
        log.info("Logged in as %s (ID: %s)", self.user, self.user.id if self.user else "?")
        if channel is not None and hasattr(channel, "guild"):
            log.info(
                "Connected to guild %s, bridging chat to '#%s'",
                channel.guild.name, getattr(channel, "name", self.channel_id),
            )
        else:
            log.warning("Bridge channel %s is not visible to the bot", self.channel_id)
        self._session_ready.set()

    async def on_resumed(self) -> None:
        self._session_ready.set()

    async def on_message(self, message: discord.Message) -> None:
        if message.channel.id != self.channel_id:
            return
        if message.type not in _BRIDGED_MESSAGE_TYPES:
            return

        self._inbound.put_nowait(MessageCreated(
            channel_id=message.channel.id,
            author=message.author.display_name,
            author_is_bot=message.author.bot,
            content=message.content,
            mentions={user.id: user.display_name for user in message.mentions},
            embeds=tuple(_embed_info(e) for e in message.embeds),
            attachments=tuple(_attachment_info(a) for a in message.attachments),
        ))

    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if before.display_name != after.display_name:
            self._inbound.put_nowait(MemberUpdated(after.id, after.display_name))

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> None:
        if len(text) > DISCORD_CHAR_LIMIT:
            raise GatewayError(f"message is {len(text)} chars, limit is {DISCORD_CHAR_LIMIT}")

        channel = self.get_channel(self.channel_id)
        if channel is None or not isinstance(channel, discord.abc.Messageable):
            raise GatewayError(f"Channel {self.channel_id} is not available")

        try:
            await channel.send(text, allowed_mentions=discord.AllowedMentions.none())
        except discord.HTTPException as exc:
            raise GatewayError(f"{exc.status} {exc.text}") from exc
        except (discord.DiscordException, *_NETWORK_ERRORS) as exc:
            raise GatewayError(f"{type(exc).__name__}: {exc}") from exc

    async def update_presence(self, text: str) -> None:
        if self.ws is None:
            raise GatewayError("Not connected")
        try:
            await self.change_presence(activity=discord.Game(name=text))
        except (discord.DiscordException, *_NETWORK_ERRORS) as exc:
            raise GatewayError(str(exc)) from exc

    async def set_topic(self, text: str) -> None:
        channel = self.get_channel(self.channel_id)
        if not isinstance(channel, discord.TextChannel):
            raise GatewayError(f"Channel {self.channel_id} has no topic to set")
        try:
            await channel.edit(topic=text[:DISCORD_TOPIC_LIMIT])
        except discord.HTTPException as exc:
            raise GatewayError(f"{exc.status} {exc.text}") from exc
        except (discord.DiscordException, *_NETWORK_ERRORS) as exc:
            raise GatewayError(f"{type(exc).__name__}: {exc}") from exc

    # ------------------------------------------------------------------
    # Cache lookups (no network round-trips)
    # ------------------------------------------------------------------

    def _guild(self) -> discord.Guild | None:
        return getattr(self.get_channel(self.channel_id), "guild", None)

    def member_name(self, member_id: int) -> str | None:
        guild = self._guild()
        member = guild.get_member(member_id) if guild else None
        if member is not None:
            return member.display_name
        user = self.get_user(member_id)
        return user.display_name if user else None

    def channel_name(self, channel_id: int) -> str | None:
        return getattr(self.get_channel(channel_id), "name", None)

    def role_name(self, role_id: int) -> str | None:
        guild = self._guild()
        role = guild.get_role(role_id) if guild else None
        return role.name if role else None
