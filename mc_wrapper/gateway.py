"""Chat gateway boundary.

The router talks to the chat network only through ChatGateway.  A gateway
delivers inbound events on an async iterator and accepts a handful of
outbound calls; framing, authentication and rate limiting are its own
business.  Connection retries are NOT: the router's GatewayLink decides
when to open a new session.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EmbedInfo:
    url: str | None = None
    title: str | None = None
    provider: str | None = None


@dataclass(frozen=True)
class AttachmentInfo:
    filename: str
    url: str
    is_image: bool = False


@dataclass(frozen=True)
class MessageCreated:
    channel_id: int
    author: str                 # display name of the author
    content: str
    author_is_bot: bool = False
    # user id -> display name, as carried by the message itself
    mentions: dict[int, str] = field(default_factory=dict)
    embeds: tuple[EmbedInfo, ...] = ()
    attachments: tuple[AttachmentInfo, ...] = ()


@dataclass(frozen=True)
class MemberUpdated:
    member_id: int
    display_name: str


GatewayEvent = MessageCreated | MemberUpdated


# ---------------------------------------------------------------------------
# Gateway interface
# ---------------------------------------------------------------------------

class ChatGateway(ABC):
    channel_id: int

    @abstractmethod
    def events(self) -> AsyncIterator[GatewayEvent]:
        """Inbound events, in the order the network delivered them."""
        ...

    @abstractmethod
    async def open_session(self) -> None:
        """Connect and return once the session is ready.

        Raises GatewayError if the connection could not be established.
        """
        ...

    @abstractmethod
    async def wait_session_closed(self) -> None:
        """Return (or raise GatewayError) when the current session drops."""
        ...

    @abstractmethod
    async def send_message(self, text: str) -> None:
        """Post ``text`` in the bridged channel.  Raises GatewayError on failure."""
        ...

    @abstractmethod
    async def update_presence(self, text: str) -> None:
        ...

    @abstractmethod
    async def set_topic(self, text: str) -> None:
        """Replace the bridged channel's topic.  Raises GatewayError on failure."""
        ...

    @abstractmethod
    def member_name(self, member_id: int) -> str | None:
        """Display name from the local member cache.  Never hits the network."""
        ...

    @abstractmethod
    def channel_name(self, channel_id: int) -> str | None:
        ...

    @abstractmethod
    def role_name(self, role_id: int) -> str | None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
