"""Shared fixtures: an in-memory chat gateway and console line helpers."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from mc_wrapper.errors import GatewayError
from mc_wrapper.gateway import ChatGateway, GatewayEvent
from mc_wrapper.models import RawLine


class FakeGateway(ChatGateway):
    """ChatGateway double driven from the test.

    ``open_failures`` makes the next N ``open_session()`` calls raise;
    ``open_errors``, ``send_errors``, ``presence_errors`` and ``topic_errors``
    are raised one per call, in order, before calls behave normally again;
    ``drop()`` ends the current session as if the websocket went away.
    """

    def __init__(self, channel_id: int = 42) -> None:
        self.channel_id = channel_id
        self.sent: list[str] = []
        self.presences: list[str] = []
        self.topics: list[str] = []
        self.members: dict[int, str] = {}
        self.channels: dict[int, str] = {}
        self.roles: dict[int, str] = {}
        self.open_calls = 0
        self.open_failures = 0
        self.fail_sends = False
        self.fail_presence = False
        self.open_errors: list[BaseException] = []
        self.send_errors: list[BaseException] = []
        self.presence_errors: list[BaseException] = []
        self.topic_errors: list[BaseException] = []
        self.closed = False
        self.sessions_opened = asyncio.Event()
        self._inbound: asyncio.Queue[GatewayEvent] = asyncio.Queue()
        self._session_closed = asyncio.Event()

    # -- test controls -------------------------------------------------

    def push(self, event: GatewayEvent) -> None:
        self._inbound.put_nowait(event)

    def drop(self) -> None:
        self._session_closed.set()

    # -- ChatGateway ---------------------------------------------------

    async def events(self) -> AsyncIterator[GatewayEvent]:
        while True:
            yield await self._inbound.get()

    async def open_session(self) -> None:
        self.open_calls += 1
        if self.open_errors:
            raise self.open_errors.pop(0)
        if self.open_failures:
            self.open_failures -= 1
            raise GatewayError("connection refused")
        self._session_closed.clear()
        self.sessions_opened.set()

    async def wait_session_closed(self) -> None:
        await self._session_closed.wait()

    async def send_message(self, text: str) -> None:
        if self.send_errors:
            raise self.send_errors.pop(0)
        if self.fail_sends:
            raise GatewayError("500 Internal Server Error")
        self.sent.append(text)

    async def update_presence(self, text: str) -> None:
        if self.presence_errors:
            raise self.presence_errors.pop(0)
        if self.fail_presence:
            raise GatewayError("Not connected")
        self.presences.append(text)

    async def set_topic(self, text: str) -> None:
        if self.topic_errors:
            raise self.topic_errors.pop(0)
        self.topics.append(text)

    def member_name(self, member_id: int) -> str | None:
        return self.members.get(member_id)

    def channel_name(self, channel_id: int) -> str | None:
        return self.channels.get(channel_id)

    def role_name(self, role_id: int) -> str | None:
        return self.roles.get(role_id)

    async def close(self) -> None:
        self.closed = True
        self._session_closed.set()


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` until it is truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met within %gs" % timeout)
        await asyncio.sleep(interval)


def raw(text: str, stream: str = "stdout") -> RawLine:
    return RawLine(text=text, stream=stream)


def python_server(script: str) -> list[str]:
    """Command line that runs ``script`` in place of the JVM."""
    return [sys.executable, "-c", script]


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def server_jar(tmp_path: Path) -> Path:
    """An empty server.jar in its own folder; the supervisor never runs it."""
    jar = tmp_path / "server.jar"
    jar.write_bytes(b"")
    return jar
