"""Tests for console line classification."""

from __future__ import annotations

import re

import pytest

from conftest import raw
from mc_wrapper.models import (
    ChatMessage,
    CommandEcho,
    EulaRequired,
    LogLevel,
    PlayerJoined,
    PlayerLeft,
    ServerEvent,
    ServerReady,
    Unrecognized,
)
from mc_wrapper.parse import RULES, Rule, parse, parse_console_line


# ==============================================================================
# Header decomposition
# ==============================================================================


def test_warn_header_is_decomposed() -> None:
    line = parse_console_line(
        "[23:10:30] [main/WARN]: Ambiguity between arguments [teleport, targets, location] "
        "and [teleport, targets, destination] with inputs: [0.1 -0.5 .9, 0 0 0]"
    )

    assert line is not None
    assert line.timestamp == "23:10:30"
    assert line.thread == "main"
    assert line.level is LogLevel.WARN
    assert line.message.startswith("Ambiguity between arguments")
    assert line.message.endswith("[0.1 -0.5 .9, 0 0 0]")


def test_info_header_is_decomposed() -> None:
    line = parse_console_line("[23:10:31] [Server thread/INFO]: Starting Minecraft server on *:25565")

    assert line is not None
    assert line.thread == "Server thread"
    assert line.level is LogLevel.INFO
    assert line.message == "Starting Minecraft server on *:25565"


def test_spigot_console_header_has_no_thread() -> None:
    line = parse_console_line("[23:10:31 INFO]: Starting Minecraft server on *:25565")

    assert line is not None
    assert line.thread == ""
    assert line.level is LogLevel.INFO


def test_forge_logger_name_is_skipped() -> None:
    line = parse_console_line(
        "[23:10:31] [Server thread/INFO] [minecraft/DedicatedServer]: Done (3.2s)!"
    )

    assert line is not None
    assert line.message == "Done (3.2s)!"


def test_ansi_colours_are_stripped() -> None:
    line = parse_console_line("\x1b[32m[23:10:31] [Server thread/INFO]: Hello\x1b[0m")

    assert line is not None
    assert line.message == "Hello"


def test_alternative_level_names() -> None:
    assert LogLevel.parse("WARNING") is LogLevel.WARN
    assert LogLevel.parse("SEVERE") is LogLevel.ERROR
    assert LogLevel.parse("TRACE") is LogLevel.UNKNOWN


# ==============================================================================
# Classification
# ==============================================================================


def test_player_login_vanilla() -> None:
    event = parse(raw(
        "[23:11:12] [Server thread/INFO]: Cldfire[/127.0.0.1:56538] logged in with entity "
        "id 121 at (-2.5, 63.0, 256.5)"
    ))

    assert isinstance(event, PlayerJoined)
    assert event.name == "Cldfire"


def test_player_login_spigot_with_world() -> None:
    event = parse(raw(
        "[23:11:12] [Server thread/INFO]: Cldfire[/127.0.0.1:56538] logged in with entity id 97 "
        "at ([world]8185.897723692287, 65.0, -330.1145592972985)"
    ))

    assert isinstance(event, PlayerJoined)
    assert event.name == "Cldfire"


def test_joined_the_game() -> None:
    event = parse(raw("[23:11:12] [Server thread/INFO]: Cldfire joined the game"))

    assert isinstance(event, PlayerJoined)
    assert event.name == "Cldfire"


def test_lost_connection_carries_reason() -> None:
    event = parse(raw("[19:10:21] [Server thread/INFO]: Cldfire lost connection: Disconnected"))

    assert isinstance(event, PlayerLeft)
    assert event.name == "Cldfire"
    assert event.reason == "Disconnected"


def test_left_the_game() -> None:
    event = parse(raw("[19:10:21] [Server thread/INFO]: Cldfire left the game"))

    assert isinstance(event, PlayerLeft)
    assert event.name == "Cldfire"
    assert event.reason is None


def test_chat_on_server_thread() -> None:
    event = parse(raw("[23:12:39] [Server thread/INFO]: <Cldfire> hi!"))

    assert isinstance(event, ChatMessage)
    assert (event.name, event.text) == ("Cldfire", "hi!")


def test_chat_on_async_chat_thread() -> None:
    event = parse(raw("[23:12:39] [Async Chat Thread - #8/INFO]: <Cldfire> hi!"))

    assert isinstance(event, ChatMessage)
    assert (event.name, event.text) == ("Cldfire", "hi!")


def test_unsigned_chat_on_paper() -> None:
    event = parse(raw("[23:12:39 INFO]: [Not Secure] <Cldfire> hello there"))

    assert isinstance(event, ChatMessage)
    assert event.text == "hello there"


def test_chat_phrasing_on_other_thread_is_not_chat() -> None:
    event = parse(raw("[23:12:39] [Worker-Main-3/INFO]: <Cldfire> hi!"))

    assert isinstance(event, Unrecognized)


def test_chat_text_that_looks_like_a_join_stays_chat() -> None:
    event = parse(raw("[23:12:39] [Server thread/INFO]: <Cldfire> Steve joined the game"))

    assert isinstance(event, ChatMessage)


def test_server_ready() -> None:
    event = parse(raw('[21:57:50] [Server thread/INFO]: Done (7.410s)! For help, type "help"'))

    assert isinstance(event, ServerReady)
    assert event.elapsed == pytest.approx(7.41)


def test_server_ready_with_decimal_comma() -> None:
    event = parse(raw('[21:57:50] [Server thread/INFO]: Done (7,410s)! For help, type "help"'))

    assert isinstance(event, ServerReady)
    assert event.elapsed == pytest.approx(7.41)


def test_must_accept_eula() -> None:
    event = parse(raw(
        "[00:03:56] [Server thread/INFO]: You need to agree to the EULA in order to run the "
        "server. Go to eula.txt for more info."
    ))

    assert isinstance(event, EulaRequired)


def test_say_is_a_command_echo() -> None:
    event = parse(raw("[23:15:00] [Server thread/INFO]: [Server] <Alex> hello from discord"))

    assert isinstance(event, CommandEcho)
    assert event.source == "Server"


def test_op_feedback_is_a_command_echo() -> None:
    event = parse(raw("[23:15:00] [Server thread/INFO]: [Cldfire: Set the time to 1000]"))

    assert isinstance(event, CommandEcho)
    assert event.source == "Cldfire"
    assert event.text == "Set the time to 1000"


def test_join_phrasing_at_warn_level_is_not_a_join() -> None:
    event = parse(raw("[23:11:12] [Server thread/WARN]: Cldfire joined the game"))

    assert isinstance(event, Unrecognized)
    assert event.line is not None


# ==============================================================================
# Unrecognized lines
# ==============================================================================


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Loading libraries, please wait...",
        "[19:23:04] [Server thread/INFO]: <--[HERE]",
        "[23:10:35] [Server thread/INFO]: Preparing spawn area: 44%",
        "[23:11:12] [User Authenticator #1/INFO]: UUID of player Cldfire is "
        "361e5fb3-dbce-4f91-86b2-43423a4888d5",
        "\x00\xff garbage ☃",
        "[99:99] [broken",
    ],
)
def test_everything_else_is_unrecognized(text: str) -> None:
    event = parse(raw(text))

    assert isinstance(event, Unrecognized)
    assert event.raw.text == text


def test_unrecognized_without_header_displays_raw_text() -> None:
    event = parse(raw("Loading libraries, please wait..."))

    assert event.line is None
    assert event.display() == "Loading libraries, please wait..."


def test_parse_is_total_over_arbitrary_lines() -> None:
    samples = [
        "[00:00:00] [Server thread/INFO]: ",
        "[00:00:00] [/INFO]: x",
        "[00:00:00 WARN]: <> ",
        "<Cldfire> no header",
        "]]]][[[[",
        " " * 50,
    ]
    for text in samples:
        assert isinstance(parse(raw(text)), ServerEvent)


# ==============================================================================
# Cross-distribution joins and custom rules
# ==============================================================================


def test_same_player_is_identified_across_distributions() -> None:
    vanilla = parse(raw("[23:11:12] [Server thread/INFO]: Cldfire joined the game"))
    paper = parse(raw("[23:11:12 INFO]: Cldfire joined the game"))

    assert isinstance(vanilla, PlayerJoined)
    assert isinstance(paper, PlayerJoined)
    assert vanilla.name == paper.name


def test_rules_are_tried_in_order() -> None:
    shout = Rule(
        name="shout",
        patterns=(re.compile(r"^(?P<name>\w+) joined the game$"),),
        build=lambda m, r, line: ChatMessage(name=m["name"], text="!", raw=r, line=line),
    )

    event = parse(raw("[23:11:12] [Server thread/INFO]: Cldfire joined the game"), (shout, *RULES))

    assert isinstance(event, ChatMessage)
