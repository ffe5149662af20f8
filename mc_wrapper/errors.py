from __future__ import annotations


class WrapperError(Exception):
    """Base class for errors raised by mc-wrapper."""


class ConfigError(WrapperError):
    """The configuration is incomplete or points at something that doesn't exist."""


class SpawnError(WrapperError):
    """The server process could not be launched (missing java, bad permissions...)."""


class WriteError(WrapperError):
    """A line could not be written to the server's stdin.

    Raised when the server isn't running or the pipe has gone away.  Callers
    log and drop the command.
    """


class GatewayError(WrapperError):
    """The chat gateway failed to connect, lost its session or rejected a call."""
