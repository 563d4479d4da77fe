"""Exception hierarchy shared by the simulator runtime."""

from __future__ import annotations


class TpsimError(Exception):
    """Base class for simulator failures."""


class BindError(TpsimError):
    """Raised when the listening socket cannot be bound."""

    def __init__(self, host: str, port: int, cause: OSError) -> None:
        super().__init__(f"cannot bind {host}:{port}: {cause.strerror or cause}")
        self.host = host
        self.port = port
        self.cause = cause


class AcceptError(TpsimError):
    """Raised by the connection stream once accepting fails."""


class SessionIOError(TpsimError):
    """Raised when a single client session fails on socket I/O."""


class ConnectionClosed(SessionIOError):
    """Raised when writing to a session whose socket is already closed."""


class ProbeTimeout(TpsimError):
    """Raised when the terminal did not answer before the deadline."""


class ProbeParseFailure(TpsimError):
    """Raised when a terminal reply cannot be interpreted."""


class ConfigError(TpsimError, ValueError):
    """Raised when a configuration file fails validation."""


__all__ = [
    "AcceptError",
    "BindError",
    "ConfigError",
    "ConnectionClosed",
    "ProbeParseFailure",
    "ProbeTimeout",
    "SessionIOError",
    "TpsimError",
]
