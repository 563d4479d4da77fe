"""Thermal printer simulator: render ESC/POS jobs received over TCP."""
from __future__ import annotations

from .errors import (
    AcceptError,
    BindError,
    ConfigError,
    ConnectionClosed,
    ProbeParseFailure,
    ProbeTimeout,
    SessionIOError,
    TpsimError,
)
from .terminal_probe import CellSize, TerminalCapabilities, probe_capabilities

__version__ = "0.1.0"

__all__ = [
    "AcceptError",
    "BindError",
    "CellSize",
    "ConfigError",
    "ConnectionClosed",
    "ProbeParseFailure",
    "ProbeTimeout",
    "SessionIOError",
    "TerminalCapabilities",
    "TpsimError",
    "probe_capabilities",
]
