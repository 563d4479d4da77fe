"""Network runtime: listener, per-connection bridge, session loop and CLI."""
from __future__ import annotations

from .server import ConnectionStream, TCPServer
from .session import handle_connection, process_id_response, serve
from .transports import InboundChunks, TCPConnection

__all__ = [
    "ConnectionStream",
    "InboundChunks",
    "TCPConnection",
    "TCPServer",
    "handle_connection",
    "process_id_response",
    "serve",
]
