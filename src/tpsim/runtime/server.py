"""TCP listener that turns accepted sockets into :class:`TCPConnection` objects."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import Tuple

from ..errors import AcceptError, BindError
from .transports import (
    DEFAULT_MAX_PENDING_CHUNKS,
    DEFAULT_READ_SIZE,
    TCPConnection,
    connection_from_socket,
)


LOGGER = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 9100
DEFAULT_BACKLOG = 100


class ConnectionStream:
    """Async iterator yielding one :class:`TCPConnection` per accepted socket.

    Accepting starts as soon as the stream is created; connections that
    arrive before the consumer asks for them wait in an unbounded queue.
    An accept failure ends the stream with :class:`AcceptError`.
    """

    def __init__(
        self,
        listener: socket.socket,
        *,
        read_size: int = DEFAULT_READ_SIZE,
        max_pending_chunks: int = DEFAULT_MAX_PENDING_CHUNKS,
    ) -> None:
        self._listener = listener
        self._read_size = read_size
        self._max_pending_chunks = max_pending_chunks
        self._queue: asyncio.Queue[TCPConnection | AcceptError] = asyncio.Queue()
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(self._accept_loop())

    def __aiter__(self) -> "ConnectionStream":
        return self

    async def __anext__(self) -> TCPConnection:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if isinstance(item, AcceptError):
            await self.aclose()
            raise item
        return item

    async def aclose(self) -> None:
        """Stop accepting, close the listener and any unconsumed connections."""

        if self._closed:
            return
        self._closed = True
        if not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._listener.close()
        while not self._queue.empty():
            pending = self._queue.get_nowait()
            if isinstance(pending, TCPConnection):
                await pending.close()

    # Lifecycle helpers --------------------------------------------------

    async def _accept_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                client, _address = await loop.sock_accept(self._listener)
            except OSError as exc:
                LOGGER.error("accept failed: %s", exc)
                error = AcceptError(f"accept failed: {exc}")
                error.__cause__ = exc
                self._queue.put_nowait(error)
                return
            client.setblocking(False)
            try:
                connection = await connection_from_socket(
                    client,
                    read_size=self._read_size,
                    max_pending_chunks=self._max_pending_chunks,
                )
            except OSError as exc:
                # The peer can vanish between accept and stream setup.
                LOGGER.warning("dropping connection during setup: %s", exc)
                client.close()
                continue
            except BaseException:
                client.close()
                raise
            LOGGER.debug("accepted %s", connection.remote_address)
            self._queue.put_nowait(connection)


class TCPServer:
    """Bind ``host``/``port`` and stream accepted connections."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        *,
        backlog: int = DEFAULT_BACKLOG,
        read_size: int = DEFAULT_READ_SIZE,
        max_pending_chunks: int = DEFAULT_MAX_PENDING_CHUNKS,
    ) -> None:
        self.host = host
        self.port = port
        self.backlog = backlog
        self.read_size = read_size
        self.max_pending_chunks = max_pending_chunks
        self.bound_port: int | None = None

    async def start(self) -> Tuple[int, ConnectionStream]:
        """Bind the listener and return ``(bound_port, connections)``."""

        listener = self._bind()
        self.bound_port = int(listener.getsockname()[1])
        LOGGER.debug("listening on %s:%d", self.host, self.bound_port)
        connections = ConnectionStream(
            listener,
            read_size=self.read_size,
            max_pending_chunks=self.max_pending_chunks,
        )
        return self.bound_port, connections

    def _bind(self) -> socket.socket:
        try:
            infos = socket.getaddrinfo(
                self.host or None,
                self.port,
                type=socket.SOCK_STREAM,
                flags=socket.AI_PASSIVE,
            )
        except socket.gaierror as exc:
            raise BindError(self.host, self.port, exc) from exc
        if not infos:
            raise BindError(self.host, self.port, OSError(f"no address for {self.host}"))
        # IPv4 first: `nc localhost` dials 127.0.0.1 before ::1.
        infos.sort(key=lambda info: info[0] != socket.AF_INET)
        family, _type, _proto, _canonname, address = infos[0]
        try:
            listener = socket.create_server(
                address,
                family=family,
                backlog=self.backlog,
                reuse_port=False,
            )
        except OSError as exc:
            raise BindError(self.host, self.port, exc) from exc
        listener.setblocking(False)
        return listener


__all__ = [
    "ConnectionStream",
    "DEFAULT_BACKLOG",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "TCPServer",
]
