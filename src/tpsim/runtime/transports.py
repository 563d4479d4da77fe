"""Asyncio byte-stream transports for accepted printer connections."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import AsyncIterator, Awaitable, Callable, Tuple

from ..errors import ConnectionClosed, SessionIOError


LOGGER = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 4096
DEFAULT_MAX_PENDING_CHUNKS = 16

SendCallable = Callable[[bytes], Awaitable[None]]
SessionHandler = Callable[["InboundChunks", SendCallable], Awaitable[None]]

_END_OF_STREAM = object()


def format_peer_address(peername: object) -> str:
    """Return ``host:port`` for ``peername`` or ``"unknown"``."""

    if isinstance(peername, (tuple, list)) and len(peername) >= 2:
        host, port = peername[0], peername[1]
        if ":" in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    if peername:
        return str(peername)
    return "unknown"


class InboundChunks:
    """Single-pass async iterator over the bytes a peer sends.

    A background task copies reads from the :class:`asyncio.StreamReader`
    into a bounded queue, so a slow consumer applies back-pressure to the
    socket. Chunk boundaries carry no meaning; each item is whatever the
    operating system delivered for one read.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        *,
        read_size: int = DEFAULT_READ_SIZE,
        max_pending: int = DEFAULT_MAX_PENDING_CHUNKS,
    ) -> None:
        self._reader = reader
        self._read_size = read_size
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max_pending)
        self._error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None
        self._finished = False

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._pump_reader())

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> "InboundChunks":
        return self

    async def __anext__(self) -> bytes:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None:
            self.start()
        item = await self._queue.get()
        if item is _END_OF_STREAM:
            self._finished = True
            error = self._error
            if error is not None:
                raise SessionIOError(str(error) or type(error).__name__) from error
            raise StopAsyncIteration
        assert isinstance(item, bytes)
        return item

    async def aclose(self) -> None:
        """Stop the reader task and end iteration."""

        self._finished = True
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # Lifecycle helpers --------------------------------------------------

    async def _pump_reader(self) -> None:
        try:
            while True:
                chunk = await self._reader.read(self._read_size)
                if not chunk:
                    break
                await self._queue.put(chunk)
        except OSError as exc:
            self._error = exc
        # Cancellation skips the end marker: ``aclose`` already ended iteration.
        await self._queue.put(_END_OF_STREAM)


class TCPConnection:
    """Bridge one accepted socket to an inbound chunk stream and a send call."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        read_size: int = DEFAULT_READ_SIZE,
        max_pending_chunks: int = DEFAULT_MAX_PENDING_CHUNKS,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.read_size = read_size
        self.max_pending_chunks = max_pending_chunks
        self.remote_address = format_peer_address(writer.get_extra_info("peername"))
        self._send_lock = asyncio.Lock()
        self._closed = False
        self._in_use = False

    @property
    def closed(self) -> bool:
        return self._closed

    # Session API --------------------------------------------------------

    async def send(self, data: bytes) -> None:
        """Write ``data`` after any earlier ``send`` on this session completed."""

        async with self._send_lock:
            if self._closed or self.writer.is_closing():
                raise ConnectionClosed(f"connection to {self.remote_address} is closed")
            if not data:
                return
            try:
                self.writer.write(data)
                await self.writer.drain()
            except OSError as exc:
                raise ConnectionClosed(
                    f"connection to {self.remote_address} closed while sending"
                ) from exc

    @contextlib.asynccontextmanager
    async def open_session(self) -> AsyncIterator[Tuple[InboundChunks, SendCallable]]:
        """Yield ``(inbound, send)`` and close the socket when the block exits."""

        if self._in_use:
            raise RuntimeError("connection already has an active consumer")
        if self._closed:
            raise ConnectionClosed(f"connection to {self.remote_address} is closed")
        self._in_use = True
        inbound = InboundChunks(
            self.reader,
            read_size=self.read_size,
            max_pending=self.max_pending_chunks,
        )
        inbound.start()
        try:
            yield inbound, self.send
        finally:
            await inbound.aclose()
            await self.close()

    async def with_connection(self, handler: SessionHandler) -> None:
        """Run ``handler(inbound, send)`` with the socket closed afterwards."""

        async with self.open_session() as (inbound, send):
            await handler(inbound, send)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as exc:
            LOGGER.debug("error while closing %s: %s", self.remote_address, exc)


async def connection_from_socket(
    sock: socket.socket,
    *,
    read_size: int = DEFAULT_READ_SIZE,
    max_pending_chunks: int = DEFAULT_MAX_PENDING_CHUNKS,
) -> TCPConnection:
    """Wrap an accepted, non-blocking socket as a :class:`TCPConnection`."""

    reader, writer = await asyncio.open_connection(sock=sock, limit=max(read_size, 2**16))
    return TCPConnection(
        reader,
        writer,
        read_size=read_size,
        max_pending_chunks=max_pending_chunks,
    )


__all__ = [
    "DEFAULT_MAX_PENDING_CHUNKS",
    "DEFAULT_READ_SIZE",
    "InboundChunks",
    "SendCallable",
    "SessionHandler",
    "TCPConnection",
    "connection_from_socket",
    "format_peer_address",
]
