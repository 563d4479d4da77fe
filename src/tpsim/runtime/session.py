"""Per-connection decode, render and reply loop."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import IO, Callable, Coroutine, Iterable, Protocol

from .. import escpos
from ..errors import SessionIOError
from ..receipt_renderer import TextReceiptRenderer, stream_is_tty
from ..terminal_probe import TerminalCapabilities
from .server import ConnectionStream
from .transports import InboundChunks, SendCallable, TCPConnection


LOGGER = logging.getLogger(__name__)

PROCESS_ID_HEADER = b"\x37\x25"
PROCESS_ID_FUNCTION = 0x30
PROCESS_ID_STATUS_OK = 0x00


class Decoder(Protocol):
    def decode(self, data: bytes) -> Iterable[escpos.Command]: ...


class Renderer(Protocol):
    def render(self, commands: Iterable[escpos.Command]) -> None: ...


DecoderFactory = Callable[[], Decoder]
RendererFactory = Callable[[TerminalCapabilities, IO[str]], Renderer]


def process_id_response(d1: int, d2: int, d3: int, d4: int) -> bytes:
    """Return the 9-byte acknowledgement for a ``GS ( H`` process ID request."""

    return (
        PROCESS_ID_HEADER
        + bytes((PROCESS_ID_FUNCTION, PROCESS_ID_STATUS_OK, d1, d2, d3, d4))
        + b"\x00"
    )


def replies_for(
    commands: Iterable[escpos.Command],
) -> list[tuple[escpos.RequestProcessIdResponse, bytes]]:
    """Pair every command that needs an answer with its reply bytes."""

    replies = []
    for command in commands:
        if isinstance(command, escpos.RequestProcessIdResponse):
            replies.append(
                (command, process_id_response(command.d1, command.d2, command.d3, command.d4))
            )
    return replies


def default_renderer_factory(
    capabilities: TerminalCapabilities,
    output: IO[str],
    *,
    ansi_style_enabled: bool | None = None,
    paper_columns: int | None = None,
) -> TextReceiptRenderer:
    """Build a renderer seeded with the startup terminal capabilities."""

    if ansi_style_enabled is None:
        ansi_style_enabled = stream_is_tty(output)
    renderer = TextReceiptRenderer(
        ansi_style_enabled=ansi_style_enabled,
        sixel_enabled=capabilities.sixel_supported,
        output=output,
    )
    if paper_columns is not None:
        renderer.paper_columns = paper_columns
    cell_size = capabilities.cell_size
    if cell_size is not None:
        renderer.cell_pixel_width = cell_size.cell_pixel_width
        renderer.display_scale = cell_size.display_scale
    return renderer


def _emit(output: IO[str], text: str) -> None:
    output.write(text + "\n")
    output.flush()


async def run_session(
    inbound: InboundChunks,
    send: SendCallable,
    *,
    decoder: Decoder,
    renderer: Renderer,
    output: IO[str],
) -> None:
    """Decode and render ``inbound`` chunks until the peer stops sending."""

    async for chunk in inbound:
        commands = list(decoder.decode(chunk))
        renderer.render(commands)
        for command, reply in replies_for(commands):
            await send(reply)
            _emit(
                output,
                f"process: {command.d1}, {command.d2}, {command.d3}, {command.d4}",
            )


async def handle_connection(
    connection: TCPConnection,
    capabilities: TerminalCapabilities,
    *,
    decoder_factory: DecoderFactory = escpos.EscPosDecoder,
    renderer_factory: RendererFactory = default_renderer_factory,
    output: IO[str] | None = None,
) -> None:
    """Serve one client; failures end this session only."""

    stream = output if output is not None else sys.stdout
    remote_address = connection.remote_address
    _emit(stream, f"Connection from {remote_address}")
    try:
        async def _serve(inbound: InboundChunks, send: SendCallable) -> None:
            renderer = renderer_factory(capabilities, stream)
            try:
                await run_session(
                    inbound,
                    send,
                    decoder=decoder_factory(),
                    renderer=renderer,
                    output=stream,
                )
            finally:
                flush_line = getattr(renderer, "flush_line", None)
                if callable(flush_line):
                    flush_line()

        await connection.with_connection(_serve)
    except SessionIOError as exc:
        LOGGER.info("connection from %s ended: %s", remote_address, exc)
    except Exception:
        LOGGER.exception("session for %s failed", remote_address)
    finally:
        _emit(stream, f"Connection from {remote_address} closed")


async def serve(
    connections: ConnectionStream,
    capabilities: TerminalCapabilities,
    *,
    session_factory: Callable[[TCPConnection], Coroutine[object, object, None]]
    | None = None,
    output: IO[str] | None = None,
    renderer_factory: RendererFactory = default_renderer_factory,
) -> None:
    """Spawn one task per accepted connection until the stream ends.

    :class:`~tpsim.errors.AcceptError` propagates to the caller. Session
    tasks still running when this coroutine exits are cancelled.
    """

    tasks: set[asyncio.Task[None]] = set()

    def _start(connection: TCPConnection) -> None:
        if session_factory is not None:
            coro = session_factory(connection)
        else:
            coro = handle_connection(
                connection,
                capabilities,
                output=output,
                renderer_factory=renderer_factory,
            )
        task = asyncio.get_running_loop().create_task(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    try:
        async for connection in connections:
            _start(connection)
    finally:
        await connections.aclose()
        for task in list(tasks):
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "Decoder",
    "DecoderFactory",
    "PROCESS_ID_HEADER",
    "Renderer",
    "RendererFactory",
    "default_renderer_factory",
    "handle_connection",
    "process_id_response",
    "replies_for",
    "run_session",
    "serve",
]
