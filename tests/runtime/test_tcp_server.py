"""Tests for the listener and its accepted-connection stream."""

from __future__ import annotations

import asyncio
import socket

import pytest

from tpsim.errors import AcceptError, BindError
from tpsim.runtime import server as server_module
from tpsim.runtime.server import ConnectionStream, TCPServer


async def _collect(connection, sink: dict[str, bytes]) -> None:
    async def _handler(inbound, send) -> None:
        async for chunk in inbound:
            sink[connection.remote_address] = sink.get(connection.remote_address, b"") + chunk

    await connection.with_connection(_handler)


def test_port_zero_binds_an_ephemeral_port() -> None:
    async def _exercise() -> int:
        bound_port, connections = await TCPServer("127.0.0.1", 0).start()
        await connections.aclose()
        return bound_port

    bound_port = asyncio.run(_exercise())
    assert 0 < bound_port < 65536


def test_concurrent_clients_get_independent_sessions() -> None:
    async def _exercise() -> tuple[dict[str, bytes], dict[str, bytes]]:
        bound_port, connections = await TCPServer("127.0.0.1", 0).start()
        _, first_writer = await asyncio.open_connection("127.0.0.1", bound_port)
        _, second_writer = await asyncio.open_connection("127.0.0.1", bound_port)

        iterator = connections.__aiter__()
        accepted = [
            await asyncio.wait_for(iterator.__anext__(), timeout=1.0),
            await asyncio.wait_for(iterator.__anext__(), timeout=1.0),
        ]
        received: dict[str, bytes] = {}
        sessions = [asyncio.create_task(_collect(conn, received)) for conn in accepted]

        first_writer.write(b"AAAA")
        second_writer.write(b"BBBB")
        await first_writer.drain()
        await second_writer.drain()
        first_writer.close()
        second_writer.close()
        await asyncio.wait_for(asyncio.gather(*sessions), timeout=1.0)
        await connections.aclose()

        expected = {}
        for writer, payload in ((first_writer, b"AAAA"), (second_writer, b"BBBB")):
            host, port = writer.get_extra_info("sockname")[:2]
            expected[f"{host}:{port}"] = payload
        return received, expected

    received, expected = asyncio.run(_exercise())
    assert len(received) == 2
    assert received == expected


def test_connections_queue_until_consumer_asks() -> None:
    async def _exercise() -> str:
        bound_port, connections = await TCPServer("127.0.0.1", 0).start()
        _, writer = await asyncio.open_connection("127.0.0.1", bound_port)
        await asyncio.sleep(0.05)
        connection = await asyncio.wait_for(connections.__anext__(), timeout=1.0)
        remote = connection.remote_address
        writer.close()
        await connection.close()
        await connections.aclose()
        return remote

    assert asyncio.run(_exercise()).startswith("127.0.0.1:")


def test_bind_conflict_raises_bind_error() -> None:
    async def _exercise() -> None:
        bound_port, connections = await TCPServer("127.0.0.1", 0).start()
        try:
            with pytest.raises(BindError) as excinfo:
                await TCPServer("127.0.0.1", bound_port).start()
            assert isinstance(excinfo.value.cause, OSError)
            assert excinfo.value.port == bound_port
        finally:
            await connections.aclose()

    asyncio.run(_exercise())


def test_aclose_stops_listening_and_ends_iteration() -> None:
    async def _exercise() -> None:
        bound_port, connections = await TCPServer("127.0.0.1", 0).start()
        await connections.aclose()
        with pytest.raises(StopAsyncIteration):
            await connections.__anext__()
        with pytest.raises(OSError):
            await asyncio.open_connection("127.0.0.1", bound_port)

    asyncio.run(_exercise())


def test_accept_failure_ends_stream_with_accept_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _exercise() -> None:
        loop = asyncio.get_running_loop()

        async def _failing_accept(sock):
            raise OSError(24, "Too many open files")

        monkeypatch.setattr(loop, "sock_accept", _failing_accept)
        listener = socket.create_server(("127.0.0.1", 0))
        listener.setblocking(False)
        connections = ConnectionStream(listener)

        with pytest.raises(AcceptError) as excinfo:
            await asyncio.wait_for(connections.__anext__(), timeout=1.0)
        assert isinstance(excinfo.value.__cause__, OSError)
        with pytest.raises(StopAsyncIteration):
            await connections.__anext__()
        assert listener.fileno() == -1

    asyncio.run(_exercise())


def test_cancelling_consumer_releases_listener() -> None:
    async def _exercise() -> None:
        bound_port, connections = await TCPServer("127.0.0.1", 0).start()

        async def _consume() -> None:
            try:
                async for _connection in connections:
                    pass
            finally:
                await connections.aclose()

        consumer = asyncio.create_task(_consume())
        await asyncio.sleep(0.01)
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer
        with pytest.raises(OSError):
            await asyncio.open_connection("127.0.0.1", bound_port)

    asyncio.run(_exercise())


def test_aclose_during_setup_closes_accepted_socket(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _exercise() -> int:
        in_setup = asyncio.Event()
        accepted: list[socket.socket] = []

        async def _stalled_setup(sock, **options):
            accepted.append(sock)
            in_setup.set()
            await asyncio.Event().wait()

        monkeypatch.setattr(server_module, "connection_from_socket", _stalled_setup)
        bound_port, connections = await TCPServer("127.0.0.1", 0).start()
        _, writer = await asyncio.open_connection("127.0.0.1", bound_port)
        await asyncio.wait_for(in_setup.wait(), timeout=1.0)

        await connections.aclose()
        writer.close()
        return accepted[0].fileno()

    assert asyncio.run(_exercise()) == -1
