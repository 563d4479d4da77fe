from __future__ import annotations

import asyncio
import io
import re
import socket
from pathlib import Path

import pytest

from tpsim.errors import AcceptError
from tpsim.runtime import cli
from tpsim.runtime.cli import main, parse_args, resolve_config, run_listen
from tpsim.server_config import ServerConfig
from tpsim.terminal_probe import CellSize, TerminalCapabilities


def _unexpected_probe() -> TerminalCapabilities:
    raise AssertionError("the terminal must not be probed")


# Why: --license must exit before touching the terminal or the network.
def test_license_flag_prints_notices_without_probing(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--license"], probe=_unexpected_probe) == 0

    captured = capsys.readouterr()
    assert "Python Software Foundation" in captured.out


def test_parse_args_defaults() -> None:
    args = parse_args([])

    assert args.license is False
    assert args.config is None
    assert args.host is None
    assert args.port is None
    assert resolve_config(args) == ServerConfig()


def test_parse_args_rejects_out_of_range_port(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit):
        parse_args(["--port", "70000"])
    assert "between 0 and 65535" in capsys.readouterr().err


def test_resolve_config_applies_flags_over_file(tmp_path: Path) -> None:
    config_path = tmp_path / "tpsim.toml"
    config_path.write_text('[server]\nhost = "0.0.0.0"\nport = 9200\n', encoding="utf-8")

    config = resolve_config(parse_args(["--config", str(config_path), "--port", "9300"]))

    assert config.host == "0.0.0.0"
    assert config.port == 9300


def test_invalid_config_exits_with_status_one(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    status = main(["--config", str(tmp_path / "absent.toml")], probe=_unexpected_probe)

    assert status == 1
    assert capsys.readouterr().err.startswith("Error: cannot read")


def test_bind_failure_exits_with_status_one(capsys: pytest.CaptureFixture[str]) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        port = occupied.getsockname()[1]

        status = main(
            ["--host", "127.0.0.1", "--port", str(port)],
            probe=TerminalCapabilities,
        )

    assert status == 1
    out = capsys.readouterr().out
    assert out.startswith(f"Error: cannot bind 127.0.0.1:{port}")
    assert "listening" not in out


def test_accept_failure_exits_with_status_one(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    async def _failing_listen(config, capabilities, *, output=None) -> None:
        raise AcceptError("accept failed: too many open files")

    monkeypatch.setattr(cli, "run_listen", _failing_listen)

    assert main(["--port", "0"], probe=TerminalCapabilities) == 1
    assert "Error: accept failed" in capsys.readouterr().out


def test_run_listen_prints_banner_and_serves_clients() -> None:
    capabilities = TerminalCapabilities(sixel_supported=True, cell_size=CellSize(20, 2))

    async def _exercise() -> tuple[str, bytes]:
        output = io.StringIO()
        config = ServerConfig(host="127.0.0.1", port=0, ansi=False)
        server_task = asyncio.create_task(run_listen(config, capabilities, output=output))

        port = None
        for _ in range(100):
            match = re.search(r"listening on port (\d+)", output.getvalue())
            if match:
                port = int(match.group(1))
                break
            await asyncio.sleep(0.01)
        assert port is not None

        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"Receipt\n\x1d\x28\x48\x06\x00\x30\x30\x01\x02\x03\x04")
        await writer.drain()
        reply = await asyncio.wait_for(reader.readexactly(9), timeout=1.0)
        writer.close()
        for _ in range(100):
            if output.getvalue().rstrip().endswith("closed"):
                break
            await asyncio.sleep(0.01)

        server_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await server_task
        return output.getvalue(), reply

    text, reply = asyncio.run(_exercise())

    assert reply == bytes.fromhex("372530000102030400")
    lines = text.splitlines()
    port = re.search(r"port (\d+)", lines[0]).group(1)
    assert lines[:6] == [
        f"Thermal Printer Simulator listening on port {port}...",
        "Sixel graphics: enabled",
        "Cell size: 20px (scale 2)",
        f"Send ESC/POS data via TCP (e.g., nc localhost {port})",
        "Press Ctrl+C to stop.",
        "",
    ]
    assert lines[6].startswith("Connection from 127.0.0.1:")
    assert "Receipt" in lines
    assert "process: 1, 2, 3, 4" in lines
    assert lines[-1] == f"{lines[6]} closed"
