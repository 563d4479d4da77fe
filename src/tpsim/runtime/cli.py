"""Command-line entry point for the thermal printer simulator."""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import sys
from pathlib import Path
from typing import IO, Callable, Sequence

from ..errors import AcceptError, BindError, ConfigError
from ..licenses import print_licenses
from ..receipt_renderer import stream_is_tty
from ..server_config import ServerConfig, load_server_config
from ..terminal_probe import TerminalCapabilities, probe_capabilities
from .server import TCPServer
from .session import default_renderer_factory, serve


LOGGER = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("expected an integer port") from exc
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError("port must be between 0 and 65535")
    return port


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Return parsed arguments for the simulator CLI."""

    parser = argparse.ArgumentParser(
        prog="tpsim",
        description="Render ESC/POS print jobs received over TCP on this terminal.",
    )
    parser.add_argument(
        "--license",
        action="store_true",
        help="Print third-party license notices and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a TOML file with [server] and [renderer] tables",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Interface to listen on (default: localhost)",
    )
    parser.add_argument(
        "--port",
        type=_parse_port,
        default=None,
        help="TCP port to listen on, 0 picks a free port (default: 9100)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log connection diagnostics to stderr",
    )
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
    )


def resolve_config(args: argparse.Namespace) -> ServerConfig:
    config = load_server_config(args.config) if args.config is not None else ServerConfig()
    return config.with_overrides(host=args.host, port=args.port)


def _write_and_flush(stream: IO[str], text: str) -> None:
    stream.write(text)
    stream.flush()


async def run_listen(
    config: ServerConfig,
    capabilities: TerminalCapabilities,
    *,
    output: IO[str] | None = None,
) -> None:
    """Bind the listener, print the banner, and serve until cancelled."""

    if output is None:
        output = sys.stdout
    server = TCPServer(
        config.host,
        config.port,
        read_size=config.read_size,
        max_pending_chunks=config.max_pending_chunks,
    )
    bound_port, connections = await server.start()

    banner = [f"Thermal Printer Simulator listening on port {bound_port}..."]
    banner.extend(capabilities.describe())
    banner.append(f"Send ESC/POS data via TCP (e.g., nc localhost {bound_port})")
    banner.append("Press Ctrl+C to stop.")
    _write_and_flush(output, "\n".join(banner) + "\n\n")

    renderer_factory = functools.partial(
        default_renderer_factory,
        ansi_style_enabled=config.resolve_ansi(stream_is_tty(output)),
        paper_columns=config.paper_columns,
    )
    await serve(
        connections,
        capabilities,
        output=output,
        renderer_factory=renderer_factory,
    )


def main(
    argv: Sequence[str] | None = None,
    *,
    probe: Callable[[], TerminalCapabilities] = probe_capabilities,
) -> int:
    """Entry point for the simulator CLI."""

    args = parse_args(argv)
    if args.license:
        print_licenses()
        return 0

    configure_logging(args.verbose)
    try:
        config = resolve_config(args)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    capabilities = probe()
    try:
        asyncio.run(run_listen(config, capabilities))
    except BindError as exc:
        print(f"Error: {exc}", flush=True)
        return 1
    except AcceptError as exc:
        LOGGER.error("listener stopped: %s", exc)
        print(f"Error: {exc}", flush=True)
        return 1
    except KeyboardInterrupt:  # pragma: no cover - user interrupt
        return 0
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via python -m
    raise SystemExit(main())


__all__ = [
    "configure_logging",
    "main",
    "parse_args",
    "resolve_config",
    "run_listen",
]
