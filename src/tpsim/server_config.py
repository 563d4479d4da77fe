"""TOML configuration for the listener and the receipt renderer."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

import tomllib

from .errors import ConfigError
from .receipt_renderer import DEFAULT_PAPER_COLUMNS
from .runtime.server import DEFAULT_HOST, DEFAULT_PORT
from .runtime.transports import DEFAULT_MAX_PENDING_CHUNKS, DEFAULT_READ_SIZE


@dataclass(frozen=True)
class ServerConfig:
    """Resolved settings for one simulator process."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    read_size: int = DEFAULT_READ_SIZE
    max_pending_chunks: int = DEFAULT_MAX_PENDING_CHUNKS
    ansi: str | bool = "auto"
    paper_columns: int = DEFAULT_PAPER_COLUMNS

    def with_overrides(self, *, host: str | None = None, port: int | None = None) -> "ServerConfig":
        """Return a copy with command-line overrides applied."""

        changes: dict[str, Any] = {}
        if host is not None:
            changes["host"] = host
        if port is not None:
            changes["port"] = _validate_port(port)
        return replace(self, **changes) if changes else self

    def resolve_ansi(self, is_tty: bool) -> bool:
        if self.ansi == "auto":
            return is_tty
        return bool(self.ansi)


def load_server_config(config_path: Path) -> ServerConfig:
    """Parse and validate the configuration file at ``config_path``."""

    try:
        with config_path.open("rb") as stream:
            raw_data = tomllib.load(stream)
    except OSError as exc:
        raise ConfigError(f"cannot read {config_path}: {exc.strerror or exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{config_path}: {exc}") from exc
    return parse_server_config(raw_data)


def parse_server_config(data: Mapping[str, Any]) -> ServerConfig:
    server = _section(data, "server")
    renderer = _section(data, "renderer")
    config = ServerConfig()

    host = server.get("host", config.host)
    if not isinstance(host, str):
        raise ConfigError("[server] host must be a string")

    ansi = renderer.get("ansi", config.ansi)
    if not (ansi == "auto" or isinstance(ansi, bool)):
        raise ConfigError('[renderer] ansi must be "auto", true or false')

    return ServerConfig(
        host=host,
        port=_validate_port(server.get("port", config.port)),
        read_size=_positive_int(server, "read_size", config.read_size, "server"),
        max_pending_chunks=_positive_int(
            server, "max_pending_chunks", config.max_pending_chunks, "server"
        ),
        ansi=ansi,
        paper_columns=_positive_int(
            renderer, "paper_columns", config.paper_columns, "renderer"
        ),
    )


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, Mapping):
        raise ConfigError(f"[{name}] section must be a table")
    return section


def _validate_port(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"port must be an integer, received {value!r}")
    if not 0 <= value <= 65535:
        raise ConfigError(f"port {value} is outside 0-65535")
    return value


def _positive_int(section: Mapping[str, Any], key: str, default: int, table: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"[{table}] {key} must be a positive integer")
    return value


__all__ = ["ServerConfig", "load_server_config", "parse_server_config"]
