"""Query the controlling terminal for Sixel support and cell geometry.

Both probes share :func:`query_terminal`, which switches the input
descriptor into non-canonical, no-echo mode, writes a request, and collects
the reply until a completion predicate matches or a deadline passes. The
saved terminal attributes are restored on every exit path.

The probes block and use the same descriptors as normal program I/O, so the
CLI runs :func:`probe_capabilities` exactly once before the event loop
starts.
"""

from __future__ import annotations

import logging
import math
import os
import re
import select
import sys
import time
from dataclasses import dataclass
from typing import Callable

if os.name == "nt":  # pragma: no cover - Windows consoles have no termios
    termios = None
else:  # pragma: no cover - exercised via Unix CI
    import termios

from .errors import ProbeParseFailure, ProbeTimeout


LOGGER = logging.getLogger(__name__)

PROBE_TIMEOUT = 1.0
_READ_SIZE = 256

BEL = 0x07

DEVICE_ATTRIBUTES_REQUEST = b"\x1b[c"
CELL_SIZE_REQUEST = b"\x1b]1337;ReportCellSize\x1b\\"
SIXEL_ATTRIBUTE = "4"

_DECIMAL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class CellSize:
    """Character cell geometry reported by the terminal."""

    cell_pixel_width: int
    display_scale: int


@dataclass(frozen=True)
class TerminalCapabilities:
    """Snapshot of what the terminal reported at startup."""

    sixel_supported: bool = False
    cell_size: CellSize | None = None

    def describe(self) -> list[str]:
        """Return the human readable summary lines printed at startup."""

        lines = [
            "Sixel graphics: enabled"
            if self.sixel_supported
            else "Sixel graphics: disabled (terminal does not support Sixel)"
        ]
        if self.cell_size is not None:
            lines.append(
                f"Cell size: {self.cell_size.cell_pixel_width}px "
                f"(scale {self.cell_size.display_scale})"
            )
        return lines


def query_terminal(
    request: bytes,
    is_complete: Callable[[bytes], bool],
    *,
    input_fd: int | None = None,
    output_fd: int | None = None,
    timeout: float = PROBE_TIMEOUT,
    clock: Callable[[], float] = time.monotonic,
) -> bytes | None:
    """Send ``request`` to the terminal and return its reply, if any.

    ``None`` is returned straight away when ``input_fd`` is not a terminal,
    and when nothing arrived before ``timeout`` seconds elapsed. Otherwise
    the bytes collected so far are returned, complete or not.
    """

    if input_fd is None:
        input_fd = _stream_fd(sys.stdin)
    if output_fd is None:
        output_fd = _stream_fd(sys.stdout)
    if termios is None or input_fd is None or output_fd is None:
        return None
    if not os.isatty(input_fd):
        return None

    try:
        original = termios.tcgetattr(input_fd)
        raw = termios.tcgetattr(input_fd)
    except termios.error as exc:
        LOGGER.debug("cannot read terminal attributes: %s", exc)
        return None
    raw[3] &= ~(termios.ECHO | termios.ICANON)
    raw[6][termios.VMIN] = 0
    raw[6][termios.VTIME] = 0
    response = bytearray()
    try:
        try:
            termios.tcsetattr(input_fd, termios.TCSANOW, raw)
            _write_all(output_fd, request)
        except (OSError, termios.error) as exc:
            LOGGER.debug("cannot send terminal request: %s", exc)
            return None
        deadline = clock() + timeout
        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                break
            ready, _, _ = select.select([input_fd], [], [], remaining)
            if not ready:
                break
            try:
                chunk = os.read(input_fd, _READ_SIZE)
            except OSError as exc:
                LOGGER.debug("terminal read failed: %s", exc)
                break
            if not chunk:
                break
            response.extend(chunk)
            if is_complete(bytes(response)):
                break
    finally:
        try:
            termios.tcsetattr(input_fd, termios.TCSANOW, original)
        except termios.error as exc:
            LOGGER.warning("cannot restore terminal attributes: %s", exc)

    if not response:
        return None
    return bytes(response)


def _stream_fd(stream) -> int | None:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def _write_all(fd: int, payload: bytes) -> None:
    view = memoryview(payload)
    while view:
        written = os.write(fd, view)
        view = view[written:]


# Device attributes (DA1) ----------------------------------------------------


def device_attributes_complete(response: bytes) -> bool:
    return b"c" in response


def parse_device_attributes(response: bytes) -> bool:
    """Return ``True`` when a DA1 reply lists the Sixel attribute ``4``.

    A reply looks like ``ESC [ ? 4 ; 6 c``. Anything that does not follow
    that shape raises :class:`ProbeParseFailure`.
    """

    try:
        text = response.decode("ascii")
    except UnicodeDecodeError as exc:
        raise ProbeParseFailure("device attributes reply is not ASCII") from exc
    question = text.find("?")
    terminator = text.find("c")
    if question < 0 or terminator < 0 or question > terminator:
        raise ProbeParseFailure(f"malformed device attributes reply {response!r}")
    attributes = [token.strip() for token in text[question + 1 : terminator].split(";")]
    return SIXEL_ATTRIBUTE in attributes


def detect_sixel_support(**query_options) -> bool:
    """Ask the terminal for its device attributes and look for Sixel."""

    try:
        response = _require_response(
            DEVICE_ATTRIBUTES_REQUEST, device_attributes_complete, **query_options
        )
        return parse_device_attributes(response)
    except (ProbeTimeout, ProbeParseFailure) as exc:
        LOGGER.debug("sixel probe: %s", exc)
        return False


# iTerm2 ReportCellSize --------------------------------------------------------


def cell_size_complete(response: bytes) -> bool:
    return BEL in response or b"\x1b\\" in response


def parse_cell_size(response: bytes) -> CellSize:
    """Parse ``OSC 1337 ; ReportCellSize=height;width[;scale] ST``."""

    try:
        text = response.decode("ascii")
    except UnicodeDecodeError as exc:
        raise ProbeParseFailure("cell size reply is not ASCII") from exc
    equals = text.find("=")
    if equals < 0:
        raise ProbeParseFailure(f"cell size reply has no '=': {response!r}")

    end = text.find("\x07")
    if end < 0:
        end = text.rfind("\x1b")
    if end < 0:
        end = len(text)
    parts = [part for part in text[equals + 1 : end].split(";") if part]
    if len(parts) < 2:
        raise ProbeParseFailure(f"cell size reply is missing the width: {response!r}")

    width = _parse_number(parts[1])
    if width is None:
        raise ProbeParseFailure(f"cell width {parts[1]!r} is not numeric")
    scale = _parse_number(parts[2]) if len(parts) >= 3 else None
    if scale is None:
        scale = 1.0

    display_scale = max(1, _round_half_away(scale))
    cell_pixel_width = _round_half_away(width * scale)
    if cell_pixel_width <= 0:
        raise ProbeParseFailure(f"cell width {cell_pixel_width} is not positive")
    return CellSize(cell_pixel_width=cell_pixel_width, display_scale=display_scale)


def _parse_number(text: str) -> float | None:
    if _DECIMAL.fullmatch(text) is None:
        return None
    value = float(text)
    if not math.isfinite(value):
        return None
    return value


def _round_half_away(value: float) -> int:
    """Round to the nearest integer, ties away from zero."""

    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def detect_cell_size(**query_options) -> CellSize | None:
    """Ask the terminal for its cell size; ``None`` when unsupported."""

    try:
        response = _require_response(
            CELL_SIZE_REQUEST, cell_size_complete, **query_options
        )
        return parse_cell_size(response)
    except (ProbeTimeout, ProbeParseFailure) as exc:
        LOGGER.debug("cell size probe: %s", exc)
        return None


def _require_response(
    request: bytes, is_complete: Callable[[bytes], bool], **query_options
) -> bytes:
    response = query_terminal(request, is_complete, **query_options)
    if response is None:
        raise ProbeTimeout(f"no reply to {request!r}")
    return response


def probe_capabilities(**query_options) -> TerminalCapabilities:
    """Run both probes once and return the combined result."""

    sixel_supported = detect_sixel_support(**query_options)
    cell_size = detect_cell_size(**query_options)
    capabilities = TerminalCapabilities(
        sixel_supported=sixel_supported, cell_size=cell_size
    )
    LOGGER.debug("terminal capabilities: %s", capabilities)
    return capabilities


__all__ = [
    "CELL_SIZE_REQUEST",
    "CellSize",
    "DEVICE_ATTRIBUTES_REQUEST",
    "PROBE_TIMEOUT",
    "TerminalCapabilities",
    "cell_size_complete",
    "detect_cell_size",
    "detect_sixel_support",
    "device_attributes_complete",
    "parse_cell_size",
    "parse_device_attributes",
    "probe_capabilities",
    "query_terminal",
]
