"""Incremental decoder for the subset of ESC/POS the simulator understands.

The decoder is fed arbitrary chunks and keeps any command whose bytes have
not all arrived yet, so decoding is independent of how a client's stream is
split across TCP reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Union


LF: Final = 0x0A
CR: Final = 0x0D
HT: Final = 0x09
DLE: Final = 0x10
ESC: Final = 0x1B
FS: Final = 0x1C
GS: Final = 0x1D


@dataclass(frozen=True)
class Text:
    """Printable bytes in the active code page."""

    data: bytes


@dataclass(frozen=True)
class LineFeed:
    pass


@dataclass(frozen=True)
class CarriageReturn:
    pass


@dataclass(frozen=True)
class HorizontalTab:
    pass


@dataclass(frozen=True)
class Initialize:
    """``ESC @``: reset the print mode to power-on defaults."""


@dataclass(frozen=True)
class SetEmphasis:
    enabled: bool


@dataclass(frozen=True)
class SetUnderline:
    thickness: int


@dataclass(frozen=True)
class SetReverse:
    enabled: bool


@dataclass(frozen=True)
class SetJustification:
    """``ESC a n``: 0 left, 1 centre, 2 right."""

    alignment: int


@dataclass(frozen=True)
class SelectPrintMode:
    """``ESC ! n`` bit field (bold 0x08, double height 0x10, double width 0x20, underline 0x80)."""

    mode: int


@dataclass(frozen=True)
class SelectCharacterSize:
    """``GS ! n``: width multiplier in the high nibble, height in the low nibble."""

    size: int


@dataclass(frozen=True)
class FeedLines:
    count: int


@dataclass(frozen=True)
class Cut:
    mode: int
    feed: int = 0


@dataclass(frozen=True)
class RequestProcessIdResponse:
    """``GS ( H`` function 48: the host asks to get ``d1..d4`` echoed back."""

    d1: int
    d2: int
    d3: int
    d4: int


@dataclass(frozen=True)
class Unknown:
    """A command the decoder skipped over, kept verbatim."""

    data: bytes


Command = Union[
    Text,
    LineFeed,
    CarriageReturn,
    HorizontalTab,
    Initialize,
    SetEmphasis,
    SetUnderline,
    SetReverse,
    SetJustification,
    SelectPrintMode,
    SelectCharacterSize,
    FeedLines,
    Cut,
    RequestProcessIdResponse,
    Unknown,
]


# Number of parameter bytes following ``ESC x`` for fixed-length commands.
_ESC_PARAMETERS: Final[dict[int, int]] = {
    ord("@"): 0,
    ord("2"): 0,
    ord("<"): 0,
    ord("3"): 1,
    ord("!"): 1,
    ord("-"): 1,
    ord("E"): 1,
    ord("G"): 1,
    ord("J"): 1,
    ord("M"): 1,
    ord("R"): 1,
    ord("V"): 1,
    ord("a"): 1,
    ord("c"): 2,
    ord("d"): 1,
    ord("e"): 1,
    ord("r"): 1,
    ord("t"): 1,
    ord("{"): 1,
    ord("$"): 2,
    ord("\\"): 2,
    ord("p"): 3,
}

_GS_PARAMETERS: Final[dict[int, int]] = {
    ord("!"): 1,
    ord("B"): 1,
    ord("H"): 1,
    ord("I"): 1,
    ord("a"): 1,
    ord("b"): 1,
    ord("f"): 1,
    ord("h"): 1,
    ord("r"): 1,
    ord("w"): 1,
    ord("L"): 2,
    ord("W"): 2,
    ord("P"): 2,
}

_CUT_WITH_FEED: Final = frozenset({65, 66, 97, 98, 103, 104})

_Parsed = tuple[Command, int]


def _is_text_byte(byte: int) -> bool:
    return byte >= 0x20 and byte != 0x7F


def _parse_text(buffer: bytearray, start: int) -> _Parsed:
    end = start
    while end < len(buffer) and _is_text_byte(buffer[end]):
        end += 1
    return Text(bytes(buffer[start:end])), end


def _parse_esc(buffer: bytearray, start: int) -> _Parsed | None:
    if start + 1 >= len(buffer):
        return None
    code = buffer[start + 1]
    count = _ESC_PARAMETERS.get(code, 0)
    end = start + 2 + count
    if end > len(buffer):
        return None
    params = buffer[start + 2 : end]
    if code == ord("@"):
        return Initialize(), end
    if code == ord("E"):
        return SetEmphasis(bool(params[0] & 0x01)), end
    if code == ord("-"):
        return SetUnderline(params[0] % 0x30), end
    if code == ord("a"):
        return SetJustification(params[0] % 0x30), end
    if code == ord("d"):
        return FeedLines(params[0]), end
    if code == ord("!"):
        return SelectPrintMode(params[0]), end
    return Unknown(bytes(buffer[start:end])), end


def _parse_gs(buffer: bytearray, start: int) -> _Parsed | None:
    if start + 1 >= len(buffer):
        return None
    code = buffer[start + 1]
    if code == ord("("):
        return _parse_gs_paren(buffer, start)
    if code == ord("V"):
        return _parse_cut(buffer, start)
    if code == ord("v"):
        return _parse_raster(buffer, start)
    if code == ord("k"):
        return _parse_barcode(buffer, start)
    count = _GS_PARAMETERS.get(code, 0)
    end = start + 2 + count
    if end > len(buffer):
        return None
    params = buffer[start + 2 : end]
    if code == ord("!"):
        return SelectCharacterSize(params[0]), end
    if code == ord("B"):
        return SetReverse(bool(params[0] & 0x01)), end
    return Unknown(bytes(buffer[start:end])), end


def _parse_gs_paren(buffer: bytearray, start: int) -> _Parsed | None:
    # GS ( x pL pH <p bytes>
    header_end = start + 5
    if header_end > len(buffer):
        return None
    function = buffer[start + 2]
    length = buffer[start + 3] | (buffer[start + 4] << 8)
    end = header_end + length
    if end > len(buffer):
        return None
    body = buffer[header_end:end]
    if function == ord("H") and length == 6 and body[0] == 0x30 and body[1] == 0x30:
        return RequestProcessIdResponse(body[2], body[3], body[4], body[5]), end
    return Unknown(bytes(buffer[start:end])), end


def _parse_cut(buffer: bytearray, start: int) -> _Parsed | None:
    if start + 2 >= len(buffer):
        return None
    mode = buffer[start + 2]
    if mode in _CUT_WITH_FEED:
        if start + 3 >= len(buffer):
            return None
        return Cut(mode, buffer[start + 3]), start + 4
    return Cut(mode), start + 3


def _parse_raster(buffer: bytearray, start: int) -> _Parsed | None:
    # GS v 0 m xL xH yL yH d1...dk, k = (xL + xH * 256) * (yL + yH * 256)
    header_end = start + 8
    if header_end > len(buffer):
        return None
    width = buffer[start + 4] | (buffer[start + 5] << 8)
    height = buffer[start + 6] | (buffer[start + 7] << 8)
    end = header_end + width * height
    if end > len(buffer):
        return None
    return Unknown(bytes(buffer[start:end])), end


def _parse_barcode(buffer: bytearray, start: int) -> _Parsed | None:
    if start + 2 >= len(buffer):
        return None
    system = buffer[start + 2]
    if system <= 6:
        terminator = buffer.find(b"\x00", start + 3)
        if terminator < 0:
            return None
        end = terminator + 1
    else:
        if start + 3 >= len(buffer):
            return None
        end = start + 4 + buffer[start + 3]
        if end > len(buffer):
            return None
    return Unknown(bytes(buffer[start:end])), end


def _parse_fixed(buffer: bytearray, start: int, size: int) -> _Parsed | None:
    end = start + size
    if end > len(buffer):
        return None
    return Unknown(bytes(buffer[start:end])), end


def _parse_dle(buffer: bytearray, start: int) -> _Parsed | None:
    if start + 1 >= len(buffer):
        return None
    # DLE DC4 fn m t; DLE EOT n and DLE ENQ n otherwise.
    size = 5 if buffer[start + 1] == 0x14 else 3
    return _parse_fixed(buffer, start, size)


def _parse_fs(buffer: bytearray, start: int) -> _Parsed | None:
    if start + 1 >= len(buffer):
        return None
    size = 4 if buffer[start + 1] == ord("p") else 2
    return _parse_fixed(buffer, start, size)


def _parse_command(buffer: bytearray, start: int) -> _Parsed | None:
    byte = buffer[start]
    if _is_text_byte(byte):
        return _parse_text(buffer, start)
    if byte == LF:
        return LineFeed(), start + 1
    if byte == CR:
        return CarriageReturn(), start + 1
    if byte == HT:
        return HorizontalTab(), start + 1
    if byte == ESC:
        return _parse_esc(buffer, start)
    if byte == GS:
        return _parse_gs(buffer, start)
    if byte == DLE:
        return _parse_dle(buffer, start)
    if byte == FS:
        return _parse_fs(buffer, start)
    return Unknown(bytes((byte,))), start + 1


class EscPosDecoder:
    """Stateful ESC/POS decoder; incomplete commands wait for the next chunk."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        """Bytes of a command that has not been completed yet."""

        return bytes(self._buffer)

    def decode(self, data: bytes) -> list[Command]:
        self._buffer.extend(data)
        commands: list[Command] = []
        position = 0
        while position < len(self._buffer):
            parsed = _parse_command(self._buffer, position)
            if parsed is None:
                break
            command, position = parsed
            commands.append(command)
        del self._buffer[:position]
        return commands


__all__ = [
    "CarriageReturn",
    "Command",
    "Cut",
    "EscPosDecoder",
    "FeedLines",
    "HorizontalTab",
    "Initialize",
    "LineFeed",
    "RequestProcessIdResponse",
    "SelectCharacterSize",
    "SelectPrintMode",
    "SetEmphasis",
    "SetJustification",
    "SetReverse",
    "SetUnderline",
    "Text",
    "Unknown",
]
