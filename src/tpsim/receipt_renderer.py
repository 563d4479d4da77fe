"""Render decoded ESC/POS commands as receipt text on a terminal stream."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import IO, Iterable

from . import escpos


DEFAULT_PAPER_COLUMNS = 48
CODE_PAGE = "cp437"

_ANSI_RESET = "\x1b[0m"
_ANSI_BOLD = "\x1b[1m"
_ANSI_UNDERLINE = "\x1b[4m"
_ANSI_REVERSE = "\x1b[7m"

_MODE_EMPHASIS = 0x08
_MODE_UNDERLINE = 0x80


def stream_is_tty(stream: IO[str]) -> bool:
    """Return whether ``stream`` is an interactive terminal."""

    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty()) if callable(isatty) else False
    except ValueError:
        return False


@dataclass(slots=True)
class _PrintMode:
    emphasis: bool = False
    underline: bool = False
    reverse: bool = False
    alignment: int = 0

    def ansi_prefix(self) -> str:
        codes = []
        if self.emphasis:
            codes.append(_ANSI_BOLD)
        if self.underline:
            codes.append(_ANSI_UNDERLINE)
        if self.reverse:
            codes.append(_ANSI_REVERSE)
        return "".join(codes)


@dataclass(slots=True)
class _Span:
    text: str
    style: str


@dataclass
class TextReceiptRenderer:
    """Turn command batches into lines of receipt text.

    Text is collected into the current line until a line feed, then written
    with the active justification applied inside ``paper_columns``. Sixel
    support and cell geometry are kept for graphics-capable renderers; this
    renderer only draws text.
    """

    ansi_style_enabled: bool = False
    sixel_enabled: bool = False
    cell_pixel_width: int | None = None
    display_scale: int = 1
    output: IO[str] = field(default_factory=lambda: sys.stdout)
    paper_columns: int = DEFAULT_PAPER_COLUMNS

    _mode: _PrintMode = field(init=False, default_factory=_PrintMode, repr=False)
    _line: list[_Span] = field(init=False, default_factory=list, repr=False)

    def render(self, commands: Iterable[escpos.Command]) -> None:
        for command in commands:
            self._apply(command)
        self.output.flush()

    def flush_line(self) -> None:
        """Write any partially collected line."""

        if self._line:
            self._emit_line()
            self.output.flush()

    # Command handling ---------------------------------------------------

    def _apply(self, command: escpos.Command) -> None:
        if isinstance(command, escpos.Text):
            self._append(command.data.decode(CODE_PAGE, errors="replace"))
        elif isinstance(command, escpos.HorizontalTab):
            self._append(" " * (8 - (self._line_length() % 8)))
        elif isinstance(command, escpos.LineFeed):
            self._emit_line()
        elif isinstance(command, escpos.FeedLines):
            self._emit_line()
            for _ in range(max(0, command.count - 1)):
                self._write("\n")
        elif isinstance(command, escpos.Initialize):
            self._mode = _PrintMode()
        elif isinstance(command, escpos.SetEmphasis):
            self._mode.emphasis = command.enabled
        elif isinstance(command, escpos.SetUnderline):
            self._mode.underline = command.thickness > 0
        elif isinstance(command, escpos.SetReverse):
            self._mode.reverse = command.enabled
        elif isinstance(command, escpos.SetJustification):
            self._mode.alignment = command.alignment if command.alignment in (0, 1, 2) else 0
        elif isinstance(command, escpos.SelectPrintMode):
            self._mode.emphasis = bool(command.mode & _MODE_EMPHASIS)
            self._mode.underline = bool(command.mode & _MODE_UNDERLINE)
        elif isinstance(command, escpos.Cut):
            if self._line:
                self._emit_line()
            self._write("-" * self.paper_columns + "\n")
        # CR, size changes and unknown commands do not change text output.

    def _append(self, text: str) -> None:
        if not text:
            return
        style = self._mode.ansi_prefix() if self.ansi_style_enabled else ""
        self._line.append(_Span(text, style))

    def _line_length(self) -> int:
        return sum(len(span.text) for span in self._line)

    def _emit_line(self) -> None:
        length = self._line_length()
        padding = 0
        if length < self.paper_columns:
            free = self.paper_columns - length
            if self._mode.alignment == 1:
                padding = free // 2
            elif self._mode.alignment == 2:
                padding = free
        parts = [" " * padding]
        for span in self._line:
            if span.style:
                parts.append(f"{span.style}{span.text}{_ANSI_RESET}")
            else:
                parts.append(span.text)
        parts.append("\n")
        self._line.clear()
        self._write("".join(parts))

    def _write(self, text: str) -> None:
        self.output.write(text)


__all__ = ["CODE_PAGE", "DEFAULT_PAPER_COLUMNS", "TextReceiptRenderer", "stream_is_tty"]
