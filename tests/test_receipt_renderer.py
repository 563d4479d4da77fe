from __future__ import annotations

import io

from tpsim.escpos import EscPosDecoder
from tpsim.receipt_renderer import TextReceiptRenderer, stream_is_tty


def render(payload: bytes, **options) -> str:
    output = io.StringIO()
    renderer = TextReceiptRenderer(output=output, **options)
    renderer.render(EscPosDecoder().decode(payload))
    renderer.flush_line()
    return output.getvalue()


def test_plain_lines_are_written_on_line_feed() -> None:
    assert render(b"one\ntwo\n") == "one\ntwo\n"


def test_partial_line_waits_until_flushed() -> None:
    output = io.StringIO()
    renderer = TextReceiptRenderer(output=output)

    renderer.render(EscPosDecoder().decode(b"no newline yet"))
    assert output.getvalue() == ""

    renderer.flush_line()
    assert output.getvalue() == "no newline yet\n"


def test_justification_pads_within_paper_width() -> None:
    payload = b"\x1ba\x01abcd\n\x1ba\x02abcd\n\x1ba\x00abcd\n"
    assert render(payload, paper_columns=10) == "   abcd\n      abcd\nabcd\n"


def test_tab_advances_to_next_eight_column_stop() -> None:
    assert render(b"ab\tc\n") == "ab      c\n"


def test_feed_lines_and_cut() -> None:
    payload = b"top\x1bd\x03\x1dV\x00"
    assert render(payload, paper_columns=8) == "top\n\n\n" + "-" * 8 + "\n"


def test_ansi_styles_wrap_spans_when_enabled() -> None:
    payload = b"\x1bE\x01Bold\x1bE\x00 \x1dB\x01Rev\x1dB\x00\n"
    assert render(payload, ansi_style_enabled=True) == (
        "\x1b[1mBold\x1b[0m \x1b[7mRev\x1b[0m\n"
    )


def test_ansi_styles_are_dropped_when_disabled() -> None:
    payload = b"\x1b!\x88Loud\x1b@ quiet\n"
    assert render(payload) == "Loud quiet\n"


def test_print_mode_sets_bold_and_underline_together() -> None:
    payload = b"\x1b!\x88x\x1b!\x00y\n"
    assert render(payload, ansi_style_enabled=True) == "\x1b[1m\x1b[4mx\x1b[0my\n"


def test_text_is_decoded_with_receipt_code_page() -> None:
    # 0x9c is the pound sign in code page 437.
    assert render(b"\x9c5\n") == "£5\n"


def test_stream_is_tty_handles_plain_and_closed_streams() -> None:
    class Interactive(io.StringIO):
        def isatty(self) -> bool:
            return True

    closed = io.StringIO()
    closed.close()

    assert stream_is_tty(Interactive()) is True
    assert stream_is_tty(io.StringIO()) is False
    assert stream_is_tty(closed) is False
    assert stream_is_tty(object()) is False  # type: ignore[arg-type]
