"""Tests for pi.ink.output -- the screen compositor."""

from __future__ import annotations

import pytest

from pi.ink.output import (
    Clip,
    ClipOperation,
    ClipStackError,
    Frame,
    Output,
    UnclipOperation,
    WriteOperation,
)
from pi.ink.styles import TransformedLine, text_transformer


def prompt(line: str, index: int) -> TransformedLine:
    return TransformedLine(line, is_prompt=True)


# ---------------------------------------------------------------------------
# Basic writes
# ---------------------------------------------------------------------------


class TestWrite:
    def test_simple_write(self) -> None:
        output = Output(2, 1)
        output.write(0, 0, "ab")
        assert output.get() == Frame(output="ab", height=1, line_count=1)

    def test_multi_line_write(self) -> None:
        output = Output(2, 2)
        output.write(0, 0, "ab\ncd")
        assert output.get().output == "ab\ncd"

    def test_later_write_wins(self) -> None:
        output = Output(3, 1)
        output.write(0, 0, "abc")
        output.write(1, 0, "X")
        assert output.get().output == "aXc"

    def test_earlier_write_survives_outside_overlap(self) -> None:
        output = Output(4, 1)
        output.write(1, 0, "XY")
        output.write(0, 0, "ab")
        assert output.get().output == "abY"

    def test_empty_text_is_ignored(self) -> None:
        output = Output(2, 1)
        output.write(0, 0, "")
        assert output.operations == []

    def test_out_of_bounds_is_clipped(self) -> None:
        output = Output(2, 2)
        output.write(-1, 0, "abc")
        output.write(0, 5, "zz")
        output.write(1, -1, "q\nr")
        assert output.get().output == "br"

    def test_rows_are_right_trimmed(self) -> None:
        output = Output(5, 1)
        output.write(0, 0, "a")
        assert output.get().output == "a"

    def test_styled_text(self) -> None:
        output = Output(3, 1)
        output.write(0, 0, "\x1b[31mab\x1b[39m")
        assert output.get().output == "\x1b[31mab\x1b[0m"


class TestFrameShape:
    def test_trailing_blank_row_trimmed(self) -> None:
        output = Output(2, 3)
        output.write(0, 0, "a")
        frame = output.get()
        assert frame.output == "a\n"
        assert frame.height == 3
        assert frame.line_count == 2

    def test_blank_row_in_the_middle_kept(self) -> None:
        output = Output(1, 3)
        output.write(0, 0, "a")
        output.write(0, 2, "b")
        frame = output.get()
        assert frame.output == "a\n\nb"
        assert frame.line_count == 3

    def test_fractional_height_is_empty(self) -> None:
        output = Output(3, 0.5)  # type: ignore[arg-type]
        assert output.height == 0
        assert output.get() == Frame(output="", height=0, line_count=0)

    def test_get_resets_operations(self) -> None:
        output = Output(2, 1)
        output.write(0, 0, "ab")
        output.get()
        assert output.operations == []
        assert output.get() == Frame(output="", height=1, line_count=0)


# ---------------------------------------------------------------------------
# Clipping
# ---------------------------------------------------------------------------


class TestClip:
    def test_single_column_clip(self) -> None:
        output = Output(3, 1)
        output.push_clip(Clip(x1=1, x2=1))
        output.write(0, 0, "abc")
        output.pop_clip()
        assert output.get().output == " b"

    def test_clip_left_edge_only(self) -> None:
        output = Output(4, 1)
        output.push_clip(Clip(x1=2))
        output.write(0, 0, "abcd")
        output.pop_clip()
        assert output.get().output == "  cd"

    def test_vertical_clip(self) -> None:
        output = Output(3, 3)
        output.push_clip(Clip(y1=1, y2=1))
        output.write(0, 0, "a\nb\nc")
        output.pop_clip()
        frame = output.get()
        assert frame.output == "\nb"
        assert frame.line_count == 2

    def test_write_outside_clip_is_rejected(self) -> None:
        output = Output(6, 1)
        output.push_clip(Clip(x1=4))
        output.write(0, 0, "abc")
        output.pop_clip()
        assert output.get().output == ""

    def test_only_innermost_clip_applies(self) -> None:
        output = Output(3, 1)
        output.push_clip(Clip(x1=0, x2=0))
        output.push_clip(Clip(x1=2, x2=2))
        output.write(0, 0, "abc")
        output.pop_clip()
        output.pop_clip()
        assert output.get().output == "  c"

    def test_clip_restored_after_pop(self) -> None:
        output = Output(3, 2)
        output.push_clip(Clip(x1=1, x2=1))
        output.write(0, 0, "abc")
        output.pop_clip()
        output.write(0, 1, "xyz")
        assert output.get().output == " b\nxyz"

    def test_clip_cuts_styled_text(self) -> None:
        output = Output(3, 1)
        output.push_clip(Clip(x1=1))
        output.write(0, 0, "\x1b[31mabc\x1b[39m")
        output.pop_clip()
        assert output.get().output == " \x1b[31mbc\x1b[0m"

    def test_clip_cuts_wide_character(self) -> None:
        output = Output(3, 1)
        output.push_clip(Clip(x1=1))
        output.write(0, 0, "日x")
        output.pop_clip()
        # The visible half of the wide character becomes a space
        assert output.get().output == "  x"

    def test_aliases(self) -> None:
        output = Output(3, 1)
        output.clip(Clip(x1=1, x2=1))
        output.write(0, 0, "abc")
        output.unclip()
        assert output.get().output == " b"


class TestClipStack:
    def test_pop_without_push_raises(self) -> None:
        output = Output(1, 1)
        with pytest.raises(ClipStackError):
            output.pop_clip()

    def test_extra_pop_raises(self) -> None:
        output = Output(1, 1)
        output.push_clip(Clip())
        output.pop_clip()
        with pytest.raises(ClipStackError):
            output.pop_clip()

    def test_unclosed_clip_discarded_at_get(self) -> None:
        output = Output(3, 1)
        output.push_clip(Clip(x1=1, x2=1))
        output.write(0, 0, "abc")
        assert output.get().output == " b"
        output.write(0, 0, "abc")
        assert output.get().output == "abc"

    def test_operations_recorded_in_order(self) -> None:
        output = Output(3, 1)
        clip = Clip(x1=0, x2=1)
        output.push_clip(clip)
        output.write(0, 0, "ab")
        output.pop_clip()
        assert output.operations == [
            ClipOperation(clip),
            WriteOperation(0, 0, "ab", ()),
            UnclipOperation(),
        ]


# ---------------------------------------------------------------------------
# Wide characters
# ---------------------------------------------------------------------------


class TestWideCharacters:
    def test_wide_character_takes_two_columns(self) -> None:
        output = Output(4, 1)
        output.write(0, 0, "日x")
        assert output.get().output == "日x"

    def test_overwriting_trailing_half_clears_leading_half(self) -> None:
        output = Output(4, 1)
        output.write(0, 0, "日x")
        output.write(1, 0, "y")
        assert output.get().output == " yx"

    def test_overwriting_leading_half_clears_trailing_half(self) -> None:
        output = Output(4, 1)
        output.write(1, 0, "日")
        output.write(1, 0, "a")
        assert output.get().output == " a"

    def test_wide_character_on_last_column_is_dropped(self) -> None:
        output = Output(2, 1)
        output.write(0, 0, "a")
        output.write(1, 0, "日")
        assert output.get().output == "a"


# ---------------------------------------------------------------------------
# Transformers and prompts
# ---------------------------------------------------------------------------


class TestTransformers:
    def test_string_transformer(self) -> None:
        output = Output(2, 1)
        output.write(0, 0, "ab", [lambda line, index: line.upper()])
        assert output.get().output == "AB"

    def test_transformers_receive_line_index(self) -> None:
        output = Output(2, 2)
        output.write(0, 0, "a\nb", [lambda line, index: f"{index}{line}"])
        assert output.get().output == "0a\n1b"

    def test_transformers_applied_in_order(self) -> None:
        output = Output(3, 1)
        output.write(
            0,
            0,
            "a",
            [lambda line, index: line + "b", lambda line, index: line + "c"],
        )
        assert output.get().output == "abc"

    def test_index_is_post_clip(self) -> None:
        output = Output(2, 3)
        output.push_clip(Clip(y1=1))
        output.write(0, 0, "a\nb\nc", [lambda line, index: f"{index}{line}"])
        output.pop_clip()
        assert output.get().output == "\n0b\n1c"


class TestPrompts:
    def test_prompt_row_wrapped(self) -> None:
        output = Output(3, 1, start_prompt="<S>", end_prompt="<E>")
        output.write(0, 0, "p", [prompt])
        assert output.get().output == "<S>p<E>"

    def test_boundary_between_rows(self) -> None:
        output = Output(3, 3, start_prompt="<S>", end_prompt="<E>")
        output.write(0, 0, "p", [prompt])
        output.write(0, 1, "q")
        assert output.get().output == "<S>p\n<E>q"

    def test_adjacent_prompt_rows_share_a_region(self) -> None:
        output = Output(3, 3, start_prompt="<S>", end_prompt="<E>")
        output.write(0, 0, "a")
        output.write(0, 1, "b\nc", [text_transformer(prompt=True)])
        assert output.get().output == "a\n<S>b\nc<E>"

    def test_prompt_mark_survives_later_plain_write(self) -> None:
        output = Output(3, 1, start_prompt="<S>", end_prompt="<E>")
        output.write(0, 0, "p", [prompt])
        output.write(1, 0, "q")
        assert output.get().output == "<S>pq<E>"

    def test_non_prompt_transformed_line(self) -> None:
        output = Output(3, 1, start_prompt="<S>", end_prompt="<E>")
        output.write(0, 0, "p", [text_transformer()])
        assert output.get().output == "p"
