"""Styled terminal cells.

Converts an ANSI-styled string into a list of :class:`StyledChar` cells and
back.  SGR state is tracked with :class:`~pi.ink.utils.AnsiCodeTracker` and
attached to every cell; any other escape sequence (hyperlinks, markers) is
carried verbatim in the value of the cell that follows it.
"""

from __future__ import annotations

from dataclasses import dataclass

from pi.ink.utils import SGR_RESET, AnsiCodeTracker, grapheme_width, iter_segments

__all__ = [
    "BLANK",
    "StyledChar",
    "styled_chars_from_string",
    "styled_chars_to_string",
]


@dataclass(frozen=True)
class StyledChar:
    """One terminal cell.

    ``value`` is a grapheme cluster (``""`` for the trailing half of a
    double-width cell), ``styles`` the SGR codes active for it.
    """

    value: str
    full_width: bool = False
    styles: tuple[str, ...] = ()


BLANK = StyledChar(" ")


def styled_chars_from_string(text: str) -> list[StyledChar]:
    """Decode *text* into cells, one per grapheme cluster.

    Zero-width clusters (combining marks, stray controls) are folded into
    the preceding cell so the cell count always equals the display width,
    counting double-width cells once.
    """
    tracker = AnsiCodeTracker()
    cells: list[StyledChar] = []
    pending = ""

    for is_code, token in iter_segments(text):
        if is_code:
            if token.startswith("\x1b[") and token.endswith("m"):
                tracker.process(token)
            else:
                pending += token
            continue

        width = grapheme_width(token)
        if width == 0:
            if cells:
                last = cells[-1]
                cells[-1] = StyledChar(last.value + pending + token, last.full_width, last.styles)
                pending = ""
            continue

        cells.append(StyledChar(pending + token, width > 1, tracker.snapshot()))
        pending = ""

    if pending and cells:
        last = cells[-1]
        cells[-1] = StyledChar(last.value + pending, last.full_width, last.styles)

    return cells


def styled_chars_to_string(cells: list[StyledChar] | tuple[StyledChar, ...]) -> str:
    """Serialise *cells*, emitting SGR codes only where the style changes."""
    parts: list[str] = []
    current: tuple[str, ...] = ()

    for cell in cells:
        if cell.styles != current:
            if any(code not in cell.styles for code in current):
                parts.append(SGR_RESET)
                parts.extend(cell.styles)
            else:
                parts.extend(code for code in cell.styles if code not in current)
            current = cell.styles
        parts.append(cell.value)

    if current:
        parts.append(SGR_RESET)

    return "".join(parts)
