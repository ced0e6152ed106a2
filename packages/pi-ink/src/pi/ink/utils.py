"""ANSI-aware text measurement and slicing.

Everything here treats escape sequences as zero-width and measures the
rest per grapheme cluster, so styled text can be positioned and cut by
terminal column.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterator

import grapheme
import wcwidth as _wcwidth

ESC = "\x1b"
SGR_RESET = "\x1b[0m"

# CSI, then string sequences (OSC, APC, DCS) closed by BEL or ST
_CODE_PATTERN = r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[\]_P][^\x07\x1b]*(?:\x07|\x1b\\)"

_CODE_RE = re.compile(_CODE_PATTERN)
_SEGMENT_RE = re.compile(rf"(?P<code>{_CODE_PATTERN})|(?P<esc>\x1b)|(?P<text>[^\x1b]+)")

# Width of measured non-ASCII strings, dropped wholesale when full
_width_cache: dict[str, int] = {}
_WIDTH_CACHE_MAX = 512

# Codepoints that make any cluster containing them an emoji
_EMOJI_JOINERS = frozenset({0xFE0F, 0x200D})
_EMOJI_RANGES = ((0x1F1E6, 0x1F1FF), (0x1F3FB, 0x1F3FF))


def _is_control(cp: int) -> bool:
    return cp < 0x20 or 0x7F <= cp <= 0x9F


def grapheme_width(g: str) -> int:
    """Terminal columns taken by the grapheme cluster *g* (0, 1 or 2)."""
    if not g:
        return 0

    first = ord(g[0])
    if len(g) > 1:
        if any(
            ord(ch) in _EMOJI_JOINERS or any(lo <= ord(ch) <= hi for lo, hi in _EMOJI_RANGES)
            for ch in g
        ):
            return 2
        # Pictographs and dingbats render wide when clustered
        if first >= 0x1F000 or 0x2600 <= first <= 0x27BF:
            return 2
        category = unicodedata.category(g[0])
        if category.startswith("M") or category == "Cf":
            return 0

    if _is_control(first):
        return 0
    return max(_wcwidth.wcwidth(g[0]), 0)


def strip_ansi(text: str) -> str:
    """Remove every recognised escape sequence from *text*."""
    return _CODE_RE.sub("", text)


def visible_width(text: str) -> int:
    """Columns *text* occupies once escape sequences are removed."""
    plain = strip_ansi(text) if ESC in text else text
    if not plain:
        return 0
    if plain.isascii() and plain.isprintable():
        return len(plain)

    width = _width_cache.get(plain)
    if width is None:
        width = sum(grapheme_width(g) for g in grapheme.graphemes(plain))
        if len(_width_cache) >= _WIDTH_CACHE_MAX:
            _width_cache.clear()
        _width_cache[plain] = width
    return width


def widest_line(text: str) -> int:
    return max(visible_width(line) for line in text.split("\n"))


def extract_ansi_code(text: str, pos: int) -> tuple[str, int] | None:
    """Return ``(code, length)`` for the complete escape sequence at *pos*.

    ``None`` when *pos* is not an ``ESC`` or the sequence is unfinished.
    """
    match = _CODE_RE.match(text, pos)
    if match is None:
        return None
    return match.group(0), match.end() - pos


def iter_segments(text: str) -> Iterator[tuple[bool, str]]:
    """Split *text* into ``(is_code, token)`` pairs.

    Tokens are complete escape sequences or grapheme clusters; an ``ESC``
    that starts no complete sequence comes out as its own cluster.
    """
    for match in _SEGMENT_RE.finditer(text):
        if match.lastgroup == "text":
            for g in grapheme.graphemes(match.group(0)):
                yield False, g
        else:
            yield match.lastgroup == "code", match.group(0)


# ---------------------------------------------------------------------------
# SGR state
# ---------------------------------------------------------------------------

# Attribute slots in the order their codes are re-emitted
_SLOTS = (
    "bold",
    "dim",
    "italic",
    "underline",
    "blink",
    "inverse",
    "hidden",
    "strikethrough",
    "fg",
    "bg",
)

_ENABLE: dict[int, str] = {
    1: "bold",
    2: "dim",
    3: "italic",
    4: "underline",
    5: "blink",
    7: "inverse",
    8: "hidden",
    9: "strikethrough",
}

_DISABLE: dict[int, tuple[str, ...]] = {
    22: ("bold", "dim"),
    23: ("italic",),
    24: ("underline",),
    25: ("blink",),
    27: ("inverse",),
    28: ("hidden",),
    29: ("strikethrough",),
    39: ("fg",),
    49: ("bg",),
}


def _color_slot(value: int) -> str | None:
    if 30 <= value <= 37 or 90 <= value <= 97:
        return "fg"
    if 40 <= value <= 47 or 100 <= value <= 107:
        return "bg"
    return None


class AnsiCodeTracker:
    """Active SGR attributes, fed one escape sequence at a time.

    Each attribute slot holds the code that switched it on, so the state
    can be replayed onto a cut line or attached to a cell.
    """

    def __init__(self) -> None:
        self._active: dict[str, str] = {}

    def process(self, code: str) -> None:
        """Apply an SGR sequence such as ``\\x1b[1;31m``; ignore anything else."""
        if not code.startswith("\x1b[") or not code.endswith("m"):
            return

        params = code[2:-1].split(";")
        i = 0
        while i < len(params):
            param = params[i]
            i += 1
            if param and not param.isdigit():
                continue
            value = int(param or 0)

            if value == 0:
                self.clear()
            elif value in _ENABLE:
                self._active[_ENABLE[value]] = f"\x1b[{value}m"
            elif value in _DISABLE:
                for slot in _DISABLE[value]:
                    self._active.pop(slot, None)
            elif value in (38, 48):
                consumed = _extended_color_length(params, i)
                if consumed > 1:
                    slot = "fg" if value == 38 else "bg"
                    self._active[slot] = "\x1b[" + ";".join(params[i - 1 : i + consumed]) + "m"
                i += consumed
            else:
                slot = _color_slot(value)
                if slot is not None:
                    self._active[slot] = f"\x1b[{value}m"

    def clear(self) -> None:
        self._active.clear()

    def snapshot(self) -> tuple[str, ...]:
        """Active codes in a stable order."""
        return tuple(self._active[slot] for slot in _SLOTS if slot in self._active)

    def get_active_codes(self) -> str:
        return "".join(self.snapshot())

    def has_active_codes(self) -> bool:
        return bool(self._active)


def _extended_color_length(params: list[str], i: int) -> int:
    """Parameters after a 38/48 at ``params[i - 1]`` forming a colour.

    ``5;N`` and ``2;R;G;B`` are colours; an unknown mode skips only itself.
    """
    if i >= len(params):
        return 0
    mode = params[i]
    if mode == "5" and i + 1 < len(params):
        return 2
    if mode == "2" and i + 3 < len(params):
        return 4
    return 1


# ---------------------------------------------------------------------------
# Column slicing
# ---------------------------------------------------------------------------


def slice_by_column(line: str, start_col: int, end_col: int | None = None) -> str:
    """Cut the visible columns ``[start_col, end_col)`` out of *line*.

    Styling active at *start_col* is re-opened at the front and closed with
    a reset at the end.  The covered part of a wide character that
    straddles either edge becomes spaces, so the slice keeps its width.
    """
    if end_col is not None and end_col <= start_col:
        return ""

    tracker = AnsiCodeTracker()
    # None until the first visible column of the slice is reached
    out: list[str] | None = None
    col = 0

    for is_code, token in iter_segments(line):
        if is_code:
            tracker.process(token)
            if out is not None:
                out.append(token)
            continue

        if end_col is not None and col >= end_col:
            break

        next_col = col + grapheme_width(token)
        if col < start_col and next_col <= start_col:
            col = next_col
            continue

        if out is None:
            out = [tracker.get_active_codes()]

        visible_to = next_col if end_col is None else min(next_col, end_col)
        if col < start_col or next_col > visible_to:
            out.append(" " * (visible_to - max(col, start_col)))
        else:
            out.append(token)

        if next_col > visible_to:
            break
        col = next_col

    if out is None:
        return ""
    if tracker.has_active_codes():
        out.append(SGR_RESET)
    return "".join(out)
