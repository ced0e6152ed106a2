"""Virtual screen compositor.

:class:`Output` records positioned writes and clip-region changes issued by
a tree walk, then replays them onto a grid of :class:`StyledChar` cells and
serialises the grid into one ANSI string.

* Writes are painted in call order; later writes win on overlap.
* Only the innermost clip applies to a write.  Clip bounds are inclusive
  cell coordinates and ``None`` leaves that side unbounded.
* Rows touched by a transformer that returned a prompt-marked
  :class:`TransformedLine` are wrapped in the caller-supplied prompt
  boundary strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union

from pi.ink.ansi import BLANK, StyledChar, styled_chars_from_string, styled_chars_to_string
from pi.ink.styles import Transformer
from pi.ink.utils import slice_by_column, visible_width, widest_line

__all__ = [
    "Clip",
    "ClipOperation",
    "ClipStackError",
    "Frame",
    "Operation",
    "Output",
    "UnclipOperation",
    "WriteOperation",
]


class ClipStackError(RuntimeError):
    """Raised when :meth:`Output.pop_clip` has no matching push."""


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Clip:
    x1: int | None = None
    x2: int | None = None
    y1: int | None = None
    y2: int | None = None


@dataclass(frozen=True)
class WriteOperation:
    x: int
    y: int
    text: str
    transformers: tuple[Transformer, ...] = ()


@dataclass(frozen=True)
class ClipOperation:
    clip: Clip


@dataclass(frozen=True)
class UnclipOperation:
    pass


Operation = Union[WriteOperation, ClipOperation, UnclipOperation]


@dataclass(frozen=True)
class Frame:
    """Result of :meth:`Output.get`.

    ``height`` is the grid row count; ``line_count`` drops the trailing
    all-blank row when one was trimmed from ``output``.
    """

    output: str
    height: int
    line_count: int


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class Output:
    """Collects writes and clips, then composites them with :meth:`get`."""

    def __init__(
        self,
        width: int,
        height: int,
        start_prompt: str = "",
        end_prompt: str = "",
    ) -> None:
        self.width = max(0, int(width))
        # Layout can hand back tiny fractional heights for empty trees
        self.height = int(height) if height >= 1 else 0
        self.start_prompt = start_prompt
        self.end_prompt = end_prompt

        self._operations: list[Operation] = []
        self._clip_depth = 0

        self._char_cache: dict[str, list[StyledChar]] = {}
        self._row_cache: dict[tuple[StyledChar, ...], str] = {}

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    @property
    def operations(self) -> list[Operation]:
        return list(self._operations)

    def write(
        self,
        x: int,
        y: int,
        text: str,
        transformers: Sequence[Transformer] = (),
    ) -> None:
        """Record *text* at ``(x, y)``.  Empty text is ignored."""
        if not text:
            return
        self._operations.append(WriteOperation(x, y, text, tuple(transformers)))

    def push_clip(self, clip: Clip) -> None:
        self._operations.append(ClipOperation(clip))
        self._clip_depth += 1

    def pop_clip(self) -> None:
        if self._clip_depth == 0:
            raise ClipStackError("pop_clip() called without a matching push_clip()")
        self._operations.append(UnclipOperation())
        self._clip_depth -= 1

    clip = push_clip
    unclip = pop_clip

    # ------------------------------------------------------------------
    # Compositing
    # ------------------------------------------------------------------

    def get(self) -> Frame:
        """Composite the recorded operations and reset them."""
        grid: list[list[StyledChar]] = [
            [BLANK] * self.width for _ in range(self.height)
        ]
        prompt_rows = [False] * self.height
        clips: list[Clip] = []

        for operation in self._operations:
            if isinstance(operation, ClipOperation):
                clips.append(operation.clip)
            elif isinstance(operation, UnclipOperation):
                clips.pop()
            else:
                self._apply_write(operation, clips[-1] if clips else None, grid, prompt_rows)

        self._operations = []
        self._clip_depth = 0

        return self._serialize(grid, prompt_rows)

    def _apply_write(
        self,
        operation: WriteOperation,
        clip: Clip | None,
        grid: list[list[StyledChar]],
        prompt_rows: list[bool],
    ) -> None:
        x = operation.x
        y = operation.y
        lines = operation.text.split("\n")

        if clip is not None:
            clipped = _clip_lines(lines, x, y, operation.text, clip)
            if clipped is None:
                return
            lines, x, y = clipped

        for index, line in enumerate(lines):
            row_y = y + index
            if row_y < 0 or row_y >= self.height:
                continue

            for transformer in operation.transformers:
                result = transformer(line, index)
                if isinstance(result, str):
                    line = result
                else:
                    if result.is_prompt:
                        prompt_rows[row_y] = True
                    line = result.line

            self._paint_line(grid[row_y], x, self._styled_chars(line))

    def _styled_chars(self, line: str) -> list[StyledChar]:
        cells = self._char_cache.get(line)
        if cells is None:
            cells = styled_chars_from_string(line)
            self._char_cache[line] = cells
        return cells

    def _paint_line(self, row: list[StyledChar], x: int, cells: list[StyledChar]) -> None:
        col = x
        for cell in cells:
            if not cell.full_width:
                _put(row, col, cell)
                col += 1
                continue

            if col == -1 or col == len(row) - 1:
                # Only one half is on screen
                _put(row, col + 1 if col == -1 else col, BLANK)
            elif 0 <= col < len(row):
                _put(row, col, cell)
                tail = col + 1
                if row[tail].full_width and tail + 1 < len(row) and row[tail + 1].value == "":
                    row[tail + 1] = BLANK
                row[tail] = StyledChar("", False, cell.styles)
            col += 2

    def _serialize(self, grid: list[list[StyledChar]], prompt_rows: list[bool]) -> Frame:
        rows = grid
        if rows and all(cell.value == " " for cell in rows[-1]):
            rows = rows[:-1]

        parts: list[str] = []
        in_prompt = False

        for i, row in enumerate(rows):
            if i > 0:
                parts.append("\n")

            if prompt_rows[i] and not in_prompt:
                parts.append(self.start_prompt)
                in_prompt = True
            elif in_prompt and not prompt_rows[i]:
                parts.append(self.end_prompt)
                in_prompt = False

            parts.append(self._row_string(row))

        if in_prompt:
            parts.append(self.end_prompt)

        return Frame(output="".join(parts), height=len(grid), line_count=len(rows))

    def _row_string(self, row: list[StyledChar]) -> str:
        key = tuple(row)
        text = self._row_cache.get(key)
        if text is None:
            text = styled_chars_to_string(key).rstrip()
            self._row_cache[key] = text
        return text


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _put(row: list[StyledChar], col: int, cell: StyledChar) -> None:
    """Paint one cell, keeping double-width pairs whole."""
    if col < 0 or col >= len(row):
        return

    existing = row[col]
    # Overwriting the trailing half of a wide cell orphans its leading half
    if existing.value == "" and col > 0 and row[col - 1].full_width:
        row[col - 1] = BLANK
    # Overwriting the leading half orphans the trailing half
    if existing.full_width and col + 1 < len(row) and row[col + 1].value == "":
        row[col + 1] = BLANK

    row[col] = cell


def _clip_lines(
    lines: list[str],
    x: int,
    y: int,
    text: str,
    clip: Clip,
) -> tuple[list[str], int, int] | None:
    """Cut *lines* to *clip*.

    Returns ``(lines, x, y)`` with the origin moved to the clip edge, or
    ``None`` when the write lies entirely outside the clip.
    """
    clip_horizontally = clip.x1 is not None or clip.x2 is not None
    clip_vertically = clip.y1 is not None or clip.y2 is not None

    if clip_horizontally:
        width = widest_line(text)
        if clip.x1 is not None and x + width <= clip.x1:
            return None
        if clip.x2 is not None and x > clip.x2:
            return None

    if clip_vertically:
        height = len(lines)
        if clip.y1 is not None and y + height <= clip.y1:
            return None
        if clip.y2 is not None and y > clip.y2:
            return None

    if clip_horizontally:
        start = clip.x1 - x if clip.x1 is not None and x < clip.x1 else 0
        sliced: list[str] = []
        for line in lines:
            width = visible_width(line)
            end = width
            if clip.x2 is not None and x + width > clip.x2 + 1:
                end = clip.x2 - x + 1
            sliced.append(slice_by_column(line, start, end))
        lines = sliced
        if clip.x1 is not None and x < clip.x1:
            x = clip.x1

    if clip_vertically:
        height = len(lines)
        start = clip.y1 - y if clip.y1 is not None and y < clip.y1 else 0
        end = height
        if clip.y2 is not None and y + height > clip.y2 + 1:
            end = clip.y2 - y + 1
        lines = lines[start:end]
        if clip.y1 is not None and y < clip.y1:
            y = clip.y1

    return lines, x, y
