"""Line-count based redraw of the dynamic region.

:class:`LogUpdate` remembers how many lines it last produced and returns the
escape sequences needed to erase them before the next frame.  It never
writes anything itself; the caller decides how to batch the result.
"""

from __future__ import annotations

ERASE_LINE = "\x1b[2K"
CURSOR_UP = "\x1b[1A"
CURSOR_LEFT = "\x1b[G"


def erase_lines(count: int) -> str:
    """Erase *count* lines upward from the cursor, ending at column 0."""
    if count <= 0:
        return ""
    parts: list[str] = []
    for i in range(count):
        parts.append(ERASE_LINE)
        if i < count - 1:
            parts.append(CURSOR_UP)
    parts.append(CURSOR_LEFT)
    return "".join(parts)


class LogUpdate:
    """Tracks the previously written frame for cursor-relative redraws."""

    def __init__(self) -> None:
        self._previous_output = ""
        self._previous_line_count = 0

    @property
    def line_count(self) -> int:
        return self._previous_line_count

    def update(self, text: str) -> str:
        """Return the sequence that replaces the last frame with *text*.

        Returns ``""`` when *text* is what was written last.
        """
        output = text + "\n"
        if output == self._previous_output:
            return ""

        erase = erase_lines(self._previous_line_count)
        self._previous_output = output
        self._previous_line_count = len(output.split("\n"))
        return erase + output

    def clear(self) -> str:
        """Return the sequence erasing the last frame and forget it."""
        erase = erase_lines(self._previous_line_count)
        self._previous_output = ""
        self._previous_line_count = 0
        return erase

    def done(self) -> None:
        """Leave the last frame on screen and start over below it."""
        self._previous_output = ""
        self._previous_line_count = 0

    def sync(self, text: str) -> None:
        """Adopt *text*, written by someone else, as the last frame."""
        self._previous_output = text
        self._previous_line_count = len(text.split("\n"))
