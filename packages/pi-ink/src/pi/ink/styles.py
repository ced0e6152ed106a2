"""Line transformers: ANSI colour/weight wrapping and prompt-line marking.

A transformer receives one line of a write plus its index within the
(clipped) write and returns either a plain string or a
:class:`TransformedLine`.  Only a ``TransformedLine`` can mark its row as
part of a prompt.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Literal, Union

__all__ = [
    "TransformedLine",
    "TransformResult",
    "Transformer",
    "colorize",
    "style",
    "text_transformer",
]


@dataclass(frozen=True)
class TransformedLine:
    """Tagged transformer result: the new line text plus its prompt flag."""

    line: str
    is_prompt: bool = False


TransformResult = Union[str, TransformedLine]
Transformer = Callable[[str, int], TransformResult]

# ---------------------------------------------------------------------------
# SGR open/close pairs
# ---------------------------------------------------------------------------

_MODIFIERS: dict[str, tuple[int, int]] = {
    "bold": (1, 22),
    "dim": (2, 22),
    "italic": (3, 23),
    "underline": (4, 24),
    "inverse": (7, 27),
    "strikethrough": (9, 29),
}

_FOREGROUND: dict[str, int] = {
    "black": 30,
    "red": 31,
    "green": 32,
    "yellow": 33,
    "blue": 34,
    "magenta": 35,
    "cyan": 36,
    "white": 37,
    "gray": 90,
    "grey": 90,
    "blackBright": 90,
    "redBright": 91,
    "greenBright": 92,
    "yellowBright": 93,
    "blueBright": 94,
    "magentaBright": 95,
    "cyanBright": 96,
    "whiteBright": 97,
}

_FG_CLOSE = 39
_BG_CLOSE = 49

_HEX_RE = re.compile(r"^#([0-9a-fA-F]{6}|[0-9a-fA-F]{3})$")
_RGB_RE = re.compile(r"^rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)$")
_ANSI256_RE = re.compile(r"^ansi256\(\s*(\d{1,3})\s*\)$")


def _wrap(text: str, open_code: str, close_code: str) -> str:
    # Re-open after any nested close so inner styling doesn't end ours early
    if close_code in text:
        text = text.replace(close_code, close_code + open_code)
    return f"{open_code}{text}{close_code}"


def style(text: str, modifier: str) -> str:
    """Wrap *text* in one of ``bold``, ``dim``, ``italic``, ``underline``,
    ``inverse`` or ``strikethrough``."""
    open_n, close_n = _MODIFIERS[modifier]
    return _wrap(text, f"\x1b[{open_n}m", f"\x1b[{close_n}m")


def _color_params(color: str) -> str | None:
    if color in _FOREGROUND:
        return str(_FOREGROUND[color])

    match = _HEX_RE.match(color)
    if match:
        digits = match.group(1)
        if len(digits) == 3:
            digits = "".join(d * 2 for d in digits)
        r, g, b = (int(digits[i : i + 2], 16) for i in (0, 2, 4))
        return f"38;2;{r};{g};{b}"

    match = _RGB_RE.match(color)
    if match:
        r, g, b = (min(int(v), 255) for v in match.groups())
        return f"38;2;{r};{g};{b}"

    match = _ANSI256_RE.match(color)
    if match:
        return f"38;5;{min(int(match.group(1)), 255)}"

    return None


def colorize(
    text: str,
    color: str | None,
    layer: Literal["foreground", "background"] = "foreground",
) -> str:
    """Colour *text* with a named colour, ``#rrggbb``, ``rgb(r, g, b)`` or
    ``ansi256(n)``.  Unknown colours leave the text untouched."""
    if not color:
        return text

    params = _color_params(color)
    if params is None:
        return text

    if layer == "background":
        if params.startswith("38;"):
            params = "48;" + params[3:]
        else:
            params = str(int(params) + 10)
        return _wrap(text, f"\x1b[{params}m", f"\x1b[{_BG_CLOSE}m")

    return _wrap(text, f"\x1b[{params}m", f"\x1b[{_FG_CLOSE}m")


def text_transformer(
    *,
    color: str | None = None,
    background_color: str | None = None,
    dim: bool = False,
    bold: bool = False,
    italic: bool = False,
    underline: bool = False,
    strikethrough: bool = False,
    inverse: bool = False,
    prompt: bool = False,
) -> Transformer:
    """Build a transformer applying text styling and prompt marking."""

    def transform(line: str, index: int) -> TransformResult:
        if dim:
            line = style(line, "dim")
        if color:
            line = colorize(line, color, "foreground")
        if background_color:
            line = colorize(line, background_color, "background")
        if bold:
            line = style(line, "bold")
        if italic:
            line = style(line, "italic")
        if underline:
            line = style(line, "underline")
        if strikethrough:
            line = style(line, "strikethrough")
        if inverse:
            line = style(line, "inverse")
        return TransformedLine(line=line, is_prompt=prompt)

    return transform
