"""Keypress decoding for raw terminal input.

Turns chunks read from a raw-mode terminal into :class:`ParsedKey` events.
Escape sequences may be split across chunks in any way; the decoder carries
the unfinished tail in :class:`KeyParseState` until the next chunk (or an
explicit flush) completes it.  Bracketed pastes are delivered as a single
event with ``is_pasted`` set.

The decoder is a pure function of ``(state, chunk)``; scheduling the flush
after an idle timeout is the caller's job (see
:class:`pi.ink.stdin_buffer.StdinBuffer`).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

__all__ = [
    "INITIAL_STATE",
    "KEY_NAMES",
    "NON_ALPHANUMERIC_KEYS",
    "PASTE_BEGIN",
    "PASTE_END",
    "KeyParseState",
    "ParseMode",
    "ParsedKey",
    "input_to_string",
    "parse_keypress",
    "parse_keypresses",
]

ESC = "\x1b"
PASTE_BEGIN = "\x1b[200~"
PASTE_END = "\x1b[201~"

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class ParseMode(Enum):
    NORMAL = "NORMAL"
    IN_PASTE = "IN_PASTE"


@dataclass(frozen=True)
class KeyParseState:
    """Decoder state carried between calls.

    ``incomplete`` holds input that has not produced an event yet: a
    trailing partial escape sequence in ``NORMAL`` mode, or the paste body
    collected so far in ``IN_PASTE`` mode.
    """

    mode: ParseMode = ParseMode.NORMAL
    incomplete: str = ""


INITIAL_STATE = KeyParseState()


@dataclass(frozen=True)
class ParsedKey:
    """One logical keypress or pasted block.

    ``sequence`` and ``raw`` are exactly the input consumed for this event.
    """

    name: str = ""
    fn: bool = False
    ctrl: bool = False
    meta: bool = False
    shift: bool = False
    option: bool = False
    sequence: str = ""
    raw: str = ""
    code: str | None = None
    is_pasted: bool = False


# ---------------------------------------------------------------------------
# Sequence patterns
# ---------------------------------------------------------------------------

_META_KEY_CODE_RE = re.compile(r"^\x1b([a-zA-Z0-9])$")
_FN_KEY_RE = re.compile(
    r"^(?:\x1b+)(O|N|\[|\[\[)(?:(\d+)(?:;(\d+))?([~^$])|(?:1;)?(\d+)?([a-zA-Z]))"
)

# Longest complete sequences first; the bare end-of-string alternative
# matches only when no escape sequence remains.
_ANY_ESCAPE_RE = re.compile(
    r"(?s)(.*?)("
    + "|".join(
        f"(?:{part})"
        for part in (
            r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)",  # OSC
            r"\x1bP[^\x1b]*\x1b\\",  # DCS
            r"\x1b\x1b?\[\[?[0-9]*(?:;[0-9]*)*[A-Za-z~$^]",  # CSI
            r"\x1b\x1b?[ON][A-Za-z]",  # SS3
            r"\x1b[\x00-\x7f]",  # meta + character, doubled ESC
            r"\Z",
        )
    )
    + ")"
)

# Sequences that more input could still complete
_PARTIAL_ESCAPE_RE = re.compile(
    "|".join(
        (
            # A trailing ESC may be the first half of the ST terminator
            r"\x1b\][^\x07\x1b]*\x1b?",  # OSC
            r"\x1bP[^\x1b]*\x1b?",  # DCS
            r"\x1b\x1b?\[\[?[0-9]*(?:;[0-9]*)*",  # CSI
            r"\x1b\x1b?[ON]",  # SS3
            r"\x1b\x1b?",
        )
    )
)

# Plain text splits into one key per character; an ESC that did not start
# a recognised sequence keeps the single character that follows it.
_PLAIN_KEY_RE = re.compile(r"(?s)\x1b.?|.")

# ---------------------------------------------------------------------------
# Function key table
# ---------------------------------------------------------------------------

KEY_NAMES: dict[str, str] = {
    # xterm/gnome ESC O letter
    "OP": "f1",
    "OQ": "f2",
    "OR": "f3",
    "OS": "f4",
    # xterm/rxvt ESC [ number ~
    "[11~": "f1",
    "[12~": "f2",
    "[13~": "f3",
    "[14~": "f4",
    # Cygwin / libuv
    "[[A": "f1",
    "[[B": "f2",
    "[[C": "f3",
    "[[D": "f4",
    "[[E": "f5",
    # common
    "[15~": "f5",
    "[17~": "f6",
    "[18~": "f7",
    "[19~": "f8",
    "[20~": "f9",
    "[21~": "f10",
    "[23~": "f11",
    "[24~": "f12",
    # xterm ESC [ letter
    "[A": "up",
    "[B": "down",
    "[C": "right",
    "[D": "left",
    "[E": "clear",
    "[F": "end",
    "[H": "home",
    # xterm/gnome ESC O letter
    "OA": "up",
    "OB": "down",
    "OC": "right",
    "OD": "left",
    "OE": "clear",
    "OF": "end",
    "OH": "home",
    # xterm/rxvt ESC [ number ~
    "[1~": "home",
    "[2~": "insert",
    "[3~": "delete",
    "[4~": "end",
    "[5~": "pageup",
    "[6~": "pagedown",
    # putty
    "[[5~": "pageup",
    "[[6~": "pagedown",
    # rxvt
    "[7~": "home",
    "[8~": "end",
    # rxvt keys with modifiers
    "[a": "up",
    "[b": "down",
    "[c": "right",
    "[d": "left",
    "[e": "clear",
    "[2$": "insert",
    "[3$": "delete",
    "[5$": "pageup",
    "[6$": "pagedown",
    "[7$": "home",
    "[8$": "end",
    "Oa": "up",
    "Ob": "down",
    "Oc": "right",
    "Od": "left",
    "Oe": "clear",
    "[2^": "insert",
    "[3^": "delete",
    "[5^": "pageup",
    "[6^": "pagedown",
    "[7^": "home",
    "[8^": "end",
    # misc.
    "[Z": "tab",
}

NON_ALPHANUMERIC_KEYS: list[str] = [*KEY_NAMES.values(), "backspace"]

_SHIFT_CODES: frozenset[str] = frozenset(
    {"[a", "[b", "[c", "[d", "[e", "[2$", "[3$", "[5$", "[6$", "[7$", "[8$", "[Z"}
)

_CTRL_CODES: frozenset[str] = frozenset(
    {"Oa", "Ob", "Oc", "Od", "Oe", "[2^", "[3^", "[5^", "[6^", "[7^", "[8^"}
)

# Full sequences whose meaning is fixed regardless of the generic rules:
# sequence -> (name, ctrl, meta)
_SEQUENCE_OVERRIDES: dict[str, tuple[str, bool, bool]] = {
    "\x1b[1~": ("home", False, False),
    "\x1b[4~": ("end", False, False),
    "\x1b[5~": ("pageup", False, False),
    "\x1b[6~": ("pagedown", False, False),
    "\x1b[1;5D": ("left", True, False),
    "\x1b[1;5C": ("right", True, False),
}

# iTerm2 "natural text editing" word movement
_WORD_MOTION: dict[str, str] = {
    "\x1bb": "left",
    "\x1bf": "right",
}

# ---------------------------------------------------------------------------
# Single-sequence classification
# ---------------------------------------------------------------------------


def parse_keypress(s: str) -> ParsedKey:  # noqa: C901
    """Classify one consumed sequence.

    Never raises: input that matches no rule comes back with a blank
    ``name`` and ``sequence``/``raw`` intact.
    """
    name = ""
    ctrl = meta = shift = option = False
    code: str | None = None

    if s == "\r":
        name = "return"
    elif s == "\n":
        name = "enter"
    elif s == "\t":
        name = "tab"
    elif s in ("\b", "\x1b\b", "\x7f", "\x1b\x7f"):
        name = "backspace"
        meta = s.startswith(ESC)
    elif s in (ESC, "\x1b\x1b"):
        name = "escape"
        meta = len(s) == 2
    elif s in (" ", "\x1b "):
        name = "space"
        meta = len(s) == 2
    elif len(s) == 1 and s <= "\x1a":
        name = chr(ord(s) + ord("a") - 1)
        ctrl = True
    elif len(s) == 1 and "0" <= s <= "9":
        name = "number"
    elif len(s) == 1 and "a" <= s <= "z":
        name = s
    elif len(s) == 1 and "A" <= s <= "Z":
        name = s.lower()
        shift = True
    elif (match := _META_KEY_CODE_RE.match(s)) is not None:
        name = match.group(1).lower()
        meta = True
        shift = "A" <= match.group(1) <= "Z"
    elif (match := _FN_KEY_RE.match(s)) is not None:
        option = s.startswith("\x1b\x1b")
        # Reassemble the key code leaving out leading ESCs, the modifier
        # bitfield and any meaningless "1;"
        code = "".join(
            part for part in (match.group(1), match.group(2), match.group(4), match.group(6)) if part
        )
        modifier = int(match.group(3) or match.group(5) or 1) - 1
        ctrl = bool(modifier & 4) or code in _CTRL_CODES
        meta = bool(modifier & 10)
        shift = bool(modifier & 1) or code in _SHIFT_CODES
        name = KEY_NAMES.get(code, "")

    if s in _WORD_MOTION:
        meta = True
        name = _WORD_MOTION[s]

    override = _SEQUENCE_OVERRIDES.get(s)
    if override is not None:
        override_name, override_ctrl, override_meta = override
        return ParsedKey(
            name=override_name,
            ctrl=override_ctrl,
            meta=override_meta,
            sequence=s,
            raw=s,
        )

    return ParsedKey(
        name=name,
        ctrl=ctrl,
        meta=meta,
        shift=shift,
        option=option,
        sequence=s,
        raw=s,
        code=code,
    )


def _paste_key(content: str) -> ParsedKey:
    return ParsedKey(sequence=content, raw=content, is_pasted=True)


# ---------------------------------------------------------------------------
# Chunk decoding
# ---------------------------------------------------------------------------


def input_to_string(data: str | bytes | None) -> str:
    """Normalise a chunk read from the terminal to ``str``.

    A lone byte above 0x7F is the legacy 8-bit meta encoding and becomes
    ``ESC`` plus the low seven bits.
    """
    if data is None:
        return ""
    if isinstance(data, (bytes, bytearray)):
        if len(data) == 1 and data[0] > 127:
            return ESC + chr(data[0] - 128)
        return bytes(data).decode("utf-8", errors="replace")
    return data


def _emit_plain(text: str, keys: list[ParsedKey]) -> None:
    for match in _PLAIN_KEY_RE.finditer(text):
        keys.append(parse_keypress(match.group(0)))


def _consume_normal(
    text: str,
    is_flush: bool,
    keys: list[ParsedKey],
) -> tuple[str, ParseMode, str]:
    """Consume from *text* up to and including the next escape sequence.

    Returns ``(remaining_text, mode, incomplete)``.
    """
    match = _ANY_ESCAPE_RE.match(text)
    if match is None:
        # The end-of-string alternative matches any text
        _emit_plain(text, keys)
        return "", ParseMode.NORMAL, ""
    prefix, sequence = match.group(1), match.group(2)
    rest = text[match.end() :]

    if not is_flush:
        # Whatever follows the plain text may only be the start of a longer
        # sequence still in flight
        if sequence:
            start = len(prefix)
        elif prefix.endswith(ESC):
            start = len(prefix) - 1
        else:
            start = -1
        if start >= 0 and _PARTIAL_ESCAPE_RE.fullmatch(text, start):
            _emit_plain(text[:start], keys)
            return "", ParseMode.NORMAL, text[start:]

    _emit_plain(prefix, keys)

    if sequence == PASTE_BEGIN:
        return rest, ParseMode.IN_PASTE, ""
    if sequence:
        keys.append(parse_keypress(sequence))
    return rest, ParseMode.NORMAL, ""


def _consume_paste(
    text: str,
    is_flush: bool,
    keys: list[ParsedKey],
) -> tuple[str, ParseMode, str]:
    """Consume a paste body up to its end marker.

    Returns ``(remaining_text, mode, incomplete)``.
    """
    index = text.find(PASTE_END)
    if index == -1:
        if not is_flush:
            return "", ParseMode.IN_PASTE, text
        index = len(text)

    content = text[:index]
    if content:
        keys.append(_paste_key(content))
    return text[index + len(PASTE_END) :], ParseMode.NORMAL, ""


def parse_keypresses(
    state: KeyParseState,
    data: str | bytes | None = "",
) -> tuple[list[ParsedKey], KeyParseState]:
    """Decode one input chunk.

    ``data=None`` is a flush: whatever is buffered in *state* is treated as
    final.  Returns the keys in input order and the state for the next call.
    """
    is_flush = data is None
    chunk = input_to_string(data)

    if state.mode is ParseMode.IN_PASTE and not is_flush:
        # The end marker can't be hiding earlier in the buffer, or the
        # paste would already have ended; look only at the seam.
        search = state.incomplete[-(len(PASTE_END) - 1) :] + chunk
        if PASTE_END not in search:
            return [], KeyParseState(ParseMode.IN_PASTE, state.incomplete + chunk)

    text = state.incomplete + chunk
    mode = state.mode
    incomplete = ""
    keys: list[ParsedKey] = []

    while text:
        if mode is ParseMode.NORMAL:
            text, mode, incomplete = _consume_normal(text, is_flush, keys)
        else:
            text, mode, incomplete = _consume_paste(text, is_flush, keys)

    if is_flush:
        # An empty paste still has to end
        return keys, INITIAL_STATE
    return keys, KeyParseState(mode, incomplete)
