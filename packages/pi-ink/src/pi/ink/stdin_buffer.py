"""StdinBuffer feeds raw terminal input through the keypress decoder.

Stdin data events can arrive in partial chunks, especially for escape
sequences and large pastes.  The decoder holds partial input in its state;
this class owns that state and schedules the idle flush that turns a lone
``ESC`` (or an unterminated paste) into an event once no more input arrives.
"""

from __future__ import annotations

import asyncio
import codecs
from typing import Callable

from pi.ink.keypress import (
    INITIAL_STATE,
    KeyParseState,
    ParsedKey,
    ParseMode,
    input_to_string,
    parse_keypresses,
)

NORMAL_TIMEOUT = 0.05
PASTE_TIMEOUT = 0.5


class StdinBuffer:
    """Buffers stdin input and emits decoded keys.

    With a running event loop a flush is scheduled ``normal_timeout``
    seconds (``paste_timeout`` inside a bracketed paste) after the last
    chunk that left input buffered.  Without one, buffered input waits for
    more data or an explicit :meth:`flush`.
    """

    def __init__(
        self,
        *,
        normal_timeout: float = NORMAL_TIMEOUT,
        paste_timeout: float = PASTE_TIMEOUT,
    ) -> None:
        self._state: KeyParseState = INITIAL_STATE
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._normal_timeout = normal_timeout
        self._paste_timeout = paste_timeout
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self._on_key: Callable[[ParsedKey], None] | None = None

    def on_key(self, callback: Callable[[ParsedKey], None]) -> None:
        """Set callback for decoded keys and pastes."""
        self._on_key = callback

    @property
    def state(self) -> KeyParseState:
        return self._state

    def _emit(self, keys: list[ParsedKey]) -> None:
        if self._on_key is None:
            return
        for key in keys:
            self._on_key(key)

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _decode(self, data: str | bytes) -> str:
        if isinstance(data, str):
            return data
        # A lone high byte is the 8-bit meta encoding, unless it continues
        # a multi-byte character started in an earlier read
        pending, _ = self._decoder.getstate()
        if len(data) == 1 and data[0] > 127 and not pending:
            return input_to_string(data)
        return self._decoder.decode(data)

    def process(self, data: str | bytes) -> None:
        """Feed one chunk of input."""
        self._cancel_timeout()

        text = self._decode(data)
        if not text:
            return

        keys, self._state = parse_keypresses(self._state, text)
        self._emit(keys)

        if self._state.incomplete:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop - wait for more input or an explicit flush()
            return

        delay = (
            self._paste_timeout
            if self._state.mode is ParseMode.IN_PASTE
            else self._normal_timeout
        )
        self._timeout_handle = loop.call_later(delay, self._flush_timeout)

    def _flush_timeout(self) -> None:
        self._timeout_handle = None
        self.flush()

    def flush(self) -> list[ParsedKey]:
        """Treat buffered input as final, emit it and return the keys."""
        self._cancel_timeout()

        if not self._state.incomplete and self._state.mode is ParseMode.NORMAL:
            return []

        keys, self._state = parse_keypresses(self._state, None)
        self._emit(keys)
        return keys

    def clear(self) -> None:
        """Drop buffered input without emitting it."""
        self._cancel_timeout()
        self._state = INITIAL_STATE
        self._decoder.reset()

    def get_buffer(self) -> str:
        return self._state.incomplete

    def destroy(self) -> None:
        self.clear()
        self._on_key = None
