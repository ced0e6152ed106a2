"""The terminal seen by the render scheduler.

``Terminal`` is the protocol the scheduler talks to; ``ProcessTerminal``
implements it over a pair of stream handles (stdin/stdout unless others
are injected).  Input read while raw mode is on goes through a
:class:`~pi.ink.stdin_buffer.StdinBuffer`, so callers only ever see
decoded :class:`~pi.ink.keypress.ParsedKey` events.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import termios
import tty
from typing import Callable, Protocol, TextIO

from pi.ink.keypress import ParsedKey
from pi.ink.stdin_buffer import StdinBuffer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Control sequences
# ---------------------------------------------------------------------------

BRACKETED_PASTE_ENABLE = "\x1b[?2004h"
BRACKETED_PASTE_DISABLE = "\x1b[?2004l"

HIDE_CURSOR = "\x1b[?25l"
SHOW_CURSOR = "\x1b[?25h"

_FALLBACK_SIZE = os.terminal_size((80, 24))
_READ_SIZE = 4096


class RawModeUnsupportedError(RuntimeError):
    """Raised when raw mode is requested on an input that is not a TTY."""


# ---------------------------------------------------------------------------
# Terminal protocol
# ---------------------------------------------------------------------------


class Terminal(Protocol):
    """Input, output and geometry of one terminal."""

    def start(
        self,
        on_input: Callable[[ParsedKey], None],
        on_resize: Callable[[], None] | None = None,
    ) -> None: ...

    def stop(self) -> None: ...

    def write(self, data: str) -> None: ...

    @property
    def columns(self) -> int: ...

    @property
    def rows(self) -> int: ...

    @property
    def is_tty(self) -> bool: ...

    @property
    def is_raw_mode_supported(self) -> bool: ...

    def set_raw_mode(self, enabled: bool) -> None: ...

    def hide_cursor(self) -> None: ...

    def show_cursor(self) -> None: ...


# ---------------------------------------------------------------------------
# ProcessTerminal
# ---------------------------------------------------------------------------


class ProcessTerminal:
    """``Terminal`` over real stream handles.

    Raw mode is reference counted: the terminal is restored only when every
    ``set_raw_mode(True)`` has been matched by a ``set_raw_mode(False)``.
    While ``PI_INK_WRITE_LOG`` names a file, every write is appended to it.
    """

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout

        self._on_input: Callable[[ParsedKey], None] | None = None
        self._on_resize: Callable[[], None] | None = None
        self._keys: StdinBuffer | None = None

        self._raw_depth = 0
        self._saved_attrs: list | None = None
        self._reader_loop: asyncio.AbstractEventLoop | None = None
        self._previous_sigwinch: signal.Handlers | Callable | int | None = None
        self._signal_loop: asyncio.AbstractEventLoop | None = None

        self._write_log = os.environ.get("PI_INK_WRITE_LOG", "")

    # -- geometry -------------------------------------------------------------

    def _size(self) -> os.terminal_size:
        try:
            size = os.get_terminal_size(self._stdout.fileno())
        except (ValueError, OSError):
            return _FALLBACK_SIZE
        # Some pseudo-terminals report 0x0 before they are sized
        return size if size.columns and size.lines else _FALLBACK_SIZE

    @property
    def columns(self) -> int:
        return self._size().columns

    @property
    def rows(self) -> int:
        return self._size().lines

    @property
    def is_tty(self) -> bool:
        return _isatty(self._stdout)

    @property
    def is_raw_mode_supported(self) -> bool:
        return _isatty(self._stdin)

    @property
    def is_raw_mode_enabled(self) -> bool:
        return self._raw_depth > 0

    # -- lifecycle ------------------------------------------------------------

    def start(
        self,
        on_input: Callable[[ParsedKey], None],
        on_resize: Callable[[], None] | None = None,
    ) -> None:
        """Route decoded keys to *on_input* and resizes to *on_resize*.

        Without *on_resize* no SIGWINCH handler is installed.
        """
        self._on_input = on_input
        self._on_resize = on_resize

        self._keys = StdinBuffer()
        self._keys.on_key(self._deliver_key)

        if on_resize is not None and self.is_tty:
            self._listen_for_resize()

    def stop(self) -> None:
        """Restore the terminal and drop both handlers."""
        if self._raw_depth:
            self._raw_depth = 1
            self.set_raw_mode(False)

        if self._keys is not None:
            self._keys.destroy()
            self._keys = None

        self._stop_listening_for_resize()
        self._on_input = None
        self._on_resize = None

    # -- raw mode -------------------------------------------------------------

    def set_raw_mode(self, enabled: bool) -> None:
        """Take (or release) one reference on raw mode.

        Raises :class:`RawModeUnsupportedError` when enabling on an input
        stream that is not a TTY.
        """
        if not enabled:
            if self._raw_depth:
                self._raw_depth -= 1
                if not self._raw_depth:
                    self._leave_raw_mode()
            return

        if not self.is_raw_mode_supported:
            raise RawModeUnsupportedError("Raw mode is not supported on the current input stream")
        self._raw_depth += 1
        if self._raw_depth == 1:
            self._enter_raw_mode()

    def _enter_raw_mode(self) -> None:
        fd = self._stdin.fileno()
        self._saved_attrs = termios.tcgetattr(fd)

        tty.setraw(fd, termios.TCSANOW)
        # Output post-processing stays on so "\n" still returns the carriage
        attrs = termios.tcgetattr(fd)
        attrs[1] |= termios.OPOST | termios.ONLCR
        termios.tcsetattr(fd, termios.TCSANOW, attrs)

        self._emit(BRACKETED_PASTE_ENABLE)
        self._add_reader()

    def _leave_raw_mode(self) -> None:
        self._emit(BRACKETED_PASTE_DISABLE)
        self._remove_reader()

        # A lone ESC still waiting for its timeout is delivered now
        if self._keys is not None:
            self._keys.flush()

        if self._saved_attrs is not None:
            termios.tcsetattr(self._stdin.fileno(), termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None

    # -- output ---------------------------------------------------------------

    def write(self, data: str) -> None:
        self._emit(data)
        if not self._write_log:
            return
        try:
            with open(self._write_log, "a") as log:
                log.write(data)
        except OSError:
            logger.debug("Could not append to write log %s", self._write_log)

    def hide_cursor(self) -> None:
        self._emit(HIDE_CURSOR)

    def show_cursor(self) -> None:
        self._emit(SHOW_CURSOR)

    def _emit(self, data: str) -> None:
        # A vanished terminal must not take teardown down with it
        try:
            self._stdout.write(data)
            self._stdout.flush()
        except OSError:
            logger.debug("Terminal write failed", exc_info=True)

    # -- input ----------------------------------------------------------------

    def _deliver_key(self, key: ParsedKey) -> None:
        if self._on_input is not None:
            self._on_input(key)

    def _add_reader(self) -> None:
        if self._reader_loop is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; stdin will not be read")
            return
        loop.add_reader(self._stdin.fileno(), self._read_stdin)
        self._reader_loop = loop

    def _remove_reader(self) -> None:
        loop, self._reader_loop = self._reader_loop, None
        if loop is None or loop.is_closed():
            return
        loop.remove_reader(self._stdin.fileno())

    def _read_stdin(self) -> None:
        try:
            chunk = os.read(self._stdin.fileno(), _READ_SIZE)
        except OSError:
            logger.debug("Reading stdin failed", exc_info=True)
            return
        if chunk and self._keys is not None:
            self._keys.process(chunk)

    # -- resize ---------------------------------------------------------------

    def _listen_for_resize(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        try:
            if loop is not None:
                # Runs as a loop callback, never in the middle of a frame
                loop.add_signal_handler(signal.SIGWINCH, self._deliver_resize)
                self._signal_loop = loop
            else:
                self._previous_sigwinch = signal.signal(signal.SIGWINCH, self._on_sigwinch)
        except (RuntimeError, ValueError):
            # Only the main thread may install signal handlers
            logger.debug("Resize notifications unavailable off the main thread")

    def _stop_listening_for_resize(self) -> None:
        loop, self._signal_loop = self._signal_loop, None
        if loop is not None and not loop.is_closed():
            loop.remove_signal_handler(signal.SIGWINCH)

        if self._previous_sigwinch is not None:
            signal.signal(signal.SIGWINCH, self._previous_sigwinch)
            self._previous_sigwinch = None

    def _on_sigwinch(self, signum: int, frame: object) -> None:
        self._deliver_resize()

    def _deliver_resize(self) -> None:
        if self._on_resize is not None:
            self._on_resize()


def _isatty(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (ValueError, AttributeError):
        return False
