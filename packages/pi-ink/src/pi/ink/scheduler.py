"""Render scheduling: turning frames into terminal writes.

A :class:`RenderScheduler` owns one terminal for the lifetime of a mount.
Each render asks its :class:`~pi.ink.renderer.FrameSource` for a frame and
picks exactly one strategy:

1. unmounted: nothing happens;
2. resize, or a frame as tall as the terminal (now or last time): clear
   the terminal and rewrite the whole static log plus the frame;
3. new static content: erase the live frame, append the static increment,
   redraw the live frame;
4. unchanged live frame: skip;
5. otherwise: erase the previous live frame and draw the new one.

Every frame goes out as one write wrapped in a synchronized-update pair.
Prompt and command regions are marked with OSC 133 sequences so terminals
can navigate between prompts.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, TextIO

from pi.ink.keypress import ParsedKey
from pi.ink.log_update import LogUpdate
from pi.ink.renderer import FrameSource, RenderResult
from pi.ink.terminal import ProcessTerminal, Terminal
from pi.ink.throttle import Throttle

logger = logging.getLogger(__name__)

__all__ = [
    "CLEAR_TERMINAL",
    "MountState",
    "RenderOptions",
    "RenderScheduler",
    "SYNC_UPDATE_END",
    "SYNC_UPDATE_START",
    "render",
    "strip_osc133",
]

# ---------------------------------------------------------------------------
# Escape sequences
# ---------------------------------------------------------------------------

PROMPT_START = "\x1b]133;A\x07"
PROMPT_END = "\x1b]133;B\x07"
COMMAND_START = "\x1b]133;C\x07"
COMMAND_END = "\x1b]133;D\x07"

SYNC_UPDATE_START = "\x1b[?2026h"
SYNC_UPDATE_END = "\x1b[?2026l"

CLEAR_TERMINAL = "\x1b[2J\x1b[3J\x1b[H"

# Debug tints: dark blue for prompts, dark red for command output
_DEBUG_PROMPT_BG = "\x1b[48;5;17m"
_DEBUG_COMMAND_BG = "\x1b[48;5;52m"
_DEBUG_BG_RESET = "\x1b[49m"

_OSC133_RE = re.compile(r"\x1b\]133;[^\x07\x1b]*(?:\x07|\x1b\\)")

_DEFAULT_COLUMNS = 80


def strip_osc133(text: str) -> str:
    """Remove prompt/command boundary markers from *text*."""
    return _OSC133_RE.sub("", text)


def _strip_prefix(prefix: str, text: str) -> str:
    return text[len(prefix) :] if prefix and text.startswith(prefix) else text


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@dataclass
class RenderOptions:
    """Scheduler configuration.

    ``debug`` defaults to ``PI_INK_DEBUG=1`` and ``non_interactive`` to a
    non-empty ``CI`` environment variable.
    """

    debug: bool = field(default_factory=lambda: os.environ.get("PI_INK_DEBUG") == "1")
    exit_on_ctrl_c: bool = True
    prompt_markers: bool = True
    on_flicker: Callable[[], None] | None = None
    render_interval: float = 0.032
    non_interactive: bool = field(default_factory=lambda: bool(os.environ.get("CI")))
    stderr: TextIO | None = None


class MountState(Enum):
    MOUNTED = "mounted"
    UNMOUNTING = "unmounting"
    UNMOUNTED = "unmounted"


@dataclass(frozen=True)
class _Markers:
    start_prompt: str = ""
    end_prompt: str = ""
    start_command: str = ""
    end_command: str = ""


# Live schedulers, one per terminal
_instances: dict[object, RenderScheduler] = {}


# ---------------------------------------------------------------------------
# RenderScheduler
# ---------------------------------------------------------------------------


class RenderScheduler:
    """Drives one frame source onto one terminal until unmounted."""

    def __init__(
        self,
        source: FrameSource,
        terminal: Terminal,
        options: RenderOptions | None = None,
    ) -> None:
        self._source = source
        self.terminal = terminal
        self.options = options if options is not None else RenderOptions()

        self._log = LogUpdate()
        self._state = MountState.MOUNTED

        # Previous render state
        self._last_output: str = ""
        self._last_output_height: int = 0
        # Every static increment so far, replayed on full rewrites
        self._full_static_output: str = ""

        # Completion
        self._exit_future: asyncio.Future[None] | None = None
        self._exit_settled: bool = False
        self._exit_error: BaseException | None = None

        # Input sinks
        self._input_handlers: list[Callable[[ParsedKey], None]] = []

        if self.options.debug:
            self._render_throttle: Throttle | None = None
            self._dynamic_throttle: Throttle | None = None
        else:
            self._render_throttle = Throttle(self._on_render, self.options.render_interval)
            self._dynamic_throttle = Throttle(self._write_dynamic, 0)

        self._interactive = not self.options.non_interactive
        self._markers = self._build_markers()
        self._raw_mode_enabled = False
        self._cursor_hidden = False

        # Set while a frame is being drawn; a pass requested meanwhile waits
        self._rendering = False
        self._render_again: bool | None = None

        self._mount()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> MountState:
        return self._state

    @property
    def last_output(self) -> str:
        return self._last_output

    @property
    def last_output_height(self) -> int:
        return self._last_output_height

    @property
    def full_static_output(self) -> str:
        return self._full_static_output

    # ------------------------------------------------------------------
    # Mounting
    # ------------------------------------------------------------------

    def _build_markers(self) -> _Markers:
        if not self._interactive or not self.terminal.is_tty or not self.options.prompt_markers:
            markers = _Markers()
        else:
            markers = _Markers(PROMPT_START, PROMPT_END, COMMAND_START, COMMAND_END)

        if self.options.debug and self.terminal.is_tty:
            # Leaving a region resets the tint
            markers = _Markers(
                start_prompt=markers.start_prompt + _DEBUG_PROMPT_BG,
                end_prompt=_DEBUG_BG_RESET + markers.end_prompt,
                start_command=markers.start_command + _DEBUG_COMMAND_BG,
                end_command=_DEBUG_BG_RESET + markers.end_command,
            )
        return markers

    def _mount(self) -> None:
        # Non-interactive output never redraws, so it has no use for resizes
        self.terminal.start(
            self._handle_input, self._handle_resize if self._interactive else None
        )

        if self._interactive:
            if self.options.prompt_markers and self.terminal.is_tty:
                self.terminal.write(PROMPT_START)
            if self.terminal.is_raw_mode_supported:
                self.terminal.set_raw_mode(True)
                self._raw_mode_enabled = True
            if self.terminal.is_tty:
                self.terminal.hide_cursor()
                self._cursor_hidden = True

        atexit.register(self.unmount)
        logger.debug(
            "Mounted (interactive=%s, debug=%s)", self._interactive, self.options.debug
        )

    # ------------------------------------------------------------------
    # Input / resize
    # ------------------------------------------------------------------

    def on_input(self, handler: Callable[[ParsedKey], None]) -> Callable[[], None]:
        """Register *handler* for decoded keys.  Returns an unsubscribe function."""
        self._input_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._input_handlers:
                self._input_handlers.remove(handler)

        return unsubscribe

    def _handle_input(self, key: ParsedKey) -> None:
        if self._state is not MountState.MOUNTED:
            return
        if self.options.exit_on_ctrl_c and key.sequence == "\x03":
            self.unmount()
            return
        for handler in list(self._input_handlers):
            handler(key)

    def _handle_resize(self) -> None:
        if not self._interactive or self._state is not MountState.MOUNTED:
            return
        if self._render_throttle is not None:
            self._render_throttle.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running event loop -- render synchronously
            self._on_render(did_resize=True)
            return
        loop.call_soon(self._on_render, True)

    # ------------------------------------------------------------------
    # Render scheduling
    # ------------------------------------------------------------------

    def set_source(self, source: FrameSource) -> None:
        """Render from *source* from now on."""
        self._source = source
        self.request_render()

    def request_render(self) -> None:
        """Render now, or as soon as the render window allows."""
        if self._state is not MountState.MOUNTED:
            return
        if self._render_throttle is None:
            self._on_render()
        else:
            self._render_throttle()

    def _on_render(self, did_resize: bool = False) -> None:
        if self._state is not MountState.MOUNTED:
            return
        if self._rendering:
            # Frames never interleave: run this pass after the current one
            self._render_again = bool(self._render_again) or did_resize
            return

        self._rendering = True
        try:
            self._render(did_resize)
            while self._render_again is not None and self._state is MountState.MOUNTED:
                did_resize, self._render_again = self._render_again, None
                self._render(did_resize)
        except Exception as error:
            logger.exception("Rendering failed; unmounting")
            self.unmount(error)
        finally:
            self._rendering = False
            self._render_again = None

    def _render(self, did_resize: bool = False) -> None:  # noqa: C901
        if self._state is MountState.UNMOUNTED:
            return

        markers = self._markers
        # Rendered output starts in command mode: entering a prompt leaves it
        self._source.calculate_layout(self.terminal.columns or _DEFAULT_COLUMNS)
        result: RenderResult = self._source.render(
            markers.end_command + markers.start_prompt,
            markers.end_prompt + markers.start_command,
        )
        output = result.output
        output_height = result.output_height

        has_static_output = bool(result.static_output) and result.static_output != "\n"
        # Static output is written from inside the prompt region
        wrapped_static_output = (
            markers.end_prompt + markers.start_command + result.static_output + markers.start_prompt
            if has_static_output
            else ""
        )

        if self.options.debug:
            if has_static_output:
                self._full_static_output += wrapped_static_output
            self._write_frame(self._full_static_output + output)
            self._remember(output, output_height)
            return

        if not self._interactive:
            if has_static_output:
                self.terminal.write(wrapped_static_output)
            self._remember(output, output_height)
            return

        if has_static_output:
            self._full_static_output += wrapped_static_output

        rows = self.terminal.rows
        if output_height >= rows or self._last_output_height >= rows:
            logger.debug("Frame of %d lines fills %d rows; rewriting", output_height, rows)
            if self.options.on_flicker is not None:
                self.options.on_flicker()
            self._write_full(output)
            self._remember(output, output_height)
            return

        if did_resize:
            logger.debug("Terminal resized; rewriting")
            self._write_full(output)
            self._remember(output, output_height)
            return

        if has_static_output:
            # Static output goes above the live frame, so erase it first
            if self._dynamic_throttle is not None:
                self._dynamic_throttle.cancel()
            self._write_frame(
                self._log.clear() + wrapped_static_output + self._log.update(strip_osc133(output))
            )
        elif output != self._last_output:
            if self._dynamic_throttle is not None:
                self._dynamic_throttle(strip_osc133(output))
            else:
                self._write_dynamic(strip_osc133(output))

        self._remember(output, output_height)

    def _remember(self, output: str, output_height: int) -> None:
        self._last_output = output
        self._last_output_height = output_height

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_frame(self, payload: str) -> None:
        """Write one frame as a single synchronized update."""
        if not payload:
            return
        if self._interactive and self.terminal.is_tty:
            payload = SYNC_UPDATE_START + payload + SYNC_UPDATE_END
        self.terminal.write(payload)

    def _write_dynamic(self, text: str) -> None:
        self._write_frame(self._log.update(text))

    def _write_full(self, output: str) -> None:
        if self._dynamic_throttle is not None:
            self._dynamic_throttle.cancel()
        end_prompt = self._markers.end_prompt
        # The static log expects to start inside a prompt region
        self._write_frame(
            end_prompt
            + CLEAR_TERMINAL
            + _strip_prefix(end_prompt, self._full_static_output)
            + output
            + "\n"
        )
        self._log.sync(output + "\n")

    def write_to_stdout(self, data: str) -> None:
        """Write *data* above the live frame."""
        if self._state is not MountState.MOUNTED:
            return
        if self.options.debug:
            self.terminal.write(data + self._full_static_output + self._last_output)
            return
        if not self._interactive:
            self.terminal.write(data)
            return
        self._flush_dynamic()
        self._write_frame(
            self._log.clear() + strip_osc133(data) + self._log.update(strip_osc133(self._last_output))
        )

    def write_to_stderr(self, data: str) -> None:
        """Write *data* to stderr without corrupting the live frame."""
        if self._state is not MountState.MOUNTED:
            return
        stderr = self.options.stderr if self.options.stderr is not None else sys.stderr
        if self.options.debug:
            stderr.write(data)
            self.terminal.write(self._full_static_output + self._last_output)
            return
        if not self._interactive:
            stderr.write(data)
            return
        self._flush_dynamic()
        self._write_frame(self._log.clear())
        stderr.write(strip_osc133(data))
        stderr.flush()
        self._write_frame(self._log.update(strip_osc133(self._last_output)))

    def clear(self) -> None:
        """Erase the live frame."""
        if self._interactive and not self.options.debug:
            self._flush_dynamic()
            self._write_frame(self._log.clear())

    def _flush_dynamic(self) -> None:
        if self._dynamic_throttle is not None:
            self._dynamic_throttle.flush()

    # ------------------------------------------------------------------
    # Unmounting
    # ------------------------------------------------------------------

    def unmount(self, error: BaseException | None = None) -> None:
        """Render one last time, restore the terminal and settle completion.

        Safe to call any number of times; never raises.
        """
        if self._state is not MountState.MOUNTED:
            return
        self._state = MountState.UNMOUNTING
        logger.debug("Unmounting (error=%r)", error)

        try:
            if self._render_throttle is not None:
                self._render_throttle.cancel()
            self._flush_dynamic()
            self._render()
        except Exception as final_error:
            logger.exception("Final render failed")
            if error is None:
                error = final_error

        self._teardown()

        self._state = MountState.UNMOUNTED
        if _instances.get(self.terminal) is self:
            del _instances[self.terminal]
        atexit.unregister(self.unmount)
        self._settle(error)

    def _teardown(self) -> None:
        if self._dynamic_throttle is not None:
            self._dynamic_throttle.cancel()

        if self._raw_mode_enabled:
            try:
                self.terminal.set_raw_mode(False)
            except Exception:
                logger.exception("Failed to restore terminal mode")
            self._raw_mode_enabled = False

        try:
            self.terminal.stop()
        except Exception:
            logger.exception("Failed to stop terminal")

        try:
            if not self._interactive:
                # Only the last frame; erasing doesn't work in CI logs
                self.terminal.write(self._last_output + "\n")
            else:
                if not self.options.debug:
                    self._log.done()
                elif self.terminal.is_tty:
                    self.terminal.write(_DEBUG_BG_RESET)
                if self.options.prompt_markers and self.terminal.is_tty:
                    self.terminal.write(PROMPT_END)
            if self._cursor_hidden:
                self.terminal.show_cursor()
                self._cursor_hidden = False
        except Exception:
            logger.exception("Failed to write final output")

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _settle(self, error: BaseException | None) -> None:
        if self._exit_settled:
            return
        self._exit_settled = True
        self._exit_error = error

        future = self._exit_future
        if future is None or future.done():
            return
        try:
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(None)
        except RuntimeError:
            # The loop that created the future is gone
            logger.debug("Completion future's loop is closed")

    async def wait_until_exit(self) -> None:
        """Wait for unmount; raises the error that caused it, if any."""
        if self._exit_future is None:
            self._exit_future = asyncio.get_running_loop().create_future()
            if self._exit_settled:
                if self._exit_error is not None:
                    self._exit_future.set_exception(self._exit_error)
                else:
                    self._exit_future.set_result(None)
        await asyncio.shield(self._exit_future)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

_default_terminal: ProcessTerminal | None = None


def render(
    source: FrameSource,
    terminal: Terminal | None = None,
    options: RenderOptions | None = None,
) -> RenderScheduler:
    """Mount *source* on *terminal* (stdin/stdout by default) and render it.

    A terminal that already has a live scheduler keeps it; the scheduler
    switches to *source* and re-renders.
    """
    global _default_terminal

    if terminal is None:
        if _default_terminal is None:
            _default_terminal = ProcessTerminal()
        terminal = _default_terminal

    scheduler = _instances.get(terminal)
    if scheduler is not None:
        scheduler.set_source(source)
        return scheduler

    scheduler = RenderScheduler(source, terminal, options)
    _instances[terminal] = scheduler
    scheduler.request_render()
    return scheduler
