"""pi-ink: terminal I/O core for declarative terminal UIs."""

# Styled cells
from pi.ink.ansi import BLANK, StyledChar, styled_chars_from_string, styled_chars_to_string

# Keypress decoding
from pi.ink.keypress import (
    INITIAL_STATE,
    KeyParseState,
    ParsedKey,
    ParseMode,
    parse_keypress,
    parse_keypresses,
)

# Frame diffing
from pi.ink.log_update import LogUpdate

# Screen compositing
from pi.ink.output import Clip, ClipStackError, Frame, Output

# Tree rendering
from pi.ink.renderer import FrameSource, Node, RenderResult, TreeSource, render_node_to_output

# Render scheduling
from pi.ink.scheduler import MountState, RenderOptions, RenderScheduler, render

# Input buffering
from pi.ink.stdin_buffer import StdinBuffer

# Line transformers
from pi.ink.styles import TransformedLine, Transformer, colorize, text_transformer

# Terminal interface and implementations
from pi.ink.terminal import ProcessTerminal, RawModeUnsupportedError, Terminal

# Rate limiting
from pi.ink.throttle import Throttle

# Utilities
from pi.ink.utils import slice_by_column, strip_ansi, visible_width, widest_line

__all__ = [
    # Styled cells
    "BLANK",
    "StyledChar",
    "styled_chars_from_string",
    "styled_chars_to_string",
    # Keypress
    "INITIAL_STATE",
    "KeyParseState",
    "ParsedKey",
    "ParseMode",
    "parse_keypress",
    "parse_keypresses",
    # Log update
    "LogUpdate",
    # Output
    "Clip",
    "ClipStackError",
    "Frame",
    "Output",
    # Renderer
    "FrameSource",
    "Node",
    "RenderResult",
    "TreeSource",
    "render_node_to_output",
    # Scheduler
    "MountState",
    "RenderOptions",
    "RenderScheduler",
    "render",
    # Stdin buffer
    "StdinBuffer",
    # Styles
    "TransformedLine",
    "Transformer",
    "colorize",
    "text_transformer",
    # Terminal
    "ProcessTerminal",
    "RawModeUnsupportedError",
    "Terminal",
    # Throttle
    "Throttle",
    # Utilities
    "slice_by_column",
    "strip_ansi",
    "visible_width",
    "widest_line",
]
