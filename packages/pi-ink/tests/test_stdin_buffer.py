"""Tests for pi.ink.stdin_buffer.StdinBuffer."""

from __future__ import annotations

import asyncio

import pytest

from pi.ink.keypress import PASTE_BEGIN, PASTE_END, ParsedKey, ParseMode
from pi.ink.stdin_buffer import NORMAL_TIMEOUT, PASTE_TIMEOUT, StdinBuffer


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class Collector:
    """Collects emitted keys for assertions."""

    def __init__(self) -> None:
        self.keys: list[ParsedKey] = []

    def on_key(self, key: ParsedKey) -> None:
        self.keys.append(key)

    @property
    def sequences(self) -> list[str]:
        return [k.sequence for k in self.keys]


def make_buffer(
    normal_timeout: float = NORMAL_TIMEOUT,
    paste_timeout: float = PASTE_TIMEOUT,
) -> tuple[StdinBuffer, Collector]:
    buf = StdinBuffer(normal_timeout=normal_timeout, paste_timeout=paste_timeout)
    col = Collector()
    buf.on_key(col.on_key)
    return buf, col


# ---------------------------------------------------------------------------
# Constructor
# ---------------------------------------------------------------------------


class TestConstructor:
    def test_default_timeouts(self) -> None:
        buf = StdinBuffer()
        assert buf._normal_timeout == 0.05
        assert buf._paste_timeout == 0.5

    def test_initial_state(self) -> None:
        buf = StdinBuffer()
        assert buf.get_buffer() == ""
        assert buf.state.mode is ParseMode.NORMAL
        assert buf._on_key is None


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class TestProcess:
    def test_plain_text(self) -> None:
        buf, col = make_buffer()
        buf.process("hi")
        assert col.sequences == ["h", "i"]

    def test_complete_sequence(self) -> None:
        buf, col = make_buffer()
        buf.process("\x1b[A")
        assert [k.name for k in col.keys] == ["up"]

    def test_no_callback_is_fine(self) -> None:
        buf = StdinBuffer()
        buf.process("abc")
        assert buf.get_buffer() == ""

    def test_empty_input_emits_nothing(self) -> None:
        buf, col = make_buffer()
        buf.process("")
        assert col.keys == []

    def test_split_sequence_is_reassembled(self) -> None:
        buf, col = make_buffer()
        buf.process("\x1b[")
        assert col.keys == []
        assert buf.get_buffer() == "\x1b["
        buf.process("B")
        assert [k.name for k in col.keys] == ["down"]
        assert buf.get_buffer() == ""

    def test_paste(self) -> None:
        buf, col = make_buffer()
        buf.process(f"{PASTE_BEGIN}hello{PASTE_END}")
        assert col.sequences == ["hello"]
        assert col.keys[0].is_pasted is True

    def test_chunked_paste(self) -> None:
        buf, col = make_buffer()
        buf.process(f"{PASTE_BEGIN}hel")
        buf.process("lo")
        assert col.keys == []
        assert buf.state.mode is ParseMode.IN_PASTE
        buf.process(PASTE_END)
        assert col.sequences == ["hello"]


class TestBytes:
    def test_utf8_bytes(self) -> None:
        buf, col = make_buffer()
        buf.process("añb".encode())
        assert col.sequences == ["a", "ñ", "b"]

    def test_multibyte_character_split_across_reads(self) -> None:
        buf, col = make_buffer()
        encoded = "a€".encode()
        buf.process(encoded[:2])
        assert col.sequences == ["a"]
        # A single continuation byte finishes the character, it isn't meta
        buf.process(encoded[2:3])
        buf.process(encoded[3:])
        assert col.sequences == ["a", "€"]

    def test_lone_high_byte_is_meta(self) -> None:
        buf, col = make_buffer()
        buf.process(bytes([0x80 + ord("x")]))
        assert col.sequences == ["\x1bx"]
        assert col.keys[0].meta is True


# ---------------------------------------------------------------------------
# Flushing
# ---------------------------------------------------------------------------


class TestFlush:
    def test_flush_emits_escape(self) -> None:
        buf, col = make_buffer()
        buf.process("\x1b")
        assert col.keys == []
        flushed = buf.flush()
        assert [k.name for k in flushed] == ["escape"]
        assert [k.name for k in col.keys] == ["escape"]
        assert buf.get_buffer() == ""

    def test_flush_with_nothing_buffered(self) -> None:
        buf, col = make_buffer()
        assert buf.flush() == []
        assert col.keys == []

    def test_flush_ends_paste(self) -> None:
        buf, col = make_buffer()
        buf.process(f"{PASTE_BEGIN}unterminated")
        buf.flush()
        assert col.sequences == ["unterminated"]
        assert buf.state.mode is ParseMode.NORMAL

    def test_no_loop_keeps_input_buffered(self) -> None:
        buf, col = make_buffer()
        buf.process("\x1b")
        assert buf._timeout_handle is None
        assert buf.get_buffer() == "\x1b"


class TestTimeoutFlush:
    @pytest.mark.asyncio
    async def test_incomplete_sequence_flushed_on_timeout(self) -> None:
        buf, col = make_buffer(normal_timeout=0.02)
        buf.process("\x1b")
        assert col.keys == []
        await asyncio.sleep(0.05)
        assert [k.name for k in col.keys] == ["escape"]

    @pytest.mark.asyncio
    async def test_timeout_cancelled_on_new_data(self) -> None:
        buf, col = make_buffer(normal_timeout=0.05)
        buf.process("\x1b")
        buf.process("[A")
        assert [k.name for k in col.keys] == ["up"]
        await asyncio.sleep(0.08)
        assert [k.name for k in col.keys] == ["up"]

    @pytest.mark.asyncio
    async def test_only_latest_timer_fires(self) -> None:
        buf, col = make_buffer(normal_timeout=0.03)
        buf.process("\x1b[")
        await asyncio.sleep(0.01)
        buf.process("1")
        await asyncio.sleep(0.01)
        buf.process(";")
        assert col.keys == []
        await asyncio.sleep(0.06)
        # The whole held text comes out once the last timer fires
        assert "".join(col.sequences) == "\x1b[1;"

    @pytest.mark.asyncio
    async def test_paste_uses_longer_timeout(self) -> None:
        buf, col = make_buffer(normal_timeout=0.01, paste_timeout=0.1)
        buf.process(f"{PASTE_BEGIN}slow")
        await asyncio.sleep(0.03)
        assert col.keys == []
        await asyncio.sleep(0.12)
        assert col.sequences == ["slow"]
        assert col.keys[0].is_pasted is True


# ---------------------------------------------------------------------------
# Clear / destroy
# ---------------------------------------------------------------------------


class TestClear:
    def test_clear_drops_buffer(self) -> None:
        buf, col = make_buffer()
        buf.process("\x1b[1")
        buf.clear()
        assert buf.get_buffer() == ""
        assert buf.flush() == []
        assert col.keys == []

    def test_clear_leaves_paste_mode(self) -> None:
        buf, _ = make_buffer()
        buf.process(f"{PASTE_BEGIN}abc")
        buf.clear()
        assert buf.state.mode is ParseMode.NORMAL

    @pytest.mark.asyncio
    async def test_destroy_cancels_timer(self) -> None:
        buf, col = make_buffer(normal_timeout=0.01)
        buf.process("\x1b")
        buf.destroy()
        await asyncio.sleep(0.03)
        assert col.keys == []
        assert buf._on_key is None
