"""Leading + trailing rate limiting on the running asyncio loop."""

from __future__ import annotations

import asyncio
from typing import Any, Callable


class Throttle:
    """Call *func* at most once per *wait* seconds.

    The first call of a burst runs immediately; later calls inside the
    window collapse into one trailing call with the latest arguments, run
    when the window closes.  Without a running event loop every call runs
    immediately.
    """

    def __init__(self, func: Callable[..., Any], wait: float) -> None:
        self._func = func
        self._wait = wait
        self._handle: asyncio.TimerHandle | None = None
        self._pending_args: tuple[Any, ...] | None = None

    @property
    def pending(self) -> bool:
        """``True`` while a trailing call is queued."""
        return self._pending_args is not None

    def __call__(self, *args: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._func(*args)
            return

        if self._handle is not None:
            self._pending_args = args
            return

        self._func(*args)
        self._handle = loop.call_later(self._wait, self._on_window_end)

    def _on_window_end(self) -> None:
        self._handle = None
        if self._pending_args is None:
            return

        args = self._pending_args
        self._pending_args = None
        self._func(*args)
        self._handle = asyncio.get_running_loop().call_later(self._wait, self._on_window_end)

    def cancel(self) -> None:
        """Drop the queued trailing call and close the window."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending_args = None

    def flush(self) -> None:
        """Run the queued trailing call now, if there is one."""
        args = self._pending_args
        self.cancel()
        if args is not None:
            self._func(*args)
