# Overview: Keystroke accumulator for handheld barcode scanners (keyboard-wedge input).

from __future__ import annotations

import time
from typing import Callable, Iterable

ENTER_KEYS = frozenset({"\n", "\r", "Enter"})


class BarcodeScanBuffer:
    """
    Turns a stream of rapid keystrokes terminated by Enter into one barcode.

    - Characters are appended while they arrive within the idle timeout.
    - A gap longer than the timeout discards the partial input first.
    - Enter returns the accumulated barcode (None when empty) and clears.

    The clock returns seconds and is injectable for tests.
    """

    def __init__(self, idle_timeout_ms: int = 100, clock: Callable[[], float] = time.monotonic):
        self.idle_timeout = idle_timeout_ms / 1000.0
        self._clock = clock
        self._chars: list[str] = []
        self._last_key_at: float | None = None

    @property
    def pending(self) -> str:
        return "".join(self._chars)

    def reset(self) -> None:
        self._chars.clear()
        self._last_key_at = None

    def feed(self, key: str) -> str | None:
        now = self._clock()
        if self._last_key_at is not None and now - self._last_key_at > self.idle_timeout:
            self._chars.clear()

        if key in ENTER_KEYS:
            code = self.pending.strip()
            self.reset()
            return code or None

        self._chars.append(key)
        self._last_key_at = now
        return None

    def feed_many(self, keys: Iterable[str]) -> list[str]:
        """Feed a key sequence; returns every barcode completed along the way."""
        codes = []
        for key in keys:
            code = self.feed(key)
            if code:
                codes.append(code)
        return codes
