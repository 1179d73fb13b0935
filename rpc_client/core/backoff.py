from __future__ import annotations

import random
from typing import Optional


class Backoff:
    """
    Randomized, capped retry delay generator.

    Every call grows the delay by a random share of up to twice its current
    value and clamps it to ``max_amount``. ``reset`` returns to the minimum.
    """

    def __init__(self, min_amount: float, max_amount: float, rng: Optional[random.Random] = None) -> None:
        if min_amount <= 0 or max_amount < min_amount:
            raise ValueError("Backoff requires 0 < min_amount <= max_amount")
        self.min_amount = min_amount
        self.max_amount = max_amount
        self._rng = rng or random.Random()
        self._current = min_amount

    @property
    def current(self) -> float:
        return self._current

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self.max_amount, delay + delay * 2 * self._rng.random())
        return self._current

    def reset(self) -> None:
        self._current = self.min_amount


def format_duration(seconds: float) -> str:
    """Render a delay for log lines, e.g. ``750 ms``, ``2.5 s``, ``1 m 5 s``."""
    millis = int(seconds * 1000)
    if millis < 1000:
        return f"{millis} ms"
    if millis < 60_000:
        whole, remainder = divmod(millis, 1000)
        if remainder == 0:
            return f"{whole} s"
        return f"{whole}.{remainder // 100} s"
    minutes, rest = divmod(millis, 60_000)
    secs = rest // 1000
    if secs == 0:
        return f"{minutes} m"
    return f"{minutes} m {secs} s"


__all__ = ["Backoff", "format_duration"]
