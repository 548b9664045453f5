"""Liveness timer: time since the last accepted arm movement."""

from __future__ import annotations

import time
from typing import Callable


class LivenessTimer:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.last_reset = clock()

    def reset(self, now: float | None = None) -> None:
        self.last_reset = self._clock() if now is None else now

    def elapsed_since(self, now: float | None = None) -> float:
        """Seconds elapsed since the last reset (never negative)."""
        ref = self._clock() if now is None else now
        return max(0.0, ref - self.last_reset)

    def expired(self, wait_s: float, now: float | None = None) -> bool:
        return self.elapsed_since(now) >= wait_s


__all__ = ["LivenessTimer"]
