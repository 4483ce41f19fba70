from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class RateWindow:
    window_start: float
    count: int
    limit: int
    window_duration: float


class FixedWindowRateLimiter:
    """Admit at most ``limit`` requests per fixed window of ``window_seconds``.

    One instance is meant to be shared by every client of an installation.
    Acquisition is a single locked check-and-increment, so it is safe to call
    from several tasks or threads at once.
    """

    def __init__(
        self,
        limit: int = 3,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._clock = clock
        self._lock = threading.Lock()
        self._window = RateWindow(
            window_start=clock(),
            count=0,
            limit=limit,
            window_duration=float(window_seconds),
        )

    @property
    def limit(self) -> int:
        return self._window.limit

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll_window(self._clock())
            return self._window.limit - self._window.count

    def try_acquire(self) -> bool:
        with self._lock:
            self._roll_window(self._clock())
            if self._window.count < self._window.limit:
                self._window.count += 1
                return True
            return False

    def retry_after(self) -> float:
        """Seconds until the current window closes (0 if a slot is free now)."""
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if self._window.count < self._window.limit:
                return 0.0
            return max(0.0, self._window.window_start + self._window.window_duration - now)

    def reset(self) -> None:
        with self._lock:
            self._window.window_start = self._clock()
            self._window.count = 0

    def _roll_window(self, now: float) -> None:
        if now - self._window.window_start >= self._window.window_duration:
            self._window.window_start = now
            self._window.count = 0
