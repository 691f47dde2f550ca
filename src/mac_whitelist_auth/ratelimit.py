from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter keyed by client identifier (usually the IP)."""

    def __init__(self, limit: int = 60, window_seconds: float = 60 * 60) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def allow(self, identifier: str, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        with self._lock:
            w = self._windows.get(identifier)
            if w is None or now > w.reset_at:
                self._windows[identifier] = _Window(count=1, reset_at=now + self.window_seconds)
                return True
            if w.count >= self.limit:
                return False
            w.count += 1
            return True
