"""
Per-caller throttling for mutating registry requests.

Each caller gets a sliding window of accepted request times; a request is
refused once the window already holds ``rpm`` of them.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


class RateLimiter:

    def __init__(self, rpm: int, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        """
        Args:
            rpm: Requests accepted per caller within one window
            window_seconds: Window length
            clock: Time source, in seconds
        """
        self.limit = max(1, rpm)
        self.window = window_seconds
        self._clock = clock
        self._accepted: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """Count the request against ``key`` if it fits in the window."""
        now = self._clock()
        with self._lock:
            accepted = self._accepted.setdefault(key, deque())
            horizon = now - self.window
            while accepted and accepted[0] < horizon:
                accepted.popleft()

            if len(accepted) >= self.limit:
                oldest_expires = accepted[0] + self.window
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=oldest_expires,
                    retry_after=max(0.0, oldest_expires - now),
                )

            accepted.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=self.limit - len(accepted),
                reset_at=accepted[0] + self.window,
            )

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._accepted.clear()
            else:
                self._accepted.pop(key, None)
