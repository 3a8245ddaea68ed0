"""Client-side rate limiting for marketplace requests."""
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """Enforce a minimum spacing between requests and a rolling per-minute cap.

    Both rules are checked before every request; ``wait`` sleeps until
    both are satisfied and then records the request.
    """

    def __init__(self, min_interval: float = 0.5, max_per_minute: int = 120,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = min_interval
        self.max_per_minute = max_per_minute
        self._clock = clock
        self._sleep = sleep
        self._last_at = None
        self._window: Deque[float] = deque()
        self._lock = threading.Lock()

    def _trim(self, now: float) -> None:
        while self._window and now - self._window[0] >= WINDOW_SECONDS:
            self._window.popleft()

    def wait(self) -> None:
        """Block until the next request is allowed, then record it."""
        with self._lock:
            if self._last_at is not None:
                elapsed = self._clock() - self._last_at
                if elapsed < self.min_interval:
                    self._sleep(self.min_interval - elapsed)

            now = self._clock()
            self._trim(now)
            if len(self._window) >= self.max_per_minute:
                delay = max(0.0, WINDOW_SECONDS - (now - self._window[0]))
                logger.info(f"Per-minute request cap reached, sleeping {delay:.1f}s")
                self._sleep(delay)
                self._trim(self._clock())

            self._last_at = self._clock()
            self._window.append(self._last_at)
