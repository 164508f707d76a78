"""Process-wide permit pool for outbound API calls."""

import threading
import time
from contextlib import contextmanager
from typing import Iterator


class RateLimiter:
    """Thread-safe limiter bounding both concurrent calls and calls per second."""

    def __init__(self, calls_per_second: float, max_concurrent: int = 1):
        if calls_per_second <= 0:
            raise ValueError("calls_per_second must be > 0")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._interval = 1.0 / calls_per_second
        self._permits = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._last_call = 0.0

    def _wait_for_slot(self) -> None:
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_call
            if elapsed < self._interval:
                time.sleep(self._interval - elapsed)
            self._last_call = time.monotonic()

    @contextmanager
    def permit(self) -> Iterator[None]:
        """Hold one permit for the duration of a call; released even when the call fails."""
        self._permits.acquire()
        try:
            self._wait_for_slot()
            yield
        finally:
            self._permits.release()
