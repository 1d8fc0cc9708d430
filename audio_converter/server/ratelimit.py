"""Fixed-window, per-client limit on conversion requests.

WHY: Each conversion downloads a file and runs ffmpeg, so a single
client can exhaust disk and CPU quickly. Excess requests are rejected
outright; nothing is queued.

HOW: A dict maps client key → (window start, count), guarded by a
threading.Lock. A new window starts once the previous one has elapsed.
Expired entries are pruned opportunistically on each hit.

RULES:
- max_requests <= 0 disables the limiter
- hit() raises RateLimitedError with retry_after in seconds
- Time comes from time.monotonic() (patchable in tests)
"""

from __future__ import annotations

import threading
import time
from typing import Dict, Tuple

from audio_converter.errors import RateLimitedError


class RateLimiter:
    """Counts requests per client within a fixed time window."""

    def __init__(self, max_requests: int, window_seconds: float) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def hit(self, key: str) -> None:
        """Record one request for ``key``.

        Raises:
            RateLimitedError: the client has used up the current window.
        """
        if not self.enabled:
            return

        now = time.monotonic()
        with self._lock:
            self._prune(now)
            start, count = self._windows.get(key, (now, 0))
            if count >= self.max_requests:
                raise RateLimitedError(retry_after=max(0.0, start + self.window_seconds - now))
            self._windows[key] = (start, count + 1)

    def _prune(self, now: float) -> None:
        expired = [
            key for key, (start, _) in self._windows.items()
            if now - start >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
