import logging
import threading
import time
from typing import Dict, Optional, Tuple

from fastapi import Request

import config
from errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter keyed by client address.

    State lives in process memory, so separate workers or instances each
    keep their own counts. Keys whose window has ended are swept out at most
    once per window, so the map only holds clients seen recently.
    """

    def __init__(self, limit: int, window_seconds: int, message: str):
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._next_sweep: Optional[float] = None
        self._lock = threading.Lock()

    def tracked_keys(self) -> int:
        return len(self._windows)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self.window_seconds

    def hit(self, key: str, now: Optional[float] = None) -> Optional[int]:
        """Count one request; return seconds to wait if it is over the limit."""
        now = time.monotonic() if now is None else now
        with self._lock:
            if self._next_sweep is None or now >= self._next_sweep:
                self._sweep(now)
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            if count > self.limit:
                return max(1, int(started + self.window_seconds - now))
        return None

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_sweep = None


general_limiter = RateLimiter(
    config.RATE_LIMIT_MAX,
    config.RATE_LIMIT_WINDOW_SECONDS,
    "Too many requests, please try again later.",
)
auth_limiter = RateLimiter(
    config.AUTH_RATE_LIMIT_MAX,
    config.RATE_LIMIT_WINDOW_SECONDS,
    "Too many authentication attempts, please try again later.",
)


def limiters_for(path: str):
    if not path.startswith("/api"):
        return []
    if path.startswith("/api/auth"):
        return [general_limiter, auth_limiter]
    return [general_limiter]


def enforce_rate_limit(request: Request) -> None:
    client = request.client.host if request.client else "unknown"
    for limiter in limiters_for(request.url.path):
        retry_after = limiter.hit(client)
        if retry_after:
            logger.warning("Rate limit exceeded for %s on %s", client, request.url.path)
            raise RateLimitError(limiter.message, retry_after)
