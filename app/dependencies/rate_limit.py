"""Per-client, per-path request throttling for write endpoints."""
import math
import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional

from fastapi import Request

from app.core.config import settings
from app.utils.errors import TooManyRequests
from app.utils.helpers import get_client_ip


class SlidingWindowLimiter:
    """In-memory sliding window. One process only; a multi-worker deploy needs a shared store."""

    def __init__(
        self,
        limit: Optional[int] = None,
        period_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit or settings.RATE_LIMIT_REQUESTS
        self.period = period_seconds or settings.RATE_LIMIT_PERIOD_SECONDS
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key: str) -> None:
        """Record one request for `key`, raising `TooManyRequests` once the window is full."""
        now = self._clock()
        with self._lock:
            window = self._windows[key]
            while window and window[0] <= now - self.period:
                window.popleft()
            if len(window) >= self.limit:
                retry_after = max(1, math.ceil(window[0] + self.period - now))
                raise TooManyRequests(retry_after)
            window.append(now)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


limiter = SlidingWindowLimiter()


async def rate_limit(request: Request) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        return
    limiter.hit(f"{get_client_ip(request)}:{request.url.path}")
