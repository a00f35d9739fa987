"""Explicit, instance-owned state: response cache and rate limiter."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from .models import BatchResponse

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ResponseCache:
    """Short-lived cache of batch responses keyed by URL set and services."""

    def __init__(self, ttl: float = 30.0, clock: Clock = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, BatchResponse]] = {}

    @staticmethod
    def key_for(urls: Iterable[str], services: Iterable[str]) -> str:
        return ",".join(sorted(urls)) + "|" + ",".join(sorted(services))

    def get(self, key: str) -> Optional[BatchResponse]:
        self.purge()
        entry = self._entries.get(key)
        if entry is None:
            return None
        logger.debug("Cache hit for %s", key)
        return entry[1]

    def put(self, key: str, response: BatchResponse) -> None:
        if self.ttl <= 0:
            return
        self._entries[key] = (self._clock(), response)

    def purge(self) -> None:
        now = self._clock()
        expired = [k for k, (stored, _) in self._entries.items() if now - stored >= self.ttl]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter per client key."""

    def __init__(
        self, max_requests: int = 10, window: float = 60.0, clock: Clock = time.monotonic
    ):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        self.purge(now)
        state = self._windows.get(key)
        if state is None or now >= state.reset_at:
            self._windows[key] = _Window(count=1, reset_at=now + self.window)
            return True
        if state.count >= self.max_requests:
            logger.warning(
                "Rate limit exceeded for %s (resets in %.0fs)", key, state.reset_at - now
            )
            return False
        state.count += 1
        return True

    def remaining(self, key: str) -> int:
        state = self._windows.get(key)
        if state is None or self._clock() >= state.reset_at:
            return self.max_requests
        return max(0, self.max_requests - state.count)

    def retry_after(self, key: str) -> int:
        state = self._windows.get(key)
        if state is None:
            return 0
        return max(0, math.ceil(state.reset_at - self._clock()))

    def purge(self, now: Optional[float] = None) -> None:
        """Drop windows that have already closed."""
        if now is None:
            now = self._clock()
        expired = [k for k, state in self._windows.items() if now >= state.reset_at]
        for key in expired:
            del self._windows[key]

    def __len__(self) -> int:
        return len(self._windows)

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)
