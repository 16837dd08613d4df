"""
Fixed-window rate limiting for the generation endpoints.

The in-memory limiter is per process. Deployments running several workers
need a shared counter store behind the same `check(key)` interface.
"""

import math
import time
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

ANONYMOUS_KEY = "anonymous"

# Checked in order; the first header present wins
IDENTIFIER_HEADERS = ("x-forwarded-for", "x-real-ip", "remote-addr")


@dataclass(frozen=True)
class Decision:
    allowed: bool
    remaining: int
    reset_at: int  # epoch milliseconds
    limit: int

    def headers(self) -> dict:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimiter(Protocol):
    limit: int

    def check(self, key: str) -> Decision:
        ...

    def now_ms(self) -> int:
        ...


@dataclass
class _Record:
    count: int
    reset_at: int


class InMemoryRateLimiter:
    """Per-key fixed window counter.

    The first request in a window opens it with count=1. Requests are allowed
    while the count is below `limit`; after that they are rejected until the
    window's reset time passes, when the next request opens a fresh window.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.time,
        max_keys: int = 10000,
    ):
        self.limit = limit
        self.window_ms = int(window_seconds * 1000)
        self.max_keys = max_keys
        self._clock = clock
        self._records: "OrderedDict[str, _Record]" = OrderedDict()
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check(self, key: str) -> Decision:
        now = self.now_ms()
        with self._lock:
            record = self._records.get(key)

            if record is None or now >= record.reset_at:
                record = _Record(count=1, reset_at=now + self.window_ms)
                self._records[key] = record
                self._records.move_to_end(key)
                if len(self._records) > self.max_keys:
                    self._evict(now)
                return Decision(True, self.limit - 1, record.reset_at, self.limit)

            self._records.move_to_end(key)
            if record.count >= self.limit:
                return Decision(False, 0, record.reset_at, self.limit)

            record.count += 1
            return Decision(True, self.limit - record.count, record.reset_at, self.limit)

    def sweep(self) -> int:
        """Drop every expired record. Returns the number removed."""
        with self._lock:
            return self._sweep(self.now_ms())

    def __len__(self):
        return len(self._records)

    def _sweep(self, now: int) -> int:
        expired = [k for k, r in self._records.items() if now >= r.reset_at]
        for k in expired:
            del self._records[k]
        return len(expired)

    def _evict(self, now: int):
        removed = self._sweep(now)
        while len(self._records) > self.max_keys:
            self._records.popitem(last=False)
            removed += 1
        logger.debug(f"Rate limiter evicted {removed} records")


def client_identifier(headers: Mapping[str, str]) -> str:
    """Derive the rate limit key from forwarding headers.

    Clients without any of these headers share the "anonymous" bucket.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in IDENTIFIER_HEADERS:
        value = lowered.get(name)
        if value:
            return value.split(",")[0].strip()
    return ANONYMOUS_KEY


def seconds_until(reset_at: int, now_ms: Optional[int] = None) -> int:
    """Whole seconds (rounded up) until `reset_at`, never negative."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return max(0, math.ceil((reset_at - now_ms) / 1000))
