"""
Thread-safe token bucket used to pace calls to each external service.

Every verifier owns its own bucket; buckets never share a budget.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class TokenBucket:
    def __init__(
        self,
        capacity: int,
        refill_amount: int,
        refill_interval: float,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if capacity <= 0 or refill_amount <= 0 or refill_interval <= 0:
            raise ValueError("capacity, refill_amount and refill_interval must be positive")
        self.capacity = capacity
        self.refill_amount = refill_amount
        self.refill_interval = refill_interval
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._last_grant: Optional[float] = None

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed < self.refill_interval:
            return
        periods = int(elapsed // self.refill_interval)
        self._tokens = min(float(self.capacity), self._tokens + periods * self.refill_amount)
        self._last_refill += periods * self.refill_interval

    def _wait_time(self, now: float) -> float:
        wait = 0.0
        if self._tokens < 1:
            wait = self._last_refill + self.refill_interval - now
        if self.min_interval and self._last_grant is not None:
            wait = max(wait, self._last_grant + self.min_interval - now)
        return max(wait, 0.0)

    @property
    def available(self) -> int:
        with self._lock:
            self._refill(self._clock())
            return int(self._tokens)

    def try_acquire(self) -> bool:
        """Take a token without waiting; False when none is available right now."""
        with self._lock:
            now = self._clock()
            self._refill(now)
            if self._wait_time(now) > 0:
                return False
            self._grant(now)
            return True

    def acquire(self) -> None:
        """Block until a token is available, then take it."""
        # Holding the lock while sleeping serializes callers in arrival order.
        with self._lock:
            while True:
                now = self._clock()
                self._refill(now)
                wait = self._wait_time(now)
                if wait <= 0:
                    self._grant(now)
                    return
                self._sleep(wait)

    def _grant(self, now: float) -> None:
        self._tokens -= 1
        self._last_grant = now
