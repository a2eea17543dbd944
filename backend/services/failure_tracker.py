"""Consecutive-failure counters used to raise degradation alerts."""
from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class FailureTracker:
    """
    Count consecutive upstream failures for one external service.

    Reaching the threshold logs a single ERROR line prefixed with
    ``[VERIFIER-ALERT]`` so log-based alerting can match it; the first
    success afterwards logs a recovery line and resets the counter.
    """

    def __init__(self, name: str, threshold: int):
        self.name = name
        self.threshold = threshold
        self._count = 0
        self._lock = threading.Lock()

    @property
    def consecutive_failures(self) -> int:
        return self._count

    @property
    def tripped(self) -> bool:
        return self._count >= self.threshold

    def record_failure(self, reason: str = "") -> None:
        with self._lock:
            self._count += 1
            count = self._count
        if count == self.threshold:
            logger.error(
                "[VERIFIER-ALERT] %s degraded after %d consecutive failures: %s",
                self.name,
                count,
                reason or "unknown error",
            )
        else:
            logger.warning("%s request failed (%d consecutive): %s", self.name, count, reason)

    def record_success(self) -> None:
        with self._lock:
            was_tripped = self._count >= self.threshold
            self._count = 0
        if was_tripped:
            logger.info("[VERIFIER-ALERT] %s recovered", self.name)

    def reset(self) -> None:
        with self._lock:
            self._count = 0
