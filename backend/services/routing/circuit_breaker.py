"""
Circuit breaker guarding calls to the external routing provider.

CLOSED: calls go through, consecutive failures are counted.
OPEN: calls are refused with CircuitOpenError until the reset timeout passes.
HALF_OPEN: one trial call decides between CLOSED and OPEN again.
"""

import logging
import threading
import time

from services.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(self, name, failure_threshold=5, reset_timeout=60, clock=time.monotonic):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = self.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._next_attempt = 0.0

    @property
    def state(self):
        with self._lock:
            return self._state

    def call(self, fn, *args, **kwargs):
        """Run fn through the breaker. Raises CircuitOpenError while open."""
        with self._lock:
            if self._state == self.OPEN:
                if self._clock() < self._next_attempt:
                    raise CircuitOpenError(f"Circuit breaker is OPEN for {self.name}")
                self._state = self.HALF_OPEN
                logger.info("Circuit breaker HALF_OPEN for %s", self.name)

        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self):
        with self._lock:
            self._failure_count = 0
            self._success_count += 1
            if self._state == self.HALF_OPEN:
                self._state = self.CLOSED
                logger.info("Circuit breaker CLOSED for %s", self.name)

    def _on_failure(self):
        with self._lock:
            self._failure_count += 1
            if self._state == self.HALF_OPEN or self._failure_count >= self.failure_threshold:
                self._state = self.OPEN
                self._next_attempt = self._clock() + self.reset_timeout
                logger.error(
                    "Circuit breaker OPEN for %s (failures=%s, threshold=%s)",
                    self.name, self._failure_count, self.failure_threshold,
                )

    def get_state(self):
        with self._lock:
            return {
                "state": self._state,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
            }
