"""Backoff and circuit-breaking for notifiers that talk to a remote provider."""

from __future__ import annotations

import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential delay between delivery attempts, capped and jittered.

    Attempt ``n`` (1-based) waits ``base_delay * factor ** (n - 1)`` seconds,
    capped at ``max_delay``, plus up to ``jitter`` random seconds.
    """

    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.5
    factor: float = 2.0

    def compute(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        delay = min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay += random.random() * self.jitter
        return max(0.0, delay)

    def iter_delays(self, retries: int) -> Iterator[float]:
        return (self.compute(attempt) for attempt in range(1, retries + 1))


class CircuitBreaker:
    """Refuse deliveries for ``recovery_time`` after a burst of failures.

    The breaker opens once ``failure_threshold`` failures land within a
    sliding ``window`` of seconds. Every thread delivering through the same
    notifier shares one breaker.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        recovery_time: float = 30.0,
        window: float = 10.0,
    ) -> None:
        for label, value in (
            ("failure_threshold", failure_threshold),
            ("recovery_time", recovery_time),
            ("window", window),
        ):
            if value <= 0:
                raise ValueError(f"{label} must be positive")
        self.failure_threshold = int(failure_threshold)
        self.recovery_time = float(recovery_time)
        self.window = float(window)
        self._lock = threading.Lock()
        self._failures: Deque[float] = deque()
        self._opened_at: float | None = None

    def _close_locked(self) -> None:
        self._failures.clear()
        self._opened_at = None

    def _cooling_down(self, now: float) -> bool:
        return self._opened_at is not None and now - self._opened_at < self.recovery_time

    def allow_request(self) -> bool:
        """Whether a delivery may go out; closes an open breaker once it has cooled down."""

        with self._lock:
            if self._opened_at is None:
                return True
            if self._cooling_down(time.monotonic()):
                return False
            self._close_locked()
            return True

    def record_success(self) -> None:
        with self._lock:
            self._close_locked()

    def record_failure(self) -> None:
        now = time.monotonic()
        with self._lock:
            self._failures.append(now)
            while self._failures and now - self._failures[0] > self.window:
                self._failures.popleft()
            if len(self._failures) >= self.failure_threshold:
                self._opened_at = now

    def reset(self) -> None:
        with self._lock:
            self._close_locked()

    @property
    def is_open(self) -> bool:
        # Read-only: the breaker only closes through allow_request/record_success.
        with self._lock:
            return self._cooling_down(time.monotonic())


__all__ = ["BackoffPolicy", "CircuitBreaker"]
