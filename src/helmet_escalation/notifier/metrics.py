"""In-memory delivery counters per notifier and channel."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Tuple


@dataclass
class DeliveryStats:
    """Attempts made through one notifier on one channel (``sms`` or ``voice``)."""

    notifier: str
    channel: str
    attempts: int = 0
    delivered: int = 0
    failed: int = 0
    latency_ms_total: float = 0.0
    last_error: Optional[str] = None

    def record(self, latency_ms: float, error: Optional[str] = None) -> None:
        self.attempts += 1
        self.latency_ms_total += max(0.0, latency_ms)
        if error is None:
            self.delivered += 1
        else:
            self.failed += 1
        self.last_error = error

    @property
    def mean_latency_ms(self) -> float:
        return self.latency_ms_total / self.attempts if self.attempts else 0.0

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["latency_ms_total"] = round(self.latency_ms_total, 4)
        payload["mean_latency_ms"] = round(self.mean_latency_ms, 4)
        return payload


@dataclass
class DeliveryMetricsSnapshot:
    collected_at: float
    stats: List[DeliveryStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {"collected_at": self.collected_at, "channels": [s.to_dict() for s in self.stats]}


class DeliveryMetricsRegistry:
    """Thread-safe accumulator shared by notifiers and the telemetry exporter."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._stats: Dict[Tuple[str, str], DeliveryStats] = {}

    def _record(self, notifier: str, channel: str, latency_ms: float, error: Optional[str]) -> None:
        with self._lock:
            stats = self._stats.setdefault((notifier, channel), DeliveryStats(notifier, channel))
            stats.record(latency_ms, error)

    def record_success(self, notifier: str, channel: str, *, latency_ms: float) -> None:
        self._record(notifier, channel, latency_ms, None)

    def record_failure(self, notifier: str, channel: str, *, latency_ms: float, error: str) -> None:
        self._record(notifier, channel, latency_ms, error)

    def snapshot(self) -> DeliveryMetricsSnapshot:
        with self._lock:
            copies = [DeliveryStats(**asdict(stats)) for _, stats in sorted(self._stats.items())]
        return DeliveryMetricsSnapshot(collected_at=time.time(), stats=copies)

    def reset(self) -> None:
        with self._lock:
            self._stats = {}


_DEFAULT_REGISTRY = DeliveryMetricsRegistry()


def get_delivery_registry() -> DeliveryMetricsRegistry:
    """Process-wide registry used when a notifier is built without one."""
    return _DEFAULT_REGISTRY


__all__ = [
    "DeliveryMetricsRegistry",
    "DeliveryMetricsSnapshot",
    "DeliveryStats",
    "get_delivery_registry",
]
