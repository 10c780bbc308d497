"""Notifier that logs deliveries instead of sending them."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from .base import SMS, VOICE, DeliveryError, DeliveryReceipt, Notifier, register_notifier
from .metrics import DeliveryMetricsRegistry, get_delivery_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentMessage:
    channel: str
    destination: str
    payload: str
    sent_at: float = field(default_factory=time.time)


class DryRunNotifier(Notifier):
    """Record deliveries in memory.

    Used when no provider credentials are configured. ``fail_channels`` makes
    every delivery on the listed channels raise :class:`DeliveryError`.
    """

    def __init__(
        self,
        name: str = "dry-run",
        config: Optional[Mapping[str, Any]] = None,
        *,
        metrics: Optional[DeliveryMetricsRegistry] = None,
    ):
        super().__init__(name, config or {})
        self.fail_channels = set(self.config.get("fail_channels", ()))
        self._metrics = metrics or get_delivery_registry()
        self._lock = threading.Lock()
        self._sent: List[SentMessage] = []

    @property
    def sent(self) -> List[SentMessage]:
        with self._lock:
            return list(self._sent)

    def messages(self, channel: str) -> List[SentMessage]:
        return [message for message in self.sent if message.channel == channel]

    def _deliver(self, channel: str, destination: str, payload: str) -> DeliveryReceipt:
        if not destination:
            raise DeliveryError("destination is required", channel=channel)
        if channel in self.fail_channels:
            self._metrics.record_failure(self.name, channel, latency_ms=0.0, error="DeliveryError")
            raise DeliveryError(
                f"{channel} delivery disabled for {self.name}",
                channel=channel,
                destination=destination,
            )
        with self._lock:
            self._sent.append(SentMessage(channel=channel, destination=destination, payload=payload))
            sequence = len(self._sent)
        self._metrics.record_success(self.name, channel, latency_ms=0.0)
        logger.info("[dry-run] %s to %s: %s", channel, destination, payload)
        return DeliveryReceipt(
            notifier=self.name,
            channel=channel,
            destination=destination,
            provider_id=f"dry-{sequence}",
            status="recorded",
        )

    def send_immediate(self, destination: str, payload: str) -> DeliveryReceipt:
        return self._deliver(SMS, destination, payload)

    def send_escalation(self, destination: str, payload: str) -> DeliveryReceipt:
        return self._deliver(VOICE, destination, payload)


register_notifier(
    "dry-run",
    "dry_run",
    factory=DryRunNotifier,
    metadata={"provider": "local", "transport": "memory"},
    overwrite=True,
)


__all__ = ["DryRunNotifier", "SentMessage"]
