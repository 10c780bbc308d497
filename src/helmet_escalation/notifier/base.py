"""Notifier interface, delivery errors and the name -> factory registry."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, TypeVar

from .resilience import CircuitBreaker

SMS = "sms"
VOICE = "voice"


class DeliveryError(RuntimeError):
    """Raised when a notifier cannot deliver a message or place a call."""

    def __init__(
        self,
        message: str,
        *,
        channel: Optional[str] = None,
        destination: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.channel = channel
        self.destination = destination
        self.status_code = status_code


@dataclass(frozen=True)
class DeliveryReceipt:
    """Provider acknowledgement for one accepted delivery."""

    notifier: str
    channel: str
    destination: str
    provider_id: Optional[str] = None
    status: Optional[str] = None


def _breaker_from_config(config: Mapping[str, Any]) -> CircuitBreaker:
    return CircuitBreaker(
        failure_threshold=max(1, int(config.get("circuit_breaker_failures", 3))),
        recovery_time=max(0.1, float(config.get("circuit_breaker_recovery", 30.0))),
        window=max(0.1, float(config.get("circuit_breaker_window", 10.0))),
    )


class Notifier(ABC):
    """Delivery capability: an immediate text plus a higher-urgency escalation.

    ``config`` is the ``notifier`` settings section as a plain mapping; the
    ``circuit_breaker_*`` keys configure the breaker every delivery checks.
    """

    def __init__(self, name: str, config: Mapping[str, Any]):
        self.name = name
        self.config = dict(config)
        self._breaker = _breaker_from_config(self.config)

    @abstractmethod
    def send_immediate(self, destination: str, payload: str) -> DeliveryReceipt:
        """Send a text message (``payload`` is the body)."""

    @abstractmethod
    def send_escalation(self, destination: str, payload: str) -> DeliveryReceipt:
        """Place a voice call (``payload`` is the call-instructions URL)."""

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    def _ensure_circuit_closed(self, channel: str, destination: str) -> None:
        if self._breaker.allow_request():
            return
        raise DeliveryError(
            f"Notifier '{self.name}' circuit breaker is open; temporarily refusing deliveries",
            channel=channel,
            destination=destination,
        )

    # Event-loop callers (webhook handlers) use these instead of blocking.
    async def async_send_immediate(self, destination: str, payload: str) -> DeliveryReceipt:
        return await asyncio.to_thread(self.send_immediate, destination, payload)

    async def async_send_escalation(self, destination: str, payload: str) -> DeliveryReceipt:
        return await asyncio.to_thread(self.send_escalation, destination, payload)


class NotifierFactory(Protocol):
    def __call__(self, name: str, settings: Mapping[str, Any]) -> Notifier:
        ...


_NotifierT = TypeVar("_NotifierT", bound=Notifier)


@dataclass
class _Registration:
    factory: Callable[[str, Mapping[str, Any]], Notifier]
    notifier_cls: Optional[type] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def same_source(self, other: "_Registration") -> bool:
        if self.factory is other.factory:
            return True
        return self.notifier_cls is not None and self.notifier_cls is other.notifier_cls


_REGISTRY: Dict[str, _Registration] = {}


def _registration_for(
    factory: NotifierFactory | type[_NotifierT],
    metadata: Mapping[str, Any] | None,
) -> _Registration:
    meta = dict(metadata or {})
    if isinstance(factory, type) and issubclass(factory, Notifier):
        meta.setdefault("class", f"{factory.__module__}.{factory.__name__}")
        return _Registration(factory=factory, notifier_cls=factory, metadata=meta)
    if not callable(factory):
        raise TypeError("Factory must be callable or a Notifier subclass")
    return _Registration(factory=factory, metadata=meta)


def register_notifier(
    *names: str,
    factory: NotifierFactory | type[_NotifierT],
    overwrite: bool = False,
    metadata: Mapping[str, Any] | None = None,
) -> None:
    """Make ``factory`` available under each of ``names`` (case-insensitive).

    Registering the same factory or class again is a no-op. Claiming a name
    already held by something else raises :class:`DeliveryError` unless
    ``overwrite`` is set.
    """

    if not names:
        raise ValueError("register_notifier() needs at least one name")
    registration = _registration_for(factory, metadata)
    for name in names:
        key = name.lower()
        current = _REGISTRY.get(key)
        if current is not None and not overwrite:
            if current.same_source(registration):
                continue
            raise DeliveryError(f"Notifier '{name}' is already registered")
        _REGISTRY[key] = registration


def unregister_notifier(name: str) -> None:
    _REGISTRY.pop(name.lower(), None)


def available_notifiers() -> tuple[str, ...]:
    return tuple(sorted(_REGISTRY))


def _lookup(name: str, message: str) -> _Registration:
    registration = _REGISTRY.get(name.lower())
    if registration is None:
        raise DeliveryError(message.format(name=name))
    return registration


def notifier_metadata(name: str) -> Mapping[str, Any]:
    return dict(_lookup(name, "Notifier '{name}' is not registered").metadata)


def create_registered_notifier(name: str, settings: Mapping[str, Any]) -> Notifier:
    """Build the notifier registered under ``name`` from a settings mapping."""

    return _lookup(name, "Unknown notifier '{name}'").factory(name, settings)


__all__ = [
    "SMS",
    "VOICE",
    "DeliveryError",
    "DeliveryReceipt",
    "Notifier",
    "NotifierFactory",
    "available_notifiers",
    "create_registered_notifier",
    "notifier_metadata",
    "register_notifier",
    "unregister_notifier",
]
