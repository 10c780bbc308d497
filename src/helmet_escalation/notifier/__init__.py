"""Notifier implementations for alert and escalation delivery."""

from .base import (
    SMS,
    VOICE,
    DeliveryError,
    DeliveryReceipt,
    Notifier,
    available_notifiers,
    create_registered_notifier,
    notifier_metadata,
    register_notifier,
    unregister_notifier,
)
from .dry_run import DryRunNotifier, SentMessage
from .factory import build_notifier
from .metrics import DeliveryMetricsRegistry, get_delivery_registry
from .twilio import TwilioNotifier

__all__ = [
    "SMS",
    "VOICE",
    "DeliveryError",
    "DeliveryMetricsRegistry",
    "DeliveryReceipt",
    "DryRunNotifier",
    "Notifier",
    "SentMessage",
    "TwilioNotifier",
    "available_notifiers",
    "build_notifier",
    "create_registered_notifier",
    "get_delivery_registry",
    "notifier_metadata",
    "register_notifier",
    "unregister_notifier",
]
