# SPDX-License-Identifier: AGPL-3.0-or-later
"""Public interface for :mod:`helmet_escalation` with lightweight imports."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict, Tuple

__all__ = [
    "Alert",
    "AlertNotificationService",
    "DeliveryError",
    "EscalationScheduler",
    "EscalationState",
    "InvalidInputError",
    "Notifier",
    "SchedulerClosedError",
    "SchedulingError",
    "Ticket",
    "TimerService",
    "Worker",
    "build_notifier",
    "build_service",
    "get_settings",
    "normalize_phone",
]

_LAZY_ATTRS: Dict[str, Tuple[str, str]] = {
    "Alert": (".models", "Alert"),
    "AlertNotificationService": (".service", "AlertNotificationService"),
    "DeliveryError": (".notifier", "DeliveryError"),
    "EscalationScheduler": (".scheduler", "EscalationScheduler"),
    "EscalationState": (".scheduler", "EscalationState"),
    "InvalidInputError": (".scheduler", "InvalidInputError"),
    "Notifier": (".notifier", "Notifier"),
    "SchedulerClosedError": (".scheduler", "SchedulerClosedError"),
    "SchedulingError": (".scheduler", "SchedulingError"),
    "Ticket": (".scheduler", "Ticket"),
    "TimerService": (".timers", "TimerService"),
    "Worker": (".models", "Worker"),
    "build_notifier": (".notifier", "build_notifier"),
    "build_service": (".service", "build_service"),
    "get_settings": (".settings", "get_settings"),
    "normalize_phone": (".phone", "normalize_phone"),
}

if TYPE_CHECKING:  # pragma: no cover - import-time only for type checkers
    from .models import Alert, Worker
    from .notifier import DeliveryError, Notifier, build_notifier
    from .phone import normalize_phone
    from .scheduler import (
        EscalationScheduler,
        EscalationState,
        InvalidInputError,
        SchedulerClosedError,
        SchedulingError,
        Ticket,
    )
    from .service import AlertNotificationService, build_service
    from .settings import get_settings
    from .timers import TimerService


def __getattr__(name: str) -> Any:
    try:
        module_name, attr_name = _LAZY_ATTRS[name]
    except KeyError as exc:
        raise AttributeError(name) from exc
    module = import_module(module_name, package=__name__)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:  # pragma: no cover - simple delegation
    return sorted(__all__)
