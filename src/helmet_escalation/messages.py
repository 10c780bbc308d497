"""Text bodies for alert and all-clear SMS."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from .models import Alert, Worker


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown"
    return value.isoformat(timespec="seconds")


def format_alert_sms(worker: Worker, alert: Alert) -> str:
    """Body sent to family and co-workers when ``worker``'s helmet raises ``alert``."""

    return "\n".join(
        [
            "🚨 ALERT!",
            f"Worker: {worker.name}",
            f"Helmet: {worker.helmet_id}",
            f"Message: {alert.message}",
            f"Location: {alert.maps_link}",
        ]
    )


def format_coworker_safe_sms(worker: Worker, alert: Alert) -> str:
    """All-clear text for a coworker, echoing the original alert."""

    return "\n".join(
        [
            "✅ SAFE",
            f"Worker: {worker.name}",
            f"Helmet: {worker.helmet_id}",
            f"Acknowledged at: {_format_time(alert.acknowledged_at)}",
        ]
    )


def format_family_safe_sms(worker: Worker) -> str:
    """One-line all-clear text for the family."""

    return f"✅ Worker {worker.name} (Helmet: {worker.helmet_id}) is SAFE now."


__all__ = ["format_alert_sms", "format_coworker_safe_sms", "format_family_safe_sms"]
