"""Telemetry exporters for scheduler and delivery metrics."""

from __future__ import annotations

import json
import time
from typing import Dict, List, Mapping, Optional

import sentry_sdk

from .notifier.metrics import DeliveryMetricsRegistry, get_delivery_registry
from .scheduler import EscalationScheduler, SchedulerSnapshot, Ticket
from .settings import TelemetrySettings, get_settings


def _format_labels(labels: Mapping[str, str]) -> str:
    if not labels:
        return ""
    payload = ",".join(f"{key}={json.dumps(value)}" for key, value in sorted(labels.items()))
    return f"{{{payload}}}"


class TelemetryExporter:
    """Expose scheduler and delivery counters to Prometheus and Sentry."""

    def __init__(
        self,
        *,
        scheduler: Optional[EscalationScheduler] = None,
        settings: Optional[TelemetrySettings] = None,
        delivery_registry: Optional[DeliveryMetricsRegistry] = None,
    ) -> None:
        self.settings = settings or get_settings().telemetry
        self.scheduler = scheduler
        self._delivery = delivery_registry or get_delivery_registry()
        self._sentry_inited = False

    # ----------------------------------------------------------------- snapshots
    def scheduler_snapshot(self) -> SchedulerSnapshot:
        if self.scheduler is None:
            return SchedulerSnapshot(closed=True, pending=0)
        return self.scheduler.snapshot()

    def snapshot_dict(self) -> Dict[str, object]:
        return {
            "scheduler": self.scheduler_snapshot().to_dict(),
            "delivery": self._delivery.snapshot().to_dict(),
        }

    def snapshot_json(self) -> str:
        return json.dumps(self.snapshot_dict(), ensure_ascii=False, indent=2)

    # -------------------------------------------------------------- prometheus
    def render_prometheus(self, *, extra_labels: Optional[Mapping[str, str]] = None) -> str:
        """Render the telemetry snapshot using the Prometheus exposition format."""

        if not self.settings.enable_prometheus:
            raise RuntimeError("Prometheus export is disabled in settings")
        base_labels = dict(self.settings.labels)
        base_labels.update(extra_labels or {})
        snapshot = self.scheduler_snapshot()
        stats = snapshot.stats

        lines: List[str] = [
            "# HELP helmet_escalation_pending Escalations currently waiting to fire.",
            "# TYPE helmet_escalation_pending gauge",
            f"helmet_escalation_pending{_format_labels(base_labels)} {snapshot.pending}",
            "# HELP helmet_escalation_outcomes_total Escalations by lifecycle outcome.",
            "# TYPE helmet_escalation_outcomes_total counter",
        ]
        for outcome, value in (
            ("scheduled", stats.scheduled),
            ("superseded", stats.superseded),
            ("canceled", stats.canceled),
            ("fired", stats.fired),
            ("failed", stats.failed),
        ):
            labels = dict(base_labels)
            labels["outcome"] = outcome
            lines.append(f"helmet_escalation_outcomes_total{_format_labels(labels)} {value}")
        lines.append("# HELP helmet_escalation_action_ms_total Time spent running escalation actions.")
        lines.append("# TYPE helmet_escalation_action_ms_total counter")
        lines.append(
            "helmet_escalation_action_ms_total"
            f"{_format_labels(base_labels)} {round(stats.total_action_ms, 4)}"
        )

        delivery = self._delivery.snapshot()
        lines.append("# HELP helmet_notifier_deliveries_total Delivery attempts grouped by status.")
        lines.append("# TYPE helmet_notifier_deliveries_total counter")
        for stat in delivery.stats:
            labels = dict(base_labels)
            labels["notifier"] = stat.notifier
            labels["channel"] = stat.channel
            success = dict(labels, status="success")
            failure = dict(labels, status="failure")
            lines.append(f"helmet_notifier_deliveries_total{_format_labels(success)} {stat.delivered}")
            lines.append(f"helmet_notifier_deliveries_total{_format_labels(failure)} {stat.failed}")
        lines.append("# HELP helmet_notifier_latency_ms_total Cumulative provider latency.")
        lines.append("# TYPE helmet_notifier_latency_ms_total counter")
        for stat in delivery.stats:
            labels = dict(base_labels, notifier=stat.notifier, channel=stat.channel)
            lines.append(
                "helmet_notifier_latency_ms_total"
                f"{_format_labels(labels)} {round(stat.latency_ms_total, 4)}"
            )
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------ sentry
    def _ensure_sentry(self) -> bool:
        if self._sentry_inited:
            return True
        if not self.settings.sentry_dsn:
            return False
        if not sentry_sdk.get_client().is_active():
            sentry_sdk.init(
                dsn=self.settings.sentry_dsn,
                environment=self.settings.environment,
                release=self.settings.release,
                traces_sample_rate=0.0,
                default_integrations=False,
            )
        self._sentry_inited = True
        return True

    def capture_failure(self, ticket: Ticket, exc: BaseException) -> None:
        """Scheduler ``on_failure`` hook forwarding failed escalations to Sentry."""

        if not self._ensure_sentry():
            return
        tags = dict(self.settings.labels)
        tags["subject_id"] = ticket.subject_id
        sentry_sdk.capture_exception(
            exc,
            tags=tags,
            extras={"sequence": ticket.sequence, "delay_seconds": ticket.delay},
        )

    def push_sentry(self) -> str:
        """Send the telemetry snapshot as a Sentry event."""

        if not self._ensure_sentry():
            raise RuntimeError("Sentry DSN is not configured")
        event = {
            "level": "info",
            "timestamp": time.time(),
            "message": "helmet-escalation telemetry",
            "extra": {"telemetry": self.snapshot_dict()},
            "tags": dict(self.settings.labels),
        }
        sentry_sdk.capture_event(event)
        return "ok"


__all__ = ["TelemetryExporter"]
