# SPDX-License-Identifier: AGPL-3.0-or-later
"""Alert notification workflow: immediate SMS, delayed voice-call escalation, all-clear."""

from __future__ import annotations

import logging
from typing import Optional

from .events import EscalationEventLog
from .messages import format_alert_sms, format_coworker_safe_sms, format_family_safe_sms
from .models import Alert, Worker
from .notifier import DeliveryError, Notifier, build_notifier
from .phone import normalize_phone
from .scheduler import EscalationScheduler, Ticket
from .settings import AppSettings, get_settings
from .telemetry import TelemetryExporter

logger = logging.getLogger(__name__)


class AlertNotificationService:
    """Tie alert/acknowledgment events to a notifier and an escalation scheduler.

    The escalation for a worker is keyed by helmet id, so a second alert from
    the same helmet replaces the pending call instead of adding one.
    """

    def __init__(
        self,
        notifier: Notifier,
        scheduler: EscalationScheduler,
        *,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self.notifier = notifier
        self.scheduler = scheduler
        self.settings = settings or get_settings()
        self.telemetry: Optional[TelemetryExporter] = None

    # ------------------------------------------------------------------ helpers
    def _phone(self, number: Optional[str]) -> Optional[str]:
        return normalize_phone(number, self.settings.notifier.default_country_code)

    def _send_sms(self, destination: Optional[str], body: str) -> bool:
        if destination is None:
            return False
        try:
            self.notifier.send_immediate(destination, body)
        except DeliveryError as exc:
            logger.error("Failed to send SMS to %s: %s", destination, exc)
            return False
        return True

    # ------------------------------------------------------------------- alerts
    def raise_alert(self, worker: Worker, alert: Alert) -> Optional[Ticket]:
        """Text the family now and schedule the voice call.

        Returns ``None`` when the worker has no family number, in which case
        nothing is sent or scheduled. A failed SMS still schedules the call.
        """

        family = self._phone(worker.family_phone_number)
        if family is None:
            logger.warning("No family number for helmet %s; skipping alert", worker.helmet_id)
            return None
        self._send_sms(family, format_alert_sms(worker, alert))
        return self.schedule_voice_call(worker)

    def schedule_voice_call(self, worker: Worker) -> Optional[Ticket]:
        """Arm the family voice call for ``worker`` after the configured grace period.

        A later alert for the same helmet replaces the earlier call. Returns
        ``None`` when the worker has no usable family number.
        """

        family = self._phone(worker.family_phone_number)
        if family is None:
            return None
        notifier = self.notifier
        voice_url = self.settings.notifier.voice_url

        def _call_family() -> None:
            notifier.send_escalation(family, voice_url)

        return self.scheduler.schedule(
            worker.helmet_id,
            self.settings.escalation.delay_seconds,
            _call_family,
        )

    def alert_coworker(self, receiver: Worker, injured: Worker, alert: Alert) -> bool:
        """Text ``receiver`` about ``injured``'s alert; ``False`` when nothing was delivered."""

        return self._send_sms(self._phone(receiver.phone_number), format_alert_sms(injured, alert))

    # ---------------------------------------------------------- acknowledgments
    def acknowledge(self, worker: Worker, alert: Alert) -> bool:
        """Send the family all-clear and cancel the pending call.

        Returns whether a pending escalation was canceled.
        """

        self._send_sms(self._phone(worker.family_phone_number), format_family_safe_sms(worker))
        return self.cancel_escalation(worker.helmet_id)

    def notify_coworker_safe(self, receiver: Worker, injured: Worker, alert: Alert) -> bool:
        """Send ``receiver`` the all-clear for ``injured`` and cancel the pending call."""

        self._send_sms(
            self._phone(receiver.phone_number),
            format_coworker_safe_sms(injured, alert),
        )
        return self.cancel_escalation(injured.helmet_id)

    def cancel_escalation(self, helmet_id: str) -> bool:
        """Drop the pending voice call for ``helmet_id``; ``False`` if none was waiting."""

        canceled = self.scheduler.cancel(helmet_id)
        if canceled:
            logger.info("Scheduled voice call cancelled for helmet %s", helmet_id)
        else:
            logger.debug("No pending voice call for helmet %s", helmet_id)
        return canceled

    # ---------------------------------------------------------------- lifecycle
    def close(self) -> int:
        """Stop the scheduler; pending voice calls are dropped, not placed."""

        return self.scheduler.shutdown()

    def __enter__(self) -> "AlertNotificationService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_service(
    settings: Optional[AppSettings] = None,
    *,
    notifier: Optional[Notifier] = None,
) -> AlertNotificationService:
    """Wire notifier, scheduler, event log and telemetry from ``settings``."""

    settings = settings or get_settings()
    notifier = notifier or build_notifier(settings.notifier)
    telemetry = TelemetryExporter(settings=settings.telemetry)
    scheduler = EscalationScheduler(
        max_workers=settings.escalation.max_workers,
        event_log=EscalationEventLog(settings.escalation),
        on_failure=telemetry.capture_failure,
    )
    telemetry.scheduler = scheduler
    service = AlertNotificationService(notifier, scheduler, settings=settings)
    service.telemetry = telemetry
    return service


__all__ = ["AlertNotificationService", "build_service"]
