"""Persistent JSONL logging for the escalation lifecycle."""

from __future__ import annotations

import json
import time
from threading import Lock
from typing import TYPE_CHECKING, Mapping, Optional

from .settings import EscalationSettings, get_settings

if TYPE_CHECKING:  # pragma: no cover
    from .scheduler import Ticket


def _ticket_fields(ticket: "Ticket") -> dict:
    return {
        "subject_id": ticket.subject_id,
        "sequence": ticket.sequence,
        "delay_seconds": round(ticket.delay, 6),
        "scheduled_at": ticket.scheduled_at,
    }


class EscalationEventLog:
    """Append structured events describing scheduled, fired and canceled escalations."""

    def __init__(self, settings: Optional[EscalationSettings] = None) -> None:
        self._settings = settings or get_settings().escalation
        self._enabled = bool(self._settings.event_log_enabled)
        self._path = self._settings.resolved_event_log_path
        self._lock = Lock()
        if self._enabled:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def path(self):
        return self._path

    def _write(self, payload: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        record = dict(payload)
        record.setdefault("timestamp", time.time())
        with self._lock:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, ensure_ascii=False) + "\n")

    def log_scheduled(self, ticket: "Ticket", *, superseded: "Ticket" | None = None) -> None:
        if not self._enabled:
            return
        entry = {"event": "scheduled", **_ticket_fields(ticket)}
        if superseded is not None:
            entry["superseded_sequence"] = superseded.sequence
            self._write({"event": "superseded", **_ticket_fields(superseded)})
        self._write(entry)

    def log_canceled(self, ticket: "Ticket", *, reason: str = "acknowledged") -> None:
        self._write({"event": "canceled", "reason": reason, **_ticket_fields(ticket)})

    def log_fired(self, ticket: "Ticket", *, duration_ms: float) -> None:
        self._write(
            {"event": "fired", "duration_ms": round(duration_ms, 4), **_ticket_fields(ticket)}
        )

    def log_failed(self, ticket: "Ticket", *, error: BaseException, duration_ms: float) -> None:
        self._write(
            {
                "event": "failed",
                "error": error.__class__.__name__,
                "message": str(error)[:500],
                "duration_ms": round(duration_ms, 4),
                **_ticket_fields(ticket),
            }
        )

    def log_shutdown(self, *, canceled: int) -> None:
        self._write({"event": "shutdown", "canceled": canceled})


_EVENT_LOG: EscalationEventLog | None = None


def get_event_log(settings: Optional[EscalationSettings] = None) -> EscalationEventLog:
    global _EVENT_LOG
    if _EVENT_LOG is None:
        _EVENT_LOG = EscalationEventLog(settings)
    return _EVENT_LOG


def reset_event_log() -> None:
    global _EVENT_LOG
    _EVENT_LOG = None


__all__ = ["EscalationEventLog", "get_event_log", "reset_event_log"]
