"""Keyed, cancelable delayed escalations with at most one pending entry per subject.

Every subject (for example a helmet id) owns at most one
:class:`PendingEscalation` in the registry. A new :meth:`EscalationScheduler.schedule`
call for the same subject supersedes the previous entry, and
:meth:`EscalationScheduler.cancel` removes it. When a timer elapses the
scheduler re-checks, under the registry lock, that the registry still holds
*that exact entry* before running its action; whoever removes the entry first
(the fire path or a cancel) decides the outcome.

Actions always run on the timer service's worker pool, outside the registry
lock. A failing action is logged and counted but never retried.
"""

from __future__ import annotations

import itertools
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple

from .events import EscalationEventLog, get_event_log
from .timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)

EscalationAction = Callable[[], Any]
FailureHook = Callable[["Ticket", BaseException], None]


class SchedulingError(RuntimeError):
    """Raised when an escalation cannot be scheduled."""


class InvalidInputError(SchedulingError, ValueError):
    """Empty subject id, negative delay or a non-callable action."""


class SchedulerClosedError(SchedulingError):
    """The scheduler has been shut down and accepts no new escalations."""


class EscalationState(str, Enum):
    PENDING = "pending"
    FIRED = "fired"
    FAILED = "failed"
    CANCELED = "canceled"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class Ticket:
    """Receipt for a scheduled escalation; ``fire_at`` is on the monotonic clock."""

    subject_id: str
    sequence: int
    delay: float
    fire_at: float
    scheduled_at: float


@dataclass(eq=False)
class PendingEscalation:
    subject_id: str
    sequence: int
    delay: float
    action: EscalationAction = field(repr=False)
    scheduled_at: float = field(default_factory=time.time)
    fire_at: float = 0.0
    handle: Optional[TimerHandle] = field(default=None, repr=False)
    state: EscalationState = EscalationState.PENDING

    @property
    def ticket(self) -> Ticket:
        return Ticket(
            subject_id=self.subject_id,
            sequence=self.sequence,
            delay=self.delay,
            fire_at=self.fire_at,
            scheduled_at=self.scheduled_at,
        )


@dataclass
class SchedulerStats:
    """Lifetime counters for one scheduler."""

    scheduled: int = 0
    superseded: int = 0
    canceled: int = 0
    fired: int = 0
    failed: int = 0
    total_action_ms: float = 0.0

    def to_dict(self) -> Dict[str, float | int]:
        return {
            "scheduled": self.scheduled,
            "superseded": self.superseded,
            "canceled": self.canceled,
            "fired": self.fired,
            "failed": self.failed,
            "total_action_ms": round(self.total_action_ms, 4),
        }


@dataclass
class SchedulerSnapshot:
    """Serializable view of the scheduler status."""

    closed: bool
    pending: int
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> Dict[str, object]:
        return {"closed": self.closed, "pending": self.pending, **self.stats.to_dict()}


def _validate_subject(subject_id: object) -> str:
    if not isinstance(subject_id, str) or not subject_id.strip():
        raise InvalidInputError("subject_id must be a non-empty string")
    return subject_id


def _coerce_delay(delay: object) -> float:
    if isinstance(delay, timedelta):
        seconds = delay.total_seconds()
    elif isinstance(delay, (int, float)) and not isinstance(delay, bool):
        seconds = float(delay)
    else:
        raise InvalidInputError(f"delay must be seconds or a timedelta, got {type(delay).__name__}")
    if math.isnan(seconds) or math.isinf(seconds):
        raise InvalidInputError("delay must be finite")
    if seconds < 0:
        raise InvalidInputError("delay must be >= 0")
    return seconds


class EscalationScheduler:
    """Registry of pending escalations keyed by subject id.

    Parameters
    ----------
    timer_service:
        Timer backend to arm timers on. When omitted the scheduler creates
        and owns one, and :meth:`shutdown` stops it.
    max_workers:
        Worker pool size for an owned timer service; defaults to the
        ``escalation.max_workers`` setting.
    event_log:
        JSONL lifecycle log; defaults to the process-wide instance.
    on_failure:
        Called with the ticket and exception when an action raises.
    """

    def __init__(
        self,
        *,
        timer_service: Optional[TimerService] = None,
        max_workers: Optional[int] = None,
        event_log: Optional[EscalationEventLog] = None,
        on_failure: Optional[FailureHook] = None,
    ) -> None:
        if timer_service is None:
            if max_workers is None:
                from .settings import get_settings

                max_workers = get_settings().escalation.max_workers
            timer_service = TimerService(max_workers=max_workers)
            self._owns_timers = True
        else:
            self._owns_timers = False
        self._timers = timer_service
        self._events = event_log or get_event_log()
        self._on_failure = on_failure
        self._lock = threading.Lock()
        self._registry: Dict[str, PendingEscalation] = {}
        self._sequence = itertools.count(1)
        self._stats = SchedulerStats()
        self._closed = False

    # ------------------------------------------------------------------ helpers
    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._registry)

    def __contains__(self, subject_id: object) -> bool:
        with self._lock:
            return subject_id in self._registry

    def pending(self, subject_id: str) -> Optional[Ticket]:
        """Ticket of the escalation waiting for ``subject_id``, if any."""

        with self._lock:
            entry = self._registry.get(subject_id)
            return entry.ticket if entry is not None else None

    def pending_subjects(self) -> Tuple[str, ...]:
        """Sorted ids of every subject with a pending escalation."""

        with self._lock:
            return tuple(sorted(self._registry))

    # --------------------------------------------------------------- schedule
    def schedule(
        self,
        subject_id: str,
        delay: float | timedelta,
        action: EscalationAction,
    ) -> Ticket:
        """Arm ``action`` to run after ``delay`` unless canceled or superseded first."""

        subject_id = _validate_subject(subject_id)
        seconds = _coerce_delay(delay)
        if not callable(action):
            raise InvalidInputError("action must be callable")

        superseded: Optional[Ticket] = None
        with self._lock:
            if self._closed:
                raise SchedulerClosedError("scheduler has been shut down")
            entry = PendingEscalation(
                subject_id=subject_id,
                sequence=next(self._sequence),
                delay=seconds,
                action=action,
            )
            try:
                entry.handle = self._timers.call_later(seconds, partial(self._fire, entry))
            except RuntimeError as exc:
                raise SchedulerClosedError("timer service has been shut down") from exc
            entry.fire_at = entry.handle.deadline
            previous = self._registry.pop(subject_id, None)
            if previous is not None:
                previous.state = EscalationState.SUPERSEDED
                self._timers.cancel(previous.handle)
                self._stats.superseded += 1
                superseded = previous.ticket
            self._registry[subject_id] = entry
            self._stats.scheduled += 1
            ticket = entry.ticket
            self._events.log_scheduled(ticket, superseded=superseded)

        if superseded is not None:
            logger.info(
                "Escalation #%s for %s superseded by #%s",
                superseded.sequence,
                subject_id,
                ticket.sequence,
            )
        logger.info("Escalation #%s scheduled in %.1fs for %s", ticket.sequence, seconds, subject_id)
        return ticket

    # ----------------------------------------------------------------- cancel
    def cancel(self, subject_id: str) -> bool:
        """Remove the pending escalation for ``subject_id``.

        Returns ``False`` when nothing was pending, which is the normal outcome
        for an acknowledgment arriving after the escalation already ran.
        """

        if not isinstance(subject_id, str) or not subject_id.strip():
            return False
        with self._lock:
            entry = self._registry.pop(subject_id, None)
            if entry is None:
                return False
            entry.state = EscalationState.CANCELED
            self._timers.cancel(entry.handle)
            self._stats.canceled += 1
            ticket = entry.ticket
            self._events.log_canceled(ticket)

        logger.info("Escalation #%s canceled for %s", ticket.sequence, subject_id)
        return True

    # ------------------------------------------------------------------- fire
    def _fire(self, entry: PendingEscalation) -> None:
        with self._lock:
            if self._registry.get(entry.subject_id) is not entry:
                return
            del self._registry[entry.subject_id]
            entry.state = EscalationState.FIRED
            self._stats.fired += 1
        ticket = entry.ticket

        start = time.perf_counter()
        try:
            entry.action()
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000.0
            with self._lock:
                entry.state = EscalationState.FAILED
                self._stats.failed += 1
                self._stats.total_action_ms += duration_ms
            logger.exception("Escalation #%s for %s failed", ticket.sequence, ticket.subject_id)
            self._events.log_failed(ticket, error=exc, duration_ms=duration_ms)
            self._report_failure(ticket, exc)
            return

        duration_ms = (time.perf_counter() - start) * 1000.0
        with self._lock:
            self._stats.total_action_ms += duration_ms
        logger.info("Escalation #%s fired for %s", ticket.sequence, ticket.subject_id)
        self._events.log_fired(ticket, duration_ms=duration_ms)

    def _report_failure(self, ticket: Ticket, exc: BaseException) -> None:
        if self._on_failure is None:
            return
        try:
            self._on_failure(ticket, exc)
        except Exception:
            logger.exception("Escalation failure hook raised for %s", ticket.subject_id)

    # -------------------------------------------------------------- telemetry
    def snapshot(self) -> SchedulerSnapshot:
        """Point-in-time copy of the counters and pending count."""

        with self._lock:
            stats = SchedulerStats(**vars(self._stats))
            return SchedulerSnapshot(closed=self._closed, pending=len(self._registry), stats=stats)

    # --------------------------------------------------------------- lifecycle
    def shutdown(self, wait: bool = True) -> int:
        """Cancel every pending escalation and stop an owned timer service.

        Actions that already started are allowed to finish; with ``wait`` the
        call blocks until they do. Returns the number of canceled escalations.
        """

        with self._lock:
            if self._closed:
                return 0
            self._closed = True
            entries = list(self._registry.values())
            self._registry.clear()
            for entry in entries:
                entry.state = EscalationState.CANCELED
                self._timers.cancel(entry.handle)
            self._stats.canceled += len(entries)

        if self._owns_timers:
            self._timers.shutdown(wait=wait)
        for entry in entries:
            self._events.log_canceled(entry.ticket, reason="shutdown")
        self._events.log_shutdown(canceled=len(entries))
        logger.info("Escalation scheduler stopped; %s pending escalation(s) canceled", len(entries))
        return len(entries)

    def __enter__(self) -> "EscalationScheduler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


__all__ = [
    "EscalationAction",
    "EscalationScheduler",
    "EscalationState",
    "InvalidInputError",
    "PendingEscalation",
    "SchedulerClosedError",
    "SchedulerSnapshot",
    "SchedulerStats",
    "SchedulingError",
    "Ticket",
]
