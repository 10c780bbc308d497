from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from helmet_escalation.events import EscalationEventLog
from helmet_escalation.notifier import DeliveryError
from helmet_escalation.scheduler import (
    EscalationScheduler,
    InvalidInputError,
    SchedulerClosedError,
    SchedulingError,
)
from helmet_escalation.settings import EscalationSettings
from helmet_escalation.timers import TimerService


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, float]] = []
        self._lock = threading.Lock()
        self.event = threading.Event()

    def action(self, label: str):
        def _run() -> None:
            with self._lock:
                self.calls.append((label, time.monotonic()))
            self.event.set()

        return _run

    @property
    def labels(self) -> list[str]:
        with self._lock:
            return [label for label, _ in self.calls]


def test_fire_after_delay_runs_exactly_once(scheduler) -> None:
    recorder = _Recorder()
    ticket = scheduler.schedule("helmet-2", 0.05, recorder.action("call"))

    assert recorder.event.wait(2.0)
    time.sleep(0.1)

    assert recorder.labels == ["call"]
    assert recorder.calls[0][1] >= ticket.fire_at
    assert scheduler.pending("helmet-2") is None
    assert "helmet-2" not in scheduler
    assert scheduler.cancel("helmet-2") is False


def test_cancel_before_fire_prevents_action(scheduler) -> None:
    recorder = _Recorder()
    scheduler.schedule("helmet-1", 0.2, recorder.action("call"))

    assert scheduler.cancel("helmet-1") is True
    time.sleep(0.35)

    assert recorder.labels == []
    assert len(scheduler) == 0


def test_second_cancel_returns_false(scheduler) -> None:
    scheduler.schedule("helmet-1", 5.0, lambda: None)

    assert scheduler.cancel("helmet-1") is True
    assert scheduler.cancel("helmet-1") is False
    assert scheduler.cancel("never-scheduled") is False
    assert scheduler.cancel("") is False


def test_reschedule_supersedes_previous_entry(scheduler, wait_for) -> None:
    recorder = _Recorder()
    first = scheduler.schedule("helmet-3", 0.15, recorder.action("A"))
    second = scheduler.schedule("helmet-3", 0.05, recorder.action("B"))

    assert second.sequence > first.sequence
    assert scheduler.pending("helmet-3") == second
    assert len(scheduler) == 1

    assert wait_for(lambda: recorder.labels == ["B"])
    time.sleep(0.25)
    assert recorder.labels == ["B"]

    stats = scheduler.snapshot().stats
    assert stats.scheduled == 2
    assert stats.superseded == 1
    assert stats.fired == 1


def test_only_last_of_many_schedules_fires(scheduler, wait_for) -> None:
    recorder = _Recorder()
    for index in range(10):
        scheduler.schedule("helmet-9", 0.05, recorder.action(str(index)))

    assert wait_for(lambda: recorder.labels != [])
    time.sleep(0.1)
    assert recorder.labels == ["9"]


def test_timedelta_delay_is_accepted(scheduler) -> None:
    ticket = scheduler.schedule("helmet-1", timedelta(minutes=1), lambda: None)

    assert ticket.delay == 60.0
    assert ticket.fire_at > time.monotonic() + 59.0


@pytest.mark.parametrize(
    "subject, delay, action",
    [
        ("", 1.0, lambda: None),
        ("   ", 1.0, lambda: None),
        (None, 1.0, lambda: None),
        ("helmet-1", -0.001, lambda: None),
        ("helmet-1", timedelta(seconds=-1), lambda: None),
        ("helmet-1", float("nan"), lambda: None),
        ("helmet-1", float("inf"), lambda: None),
        ("helmet-1", "10", lambda: None),
        ("helmet-1", True, lambda: None),
        ("helmet-1", 1.0, "not callable"),
    ],
)
def test_invalid_input_is_rejected_without_side_effects(scheduler, subject, delay, action) -> None:
    scheduler.schedule("helmet-1", 5.0, lambda: None)
    before = scheduler.pending("helmet-1")

    with pytest.raises(InvalidInputError) as excinfo:
        scheduler.schedule(subject, delay, action)

    assert isinstance(excinfo.value, SchedulingError)
    assert isinstance(excinfo.value, ValueError)
    assert scheduler.pending("helmet-1") == before
    assert scheduler.snapshot().stats.scheduled == 1


def test_zero_delay_fires_promptly(scheduler) -> None:
    recorder = _Recorder()
    scheduler.schedule("helmet-0", 0, recorder.action("now"))

    assert recorder.event.wait(1.0)


def test_failed_action_is_isolated_and_reported(wait_for) -> None:
    failures: list[tuple[str, BaseException]] = []
    reported = threading.Event()

    def _on_failure(ticket, exc) -> None:
        failures.append((ticket.subject_id, exc))
        reported.set()

    def _broken() -> None:
        raise DeliveryError("twilio unreachable", channel="voice")

    recorder = _Recorder()
    with EscalationScheduler(
        max_workers=2,
        event_log=EscalationEventLog(EscalationSettings()),
        on_failure=_on_failure,
    ) as scheduler:
        scheduler.schedule("helmet-a", 0.02, _broken)
        scheduler.schedule("helmet-b", 0.04, recorder.action("ok"))

        assert reported.wait(2.0)
        assert recorder.event.wait(2.0)
        assert wait_for(lambda: scheduler.snapshot().stats.failed == 1)

        stats = scheduler.snapshot().stats
        assert stats.fired == 2
        assert stats.failed == 1
        assert failures[0][0] == "helmet-a"
        assert isinstance(failures[0][1], DeliveryError)

        # The scheduler keeps working for the failed subject too.
        scheduler.schedule("helmet-a", 0.01, recorder.action("retry-by-caller"))
        assert wait_for(lambda: "retry-by-caller" in recorder.labels)


def test_failure_hook_errors_do_not_escape(wait_for) -> None:
    def _hook(ticket, exc) -> None:
        raise RuntimeError("hook broke")

    with EscalationScheduler(
        max_workers=1,
        event_log=EscalationEventLog(EscalationSettings()),
        on_failure=_hook,
    ) as scheduler:
        scheduler.schedule("helmet-a", 0, lambda: 1 / 0)
        assert wait_for(lambda: scheduler.snapshot().stats.failed == 1)

        recorder = _Recorder()
        scheduler.schedule("helmet-b", 0, recorder.action("still-running"))
        assert recorder.event.wait(1.0)


def test_cancel_does_not_interrupt_running_action(scheduler) -> None:
    started = threading.Event()
    release = threading.Event()
    finished = threading.Event()

    def _slow() -> None:
        started.set()
        release.wait(2.0)
        finished.set()

    scheduler.schedule("helmet-1", 0, _slow)
    assert started.wait(1.0)

    assert scheduler.cancel("helmet-1") is False
    release.set()
    assert finished.wait(1.0)


def test_slow_action_does_not_block_other_subjects(scheduler) -> None:
    started = threading.Event()
    release = threading.Event()

    def _slow() -> None:
        started.set()
        release.wait(3.0)

    scheduler.schedule("helmet-slow", 0, _slow)
    assert started.wait(1.0)
    try:
        begin = time.monotonic()
        scheduler.schedule("helmet-other", 5.0, lambda: None)
        assert scheduler.cancel("helmet-other") is True
        assert time.monotonic() - begin < 0.5

        recorder = _Recorder()
        scheduler.schedule("helmet-fast", 0.02, recorder.action("fast"))
        assert recorder.event.wait(1.0)
    finally:
        release.set()


def test_shutdown_cancels_pending_and_refuses_new_work() -> None:
    recorder = _Recorder()
    scheduler = EscalationScheduler(max_workers=2, event_log=EscalationEventLog(EscalationSettings()))
    scheduler.schedule("helmet-1", 0.1, recorder.action("1"))
    scheduler.schedule("helmet-2", 0.1, recorder.action("2"))

    assert scheduler.shutdown() == 2
    assert scheduler.closed is True
    assert len(scheduler) == 0
    time.sleep(0.2)
    assert recorder.labels == []

    with pytest.raises(SchedulerClosedError):
        scheduler.schedule("helmet-3", 0.1, recorder.action("3"))
    assert scheduler.cancel("helmet-1") is False
    assert scheduler.shutdown() == 0


def test_shared_timer_service_is_left_running() -> None:
    timers = TimerService(max_workers=1)
    try:
        scheduler = EscalationScheduler(
            timer_service=timers,
            event_log=EscalationEventLog(EscalationSettings()),
        )
        scheduler.schedule("helmet-1", 5.0, lambda: None)
        assert scheduler.shutdown() == 1
        assert timers.closed is False
        assert timers.pending_count() == 0
    finally:
        timers.shutdown()


def test_schedule_on_stopped_timer_service_raises_closed_error() -> None:
    timers = TimerService(max_workers=1)
    timers.shutdown()
    scheduler = EscalationScheduler(
        timer_service=timers,
        event_log=EscalationEventLog(EscalationSettings()),
    )

    with pytest.raises(SchedulerClosedError):
        scheduler.schedule("helmet-1", 1.0, lambda: None)
    assert len(scheduler) == 0


def test_example_scenarios(scheduler, wait_for) -> None:
    recorder = _Recorder()

    scheduler.schedule("helmet-1", 0.3, recorder.action("helmet-1"))
    scheduler.schedule("helmet-2", 0.3, recorder.action("helmet-2"))
    scheduler.schedule("helmet-3", 0.3, recorder.action("helmet-3/A"))
    scheduler.schedule("helmet-3", 0.15, recorder.action("helmet-3/B"))

    time.sleep(0.05)
    assert scheduler.cancel("helmet-1") is True

    assert wait_for(lambda: "helmet-2" in recorder.labels)
    time.sleep(0.1)
    assert sorted(recorder.labels) == ["helmet-2", "helmet-3/B"]
    assert recorder.labels.index("helmet-3/B") < recorder.labels.index("helmet-2")


def test_snapshot_reports_pending_and_counters(scheduler) -> None:
    scheduler.schedule("helmet-1", 5.0, lambda: None)
    scheduler.schedule("helmet-2", 5.0, lambda: None)
    scheduler.cancel("helmet-2")

    snapshot = scheduler.snapshot()

    assert snapshot.pending == 1
    assert scheduler.pending_subjects() == ("helmet-1",)
    data = snapshot.to_dict()
    assert data["scheduled"] == 2
    assert data["canceled"] == 1
    assert data["closed"] is False


def test_action_can_shut_the_scheduler_down(scheduler, wait_for) -> None:
    results: list[object] = []
    done = threading.Event()

    def _stop() -> None:
        try:
            results.append(scheduler.shutdown())
        except Exception as exc:  # pragma: no cover - reported through the assertion
            results.append(exc)
        finally:
            done.set()

    scheduler.schedule("helmet-2", 5.0, lambda: None)
    scheduler.schedule("helmet-1", 0.0, _stop)

    assert done.wait(2.0)
    assert results == [1]
    assert scheduler.closed is True
    assert scheduler.pending_subjects() == ()
    assert wait_for(lambda: scheduler.snapshot().stats.fired == 1)
    with pytest.raises(SchedulerClosedError):
        scheduler.schedule("helmet-3", 1.0, lambda: None)
