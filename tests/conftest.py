from __future__ import annotations

import time
from typing import Callable

import pytest

from helmet_escalation.events import EscalationEventLog, reset_event_log
from helmet_escalation.scheduler import EscalationScheduler
from helmet_escalation.settings import EscalationSettings, reset_settings_cache


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    for key in ("HELMET_ESCALATION_SETTINGS_PATH", "HELMET_ESCALATION_DOTENV"):
        monkeypatch.delenv(key, raising=False)
    reset_settings_cache()
    reset_event_log()
    yield
    reset_settings_cache()
    reset_event_log()


@pytest.fixture
def scheduler():
    sched = EscalationScheduler(
        max_workers=4,
        event_log=EscalationEventLog(EscalationSettings()),
    )
    yield sched
    sched.shutdown()


def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    return _wait_for
