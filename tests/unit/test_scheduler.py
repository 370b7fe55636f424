from __future__ import annotations

from typing import List

from voicelog.core.scheduler import ManualScheduler, PollingScheduler


def test_manual_scheduler_runs_due_callbacks_in_order() -> None:
    scheduler = ManualScheduler()
    fired: List[str] = []
    scheduler.call_later(5, lambda: fired.append("late"))
    scheduler.call_later(1, lambda: fired.append("early"))
    scheduler.call_later(1, lambda: fired.append("early-second"))

    assert scheduler.advance(0.5) == 0
    assert scheduler.advance(5) == 3
    assert fired == ["early", "early-second", "late"]
    assert scheduler.pending == 0


def test_cancelled_timer_never_fires() -> None:
    scheduler = ManualScheduler(start=10.0)
    fired: List[int] = []
    handle = scheduler.call_later(2, lambda: fired.append(1))
    assert scheduler.pending == 1
    handle.cancel()
    assert scheduler.pending == 0
    scheduler.advance(5)
    assert fired == []
    assert scheduler.now() == 15.0


def test_callbacks_can_schedule_more_work() -> None:
    scheduler = ManualScheduler()
    fired: List[str] = []

    def first() -> None:
        fired.append("first")
        scheduler.call_later(0, lambda: fired.append("chained"))

    scheduler.call_later(1, first)
    scheduler.advance(1)
    assert fired == ["first", "chained"]


def test_polling_scheduler_uses_clock() -> None:
    now = [100.0]
    scheduler = PollingScheduler(clock=lambda: now[0])
    fired: List[int] = []
    scheduler.call_later(3, lambda: fired.append(1))
    assert scheduler.poll() == 0
    now[0] = 103.0
    assert scheduler.poll() == 1
    assert fired == [1]
