from __future__ import annotations

from dataclasses import dataclass

from tone_detect.scheduler import Scheduler


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def test_timers_fire_in_deadline_then_schedule_order() -> None:
    clock = FakeClock()
    sched = Scheduler(clock)
    fired: list[str] = []

    sched.call_at(2.0, lambda: fired.append("late"), run_id=1)
    sched.call_at(1.0, lambda: fired.append("a"), run_id=1)
    sched.call_at(1.0, lambda: fired.append("b"), run_id=1)

    assert sched.run_due() == 0
    clock.advance(1.0)
    assert sched.run_due() == 2
    assert fired == ["a", "b"]
    clock.advance(1.0)
    assert sched.run_due() == 1
    assert fired == ["a", "b", "late"]
    clock.advance(5.0)
    assert sched.run_due() == 0


def test_cancel_run_only_touches_that_run() -> None:
    clock = FakeClock()
    sched = Scheduler(clock)
    fired: list[int] = []

    sched.call_at(0.5, lambda: fired.append(1), run_id=1)
    sched.call_at(0.5, lambda: fired.append(1), run_id=1)
    sched.call_at(0.5, lambda: fired.append(2), run_id=2)
    assert sched.cancel_run(1) == 2
    assert sched.cancel_run(1) == 0

    clock.advance(1.0)
    assert sched.run_due() == 1
    assert fired == [2]


def test_explicit_now_overrides_clock() -> None:
    clock = FakeClock()
    sched = Scheduler(clock)
    fired: list[str] = []
    sched.call_at(3.0, lambda: fired.append("x"), run_id=0)

    assert sched.run_due(now_s=2.5) == 0
    assert sched.run_due(now_s=3.0) == 1
    assert fired == ["x"]


def test_callback_chains_fire_within_one_call_when_already_due() -> None:
    clock = FakeClock()
    sched = Scheduler(clock)
    fired: list[float] = []

    def tick() -> None:
        fired.append(clock.now())
        if len(fired) < 3:
            sched.call_at(0.0, tick, run_id=0)

    sched.call_at(0.0, tick, run_id=0)
    sched.run_due()
    assert fired == [0.0, 0.0, 0.0]
