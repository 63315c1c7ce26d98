from __future__ import annotations

import heapq
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Monotonic clock abstraction.

    Session logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class MonotonicClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


@dataclass(order=True, slots=True)
class _Timer:
    due_s: float
    seq: int
    run_id: int = field(compare=False)
    label: str = field(compare=False)
    callback: Callable[[], None] = field(compare=False)


class Scheduler:
    """One-shot timers, fired from the host loop via ``run_due``.

    Every timer belongs to a run id so a whole run can be cancelled at once.
    Timers with equal deadlines fire in the order they were scheduled.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[_Timer] = []
        self._seq = itertools.count()

    def call_at(self, due_s: float, callback: Callable[[], None], *, run_id: int, label: str = "") -> None:
        timer = _Timer(
            due_s=float(due_s),
            seq=next(self._seq),
            run_id=int(run_id),
            label=label,
            callback=callback,
        )
        heapq.heappush(self._heap, timer)

    def cancel_run(self, run_id: int) -> int:
        """Cancel every pending timer of ``run_id``. Returns how many were cancelled."""

        kept = [t for t in self._heap if t.run_id != run_id]
        n = len(self._heap) - len(kept)
        heapq.heapify(kept)
        self._heap = kept
        return n

    def run_due(self, now_s: float | None = None) -> int:
        """Fire every timer due at or before ``now_s``. Returns how many fired.

        Callbacks may schedule further timers; those fire in the same call
        when they are already due.
        """

        now = self._clock.now() if now_s is None else float(now_s)
        fired = 0
        while self._heap and self._heap[0].due_s <= now:
            timer = heapq.heappop(self._heap)
            logger.debug("Timer %s fired (run %d, due %.3f)", timer.label or "?", timer.run_id, timer.due_s)
            timer.callback()
            fired += 1
        return fired
