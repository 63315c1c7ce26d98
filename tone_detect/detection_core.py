from __future__ import annotations

import random
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Sequence, TypeVar

T = TypeVar("T")


class ConfigurationError(ValueError):
    """Rejected session or tone-bank configuration. No session is created."""


class PlaybackUnavailable(RuntimeError):
    """The audio output could not be initialised."""


class SessionState(StrEnum):
    IDLE = "idle"
    PREVIEWING_TARGET = "previewing_target"
    RUNNING = "running"
    FINISHED = "finished"


class SamplingOutcome(StrEnum):
    # Adjacency-free target placement gave up; the last candidate was kept.
    PLACEMENT_RETRY_EXHAUSTED = "placement_retry_exhausted"
    # Only one distractor pitch exists, so an immediate repeat was accepted.
    REPEAT_ACCEPTED = "repeat_accepted"


@dataclass(frozen=True, slots=True)
class Trial:
    index: int
    is_target: bool
    pitch: int
    onset_s: float | None = None
    response_s: float | None = None
    responded: bool = False

    def with_onset(self, onset_s: float) -> "Trial":
        if self.onset_s is not None:
            raise RuntimeError(f"trial {self.index} onset already recorded")
        return replace(self, onset_s=float(onset_s))

    def with_response(self, response_s: float) -> "Trial":
        if self.onset_s is None:
            raise RuntimeError(f"trial {self.index} has no onset")
        if self.responded:
            raise RuntimeError(f"trial {self.index} already has a response")
        if response_s < self.onset_s:
            raise RuntimeError(f"trial {self.index} response precedes onset")
        return replace(self, response_s=float(response_s), responded=True)

    @property
    def response_time_s(self) -> float | None:
        if self.onset_s is None or self.response_s is None:
            return None
        return self.response_s - self.onset_s


@dataclass(frozen=True, slots=True)
class Summary:
    hits: int
    misses: int
    false_alarms: int
    correct_rejections: int
    d_prime: float
    hit_rate: float = 0.0
    false_alarm_rate: float = 0.0
    mean_hit_rt_s: float | None = None

    def as_tuple(self) -> tuple[int, int, int, int, float]:
        return (self.hits, self.misses, self.false_alarms, self.correct_rejections, self.d_prime)


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    title: str
    state: SessionState
    run_id: int
    prompt: str
    input_hint: str
    current_index: int
    total_trials: int
    target_pitch: int | None
    target_name: str | None
    window_open: bool
    trials: tuple[Trial, ...]
    summary: Summary | None
    sampling: frozenset[SamplingOutcome] = frozenset()


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def sample(self, seq: Sequence[T], k: int) -> list[T]:
        return self._rng.sample(seq, k)
