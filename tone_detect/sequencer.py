from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .detection_core import ConfigurationError, SamplingOutcome, SeededRng, Trial

logger = logging.getLogger(__name__)

MAX_PLACEMENT_ATTEMPTS = 2000
MAX_DISTRACTOR_REDRAWS = 32


@dataclass(frozen=True, slots=True)
class TargetChoice:
    """Either a fixed target pitch or a uniform draw from the pitch set."""

    pitch: int | None = None

    @classmethod
    def fixed(cls, pitch: int) -> "TargetChoice":
        return cls(pitch=int(pitch))

    @classmethod
    def random(cls) -> "TargetChoice":
        return cls(pitch=None)

    @property
    def is_random(self) -> bool:
        return self.pitch is None


@dataclass(frozen=True, slots=True)
class TrialPlan:
    target_pitch: int
    trials: tuple[Trial, ...]
    sampling: frozenset[SamplingOutcome] = frozenset()

    @property
    def target_indices(self) -> tuple[int, ...]:
        return tuple(t.index for t in self.trials if t.is_target)

    @property
    def pitches(self) -> tuple[int, ...]:
        return tuple(t.pitch for t in self.trials)


def has_adjacent(indices: Sequence[int]) -> bool:
    ordered = sorted(indices)
    return any(b - a == 1 for a, b in zip(ordered, ordered[1:]))


class TrialSequencer:
    """Builds a randomized trial list under target-count and repeat constraints.

    - Exactly ``num_targets`` trials carry the target pitch.
    - With immediate repeats disallowed, target slots are never adjacent and a
      distractor never repeats the pitch before it. The one accepted exception
      is a pitch set with a single distractor pitch: two distractor trials in a
      row must then share it, and the plan is flagged ``REPEAT_ACCEPTED``.
    - Retry loops are bounded; exhausting one is a flagged outcome, not an error.
    """

    def __init__(self, rng: SeededRng) -> None:
        self._rng = rng

    def build(
        self,
        *,
        total_trials: int,
        num_targets: int,
        pitch_set: Sequence[int],
        target: TargetChoice,
        allow_immediate_repeat: bool,
    ) -> TrialPlan:
        pool = tuple(dict.fromkeys(int(p) for p in pitch_set))
        if total_trials <= 0:
            raise ConfigurationError("total_trials must be > 0")
        if not (0 <= num_targets <= total_trials):
            raise ConfigurationError("num_targets must be in [0, total_trials]")
        if not pool:
            raise ConfigurationError("pitch set must not be empty")

        target_pitch = self.resolve_target(target, pool)
        distractors = tuple(p for p in pool if p != target_pitch)
        if num_targets < total_trials and not distractors:
            raise ConfigurationError("pitch set has no distractor pitch besides the target")

        sampling: set[SamplingOutcome] = set()
        slots = self._place_targets(
            total_trials=total_trials,
            num_targets=num_targets,
            allow_immediate_repeat=allow_immediate_repeat,
            sampling=sampling,
        )

        trials: list[Trial] = []
        prev: int | None = None
        for i in range(total_trials):
            if i in slots:
                pitch = target_pitch
            else:
                pitch = self._draw_distractor(
                    distractors=distractors,
                    target_pitch=target_pitch,
                    prev=None if allow_immediate_repeat else prev,
                    pool=pool,
                    sampling=sampling,
                )
            trials.append(Trial(index=i, is_target=i in slots, pitch=pitch))
            prev = pitch

        return TrialPlan(target_pitch=target_pitch, trials=tuple(trials), sampling=frozenset(sampling))

    def resolve_target(self, target: TargetChoice, pool: Sequence[int]) -> int:
        if target.is_random:
            return int(self._rng.choice(pool))
        assert target.pitch is not None
        if target.pitch not in pool:
            raise ConfigurationError(f"target pitch {target.pitch} is not in the pitch set")
        return target.pitch

    def _place_targets(
        self,
        *,
        total_trials: int,
        num_targets: int,
        allow_immediate_repeat: bool,
        sampling: set[SamplingOutcome],
    ) -> frozenset[int]:
        slots = self._rng.sample(range(total_trials), num_targets)
        if allow_immediate_repeat:
            return frozenset(slots)

        attempts = 1
        while has_adjacent(slots):
            if attempts >= MAX_PLACEMENT_ATTEMPTS:
                logger.warning(
                    "Non-adjacent placement of %d targets in %d trials gave up after %d attempts",
                    num_targets,
                    total_trials,
                    attempts,
                )
                sampling.add(SamplingOutcome.PLACEMENT_RETRY_EXHAUSTED)
                break
            slots = self._rng.sample(range(total_trials), num_targets)
            attempts += 1
        return frozenset(slots)

    def _draw_distractor(
        self,
        *,
        distractors: Sequence[int],
        target_pitch: int,
        prev: int | None,
        pool: Sequence[int],
        sampling: set[SamplingOutcome],
    ) -> int:
        cand = int(self._rng.choice(distractors))
        if prev is None or cand != prev:
            return cand

        for _ in range(MAX_DISTRACTOR_REDRAWS):
            cand = int(self._rng.choice(distractors))
            if cand != prev:
                return cand

        fallback = [p for p in pool if p != target_pitch and p != prev]
        if fallback:
            return int(self._rng.choice(fallback))

        logger.warning("Only one distractor pitch (%d); accepting an immediate repeat", prev)
        sampling.add(SamplingOutcome.REPEAT_ACCEPTED)
        return cand
