from __future__ import annotations

import logging

import pytest

from tone_detect.detection_core import ConfigurationError, SamplingOutcome, SeededRng
from tone_detect.pitches import WHITE_KEYS_C4
from tone_detect.sequencer import TargetChoice, TrialSequencer, has_adjacent


def _build(seed: int, **overrides: object):
    kwargs: dict[str, object] = {
        "total_trials": 16,
        "num_targets": 4,
        "pitch_set": WHITE_KEYS_C4,
        "target": TargetChoice.random(),
        "allow_immediate_repeat": True,
    }
    kwargs.update(overrides)
    return TrialSequencer(SeededRng(seed)).build(**kwargs)  # type: ignore[arg-type]


@pytest.mark.parametrize("allow_repeat", [True, False])
def test_length_target_count_and_pitch_membership_across_seeds(allow_repeat: bool) -> None:
    for seed in range(200):
        plan = _build(seed, allow_immediate_repeat=allow_repeat)

        assert len(plan.trials) == 16
        assert [t.index for t in plan.trials] == list(range(16))
        assert sum(1 for t in plan.trials if t.is_target) == 4
        assert plan.target_pitch in WHITE_KEYS_C4
        for t in plan.trials:
            assert t.pitch in WHITE_KEYS_C4
            assert (t.pitch == plan.target_pitch) == t.is_target
            assert t.onset_s is None and t.response_s is None and not t.responded


def test_no_immediate_repeats_when_disallowed_across_seeds() -> None:
    for seed in range(300):
        plan = _build(seed, allow_immediate_repeat=False)
        pitches = plan.pitches
        assert all(a != b for a, b in zip(pitches, pitches[1:])), (seed, pitches)
        assert not has_adjacent(plan.target_indices)
        assert plan.sampling == frozenset()


def test_fixed_target_is_used() -> None:
    for seed in range(20):
        plan = _build(seed, target=TargetChoice.fixed(67))
        assert plan.target_pitch == 67
        assert all(t.pitch == 67 for t in plan.trials if t.is_target)


def test_random_target_varies_with_seed() -> None:
    targets = {_build(seed).target_pitch for seed in range(60)}
    assert len(targets) > 1


def test_same_seed_same_plan() -> None:
    assert _build(1234, allow_immediate_repeat=False) == _build(1234, allow_immediate_repeat=False)


def test_single_distractor_pool_accepts_repeat_and_flags_it(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        plan = _build(
            5,
            total_trials=10,
            num_targets=2,
            pitch_set=(60, 62),
            target=TargetChoice.fixed(60),
            allow_immediate_repeat=False,
        )

    assert sum(1 for t in plan.trials if t.is_target) == 2
    assert all(t.pitch == 62 for t in plan.trials if not t.is_target)
    assert SamplingOutcome.REPEAT_ACCEPTED in plan.sampling
    assert "accepting an immediate repeat" in caplog.text


def test_impossible_spacing_exhausts_retries_but_terminates(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        plan = _build(3, total_trials=4, num_targets=3, allow_immediate_repeat=False)

    assert sum(1 for t in plan.trials if t.is_target) == 3
    assert SamplingOutcome.PLACEMENT_RETRY_EXHAUSTED in plan.sampling
    assert "gave up" in caplog.text


def test_all_targets_needs_no_distractor() -> None:
    plan = _build(0, total_trials=3, num_targets=3, pitch_set=(60,))
    assert plan.pitches == (60, 60, 60)


@pytest.mark.parametrize(
    "overrides",
    [
        {"num_targets": 17},
        {"num_targets": -1},
        {"total_trials": 0},
        {"pitch_set": ()},
        {"target": TargetChoice.fixed(61)},
        {"pitch_set": (60,)},
    ],
)
def test_bad_configuration_is_rejected(overrides: dict[str, object]) -> None:
    with pytest.raises(ConfigurationError):
        _build(0, **overrides)


def test_has_adjacent() -> None:
    assert has_adjacent([3, 1, 2]) is True
    assert has_adjacent([0, 2, 4]) is False
    assert has_adjacent([]) is False
