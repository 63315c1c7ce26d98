from __future__ import annotations

import math
from collections.abc import Iterable
from enum import StrEnum

from .detection_core import Summary, Trial

# Winitzki's constant for the closed-form inverse error function.
_WINITZKI_A = 0.147


class Outcome(StrEnum):
    HIT = "hit"
    MISS = "miss"
    FALSE_ALARM = "false_alarm"
    CORRECT_REJECTION = "correct_rejection"


def within_window(onset_s: float, response_s: float, *, response_window_ms: float) -> bool:
    """Shared edge test for the live collector and the scorer."""

    return (response_s - onset_s) * 1000.0 <= float(response_window_ms)


def responded_within_window(trial: Trial, *, response_window_ms: float) -> bool:
    if not trial.responded or trial.onset_s is None or trial.response_s is None:
        return False
    return within_window(trial.onset_s, trial.response_s, response_window_ms=response_window_ms)


def classify(trial: Trial, *, response_window_ms: float) -> Outcome:
    responded = responded_within_window(trial, response_window_ms=response_window_ms)
    if trial.is_target:
        return Outcome.HIT if responded else Outcome.MISS
    return Outcome.FALSE_ALARM if responded else Outcome.CORRECT_REJECTION


def erfinv(x: float) -> float:
    """Winitzki approximation of the inverse error function on (-1, 1).

    Relative error is around 2e-3, plenty for a d' shown to two decimals.
    """

    if not (-1.0 < x < 1.0):
        raise ValueError("erfinv is defined on the open interval (-1, 1)")
    ln = math.log(1.0 - x * x)
    t = 2.0 / (math.pi * _WINITZKI_A) + ln / 2.0
    root = math.sqrt(t * t - ln / _WINITZKI_A)
    return math.copysign(math.sqrt(max(0.0, root - t)), x)


def probit(p: float) -> float:
    """Inverse standard-normal CDF."""

    if not (0.0 < p < 1.0):
        raise ValueError("probit is defined on the open interval (0, 1)")
    return math.sqrt(2.0) * erfinv(2.0 * p - 1.0)


def corrected_rates(
    *, hits: int, misses: int, false_alarms: int, correct_rejections: int
) -> tuple[float, float]:
    # Log-linear (Hautus) correction keeps both rates strictly inside (0, 1).
    hit_rate = (hits + 0.5) / (hits + misses + 1.0)
    fa_rate = (false_alarms + 0.5) / (false_alarms + correct_rejections + 1.0)
    return hit_rate, fa_rate


def d_prime(*, hits: int, misses: int, false_alarms: int, correct_rejections: int) -> float:
    hit_rate, fa_rate = corrected_rates(
        hits=hits,
        misses=misses,
        false_alarms=false_alarms,
        correct_rejections=correct_rejections,
    )
    return probit(hit_rate) - probit(fa_rate)


def score_trials(trials: Iterable[Trial], *, response_window_ms: float) -> Summary:
    counts = {o: 0 for o in Outcome}
    hit_rts: list[float] = []
    for trial in trials:
        outcome = classify(trial, response_window_ms=response_window_ms)
        counts[outcome] += 1
        if outcome is Outcome.HIT:
            assert trial.response_time_s is not None
            hit_rts.append(trial.response_time_s)

    hits = counts[Outcome.HIT]
    misses = counts[Outcome.MISS]
    fas = counts[Outcome.FALSE_ALARM]
    crs = counts[Outcome.CORRECT_REJECTION]
    hit_rate, fa_rate = corrected_rates(
        hits=hits, misses=misses, false_alarms=fas, correct_rejections=crs
    )
    return Summary(
        hits=hits,
        misses=misses,
        false_alarms=fas,
        correct_rejections=crs,
        d_prime=probit(hit_rate) - probit(fa_rate),
        hit_rate=hit_rate,
        false_alarm_rate=fa_rate,
        mean_hit_rt_s=None if not hit_rts else sum(hit_rts) / len(hit_rts),
    )
