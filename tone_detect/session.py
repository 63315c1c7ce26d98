from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from .audio import MutedToneSink, ToneSink
from .detection_core import (
    ConfigurationError,
    SamplingOutcome,
    SeededRng,
    SessionSnapshot,
    SessionState,
    Summary,
    Trial,
)
from .pitches import MIDI_MAX, MIDI_MIN, WHITE_KEYS_C4, note_name
from .scheduler import Clock, Scheduler
from .scoring import score_trials, within_window
from .sequencer import TargetChoice, TrialPlan, TrialSequencer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DetectionConfig:
    total_trials: int = 16
    num_targets: int = 4
    inter_onset_ms: int = 2250
    # Must not exceed inter_onset_ms; overlapping windows are not supported.
    response_window_ms: int = 1750
    target_label_ms: int = 1500
    note_duration_s: float = 1.0
    allow_immediate_repeat: bool = True
    target: TargetChoice = TargetChoice()
    pitch_set: tuple[int, ...] = WHITE_KEYS_C4

    def validate(self) -> None:
        if self.total_trials <= 0:
            raise ConfigurationError("total_trials must be > 0")
        if not (0 <= self.num_targets <= self.total_trials):
            raise ConfigurationError("num_targets must be in [0, total_trials]")
        if self.inter_onset_ms <= 0:
            raise ConfigurationError("inter_onset_ms must be > 0")
        if self.response_window_ms <= 0:
            raise ConfigurationError("response_window_ms must be > 0")
        if self.response_window_ms > self.inter_onset_ms:
            raise ConfigurationError("response_window_ms must not exceed inter_onset_ms")
        if self.target_label_ms < 0:
            raise ConfigurationError("target_label_ms must be >= 0")
        if self.note_duration_s <= 0.0:
            raise ConfigurationError("note_duration_s must be > 0")
        if not self.pitch_set:
            raise ConfigurationError("pitch_set must not be empty")
        if any(p < MIDI_MIN or p > MIDI_MAX for p in self.pitch_set):
            raise ConfigurationError(f"pitch_set must hold MIDI numbers in [{MIDI_MIN}, {MIDI_MAX}]")
        if not self.target.is_random and self.target.pitch not in self.pitch_set:
            raise ConfigurationError(f"target pitch {self.target.pitch} is not in pitch_set")
        if self.num_targets < self.total_trials and len(set(self.pitch_set)) < 2:
            raise ConfigurationError("pitch_set needs at least one distractor besides the target")


class ResponseCollector:
    """Tracks the single open response window and accepts at most one tap per trial.

    The window opens at a trial's onset and closes one window-duration later,
    whichever taps arrive in between. Rejected taps are not errors.
    """

    def __init__(self) -> None:
        self._open_index: int | None = None
        self._onset_s = 0.0
        self._window_ms = 0.0

    @property
    def window_open(self) -> bool:
        return self._open_index is not None

    @property
    def open_index(self) -> int | None:
        return self._open_index

    def open(self, *, index: int, onset_s: float, window_ms: float) -> None:
        self._open_index = int(index)
        self._onset_s = float(onset_s)
        self._window_ms = float(window_ms)

    def close(self, *, index: int) -> None:
        # A late close for an earlier trial must not shut the current window.
        if self._open_index == index:
            self._open_index = None

    def clear(self) -> None:
        self._open_index = None
        self._onset_s = 0.0
        self._window_ms = 0.0

    def respond(self, trials: list[Trial], index: int, *, now_s: float) -> bool:
        if not (0 <= index < len(trials)):
            return False
        if self._open_index != index:
            return False
        # Same arithmetic as scoring, so an accepted tap is never scored late.
        if not within_window(self._onset_s, now_s, response_window_ms=self._window_ms):
            return False
        trial = trials[index]
        if trial.responded or trial.onset_s is None or now_s < trial.onset_s:
            return False
        trials[index] = trial.with_response(now_s)
        return True


class DetectionSession:
    """Target-tone detection run: idle -> previewing target -> running -> finished.

    - One object owns all run state; callers send commands and read snapshots.
    - Time comes from the injected Clock; timers fire from ``update()``.
    - Every timer is tagged with the run id it was scheduled under and is
      ignored once that run has been reset or restarted.
    - Commands may arrive from any thread; they serialize on one lock.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        sink: ToneSink | None = None,
        config: DetectionConfig | None = None,
        title: str = "Simple Speed",
    ) -> None:
        self._clock = clock
        self._seed = int(seed)
        self._rng = SeededRng(self._seed)
        self._sink: ToneSink = sink if sink is not None else MutedToneSink()
        self._config = config or DetectionConfig()
        self._title = title

        self._lock = threading.RLock()
        self._scheduler = Scheduler(clock)
        self._collector = ResponseCollector()

        self._state = SessionState.IDLE
        self._run_id = 0
        self._trials: list[Trial] = []
        self._target_pitch: int | None = None
        self._current_index = -1
        self._summary: Summary | None = None
        self._sampling: frozenset[SamplingOutcome] = frozenset()

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def config(self) -> DetectionConfig:
        return self._config

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def run_id(self) -> int:
        return self._run_id

    def trials(self) -> tuple[Trial, ...]:
        with self._lock:
            return tuple(self._trials)

    def summary(self) -> Summary | None:
        return self._summary

    # Commands

    def start(self, config: DetectionConfig | None = None) -> bool:
        """Begin a run from IDLE. Raises ConfigurationError for a bad config."""

        with self._lock:
            if self._state is not SessionState.IDLE:
                return False
            cfg = config or self._config
            cfg.validate()
            plan = self._build_plan(cfg)
            self._config = cfg
            self._begin_run(plan)
            return True

    def run_again(self) -> bool:
        """Restart from FINISHED with the same config and a fresh sequence."""

        with self._lock:
            if self._state is not SessionState.FINISHED:
                return False
            self._begin_run(self._build_plan(self._config))
            return True

    def reset(self) -> bool:
        with self._lock:
            self._scheduler.cancel_run(self._run_id)
            self._run_id += 1
            self._collector.clear()
            self._trials = []
            self._target_pitch = None
            self._current_index = -1
            self._summary = None
            self._sampling = frozenset()
            self._state = SessionState.IDLE
            logger.info("Session reset (run %d)", self._run_id)
            return True

    def respond(self) -> bool:
        """Tap for the current trial. Returns True only if the tap was recorded."""

        with self._lock:
            if self._state is not SessionState.RUNNING:
                return False
            now = self._clock.now()
            accepted = self._collector.respond(self._trials, self._current_index, now_s=now)
            if not accepted:
                logger.debug("Ignored tap at %.3f for trial %d", now, self._current_index)
            return accepted

    def update(self) -> None:
        with self._lock:
            self._scheduler.run_due()

    # Views

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            target = self._target_pitch
            return SessionSnapshot(
                title=self._title,
                state=self._state,
                run_id=self._run_id,
                prompt=self.current_prompt(),
                input_hint=self._input_hint(),
                current_index=self._current_index,
                total_trials=len(self._trials) if self._trials else self._config.total_trials,
                target_pitch=target,
                target_name=None if target is None else note_name(target),
                window_open=self._collector.window_open,
                trials=tuple(self._trials),
                summary=self._summary,
                sampling=self._sampling,
            )

    def current_prompt(self) -> str:
        cfg = self._config
        name = "" if self._target_pitch is None else note_name(self._target_pitch)
        if self._state is SessionState.IDLE:
            return "\n".join(
                [
                    "Press Enter to begin.",
                    f"You will see a target note for {cfg.target_label_ms / 1000.0:.1f} s,",
                    f"then hear {cfg.total_trials} notes.",
                    "Press Space whenever the target plays.",
                ]
            )
        if self._state is SessionState.PREVIEWING_TARGET:
            return f"Target Note\n{name}"
        if self._state is SessionState.RUNNING:
            return f"Target: {name}\nNote {self._current_index + 1} / {len(self._trials)}"

        s = self._summary
        assert s is not None
        return "\n".join(
            [
                "Results",
                "",
                f"Hits:               {s.hits}",
                f"Misses:             {s.misses}",
                f"False Alarms:       {s.false_alarms}",
                f"Correct Rejections: {s.correct_rejections}",
                "",
                f"d' = {s.d_prime:.2f}",
            ]
        )

    def _input_hint(self) -> str:
        if self._state is SessionState.IDLE:
            return "Enter=start  Left/Right=target  R=random target  P=repeats  Esc=quit"
        if self._state is SessionState.RUNNING:
            return "Space=heard it"
        if self._state is SessionState.FINISHED:
            return "Enter=run again  Backspace=reset"
        return ""

    # Run internals

    def _build_plan(self, cfg: DetectionConfig) -> TrialPlan:
        return TrialSequencer(self._rng).build(
            total_trials=cfg.total_trials,
            num_targets=cfg.num_targets,
            pitch_set=cfg.pitch_set,
            target=cfg.target,
            allow_immediate_repeat=cfg.allow_immediate_repeat,
        )

    def _begin_run(self, plan: TrialPlan) -> None:
        cfg = self._config
        self._scheduler.cancel_run(self._run_id)
        self._run_id += 1
        self._collector.clear()
        self._trials = list(plan.trials)
        self._target_pitch = plan.target_pitch
        self._current_index = -1
        self._summary = None
        self._sampling = plan.sampling

        self._sink.preload(cfg.pitch_set)
        self._state = SessionState.PREVIEWING_TARGET
        logger.info(
            "Run %d: target %s, %d trials, %d targets, repeats %s",
            self._run_id,
            note_name(plan.target_pitch),
            cfg.total_trials,
            cfg.num_targets,
            "allowed" if cfg.allow_immediate_repeat else "avoided",
        )
        self._sink.play(plan.target_pitch, cfg.note_duration_s)
        first_due = self._clock.now() + cfg.target_label_ms / 1000.0
        self._schedule_at(first_due, lambda: self._begin_trials(first_due), label="preview_end")

    def _schedule_at(self, due_s: float, fn: Callable[[], None], *, label: str) -> None:
        run_id = self._run_id

        def fire() -> None:
            if run_id != self._run_id:
                logger.debug("Dropped stale %s timer from run %d", label, run_id)
                return
            fn()

        self._scheduler.call_at(due_s, fire, run_id=run_id, label=label)

    def _begin_trials(self, due_s: float) -> None:
        self._state = SessionState.RUNNING
        self._onset(0, due_s)

    def _onset(self, index: int, due_s: float) -> None:
        cfg = self._config
        self._current_index = index
        trial = self._trials[index]

        onset_s = self._clock.now()
        self._sink.play(trial.pitch, cfg.note_duration_s)
        self._trials[index] = trial.with_onset(onset_s)

        self._collector.open(index=index, onset_s=onset_s, window_ms=cfg.response_window_ms)
        logger.debug(
            "Onset %d at %.3f (due %.3f): %s%s",
            index,
            onset_s,
            due_s,
            note_name(trial.pitch),
            " (target)" if trial.is_target else "",
        )

        close_s = onset_s + cfg.response_window_ms / 1000.0
        self._schedule_at(close_s, lambda: self._collector.close(index=index), label="window_close")
        # Chained from the due time, not the polled stamp, so frame lag does not accumulate.
        next_due = due_s + cfg.inter_onset_ms / 1000.0
        if index + 1 < len(self._trials):
            self._schedule_at(next_due, lambda: self._onset(index + 1, next_due), label="onset")
        else:
            self._schedule_at(next_due, self._finish, label="finish")

    def _finish(self) -> None:
        self._collector.clear()
        self._summary = score_trials(self._trials, response_window_ms=self._config.response_window_ms)
        self._state = SessionState.FINISHED
        s = self._summary
        logger.info(
            "Run %d finished: hits=%d misses=%d false_alarms=%d correct_rejections=%d d'=%.2f",
            self._run_id,
            s.hits,
            s.misses,
            s.false_alarms,
            s.correct_rejections,
            s.d_prime,
        )


def build_detection_session(
    *,
    clock: Clock,
    seed: int,
    sink: ToneSink | None = None,
    config: DetectionConfig | None = None,
) -> DetectionSession:
    return DetectionSession(clock=clock, seed=seed, sink=sink, config=config)
