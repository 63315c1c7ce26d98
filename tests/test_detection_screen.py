from __future__ import annotations

import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

from dataclasses import dataclass  # noqa: E402

import pygame  # noqa: E402

from tone_detect.app import DetectionScreen  # noqa: E402
from tone_detect.audio import MutedToneSink  # noqa: E402
from tone_detect.detection_core import SessionState  # noqa: E402
from tone_detect.sequencer import TargetChoice  # noqa: E402
from tone_detect.session import DetectionConfig, build_detection_session  # noqa: E402


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _screen(config: DetectionConfig | None = None):
    pygame.font.init()
    cfg = config or DetectionConfig(target=TargetChoice.fixed(64))
    clock = FakeClock()
    session = build_detection_session(clock=clock, seed=21, sink=MutedToneSink(), config=cfg)
    screen = DetectionScreen(session=session, base_config=cfg, font=pygame.font.Font(None, 20))
    return clock, session, screen


def _key(screen: DetectionScreen, key: int) -> None:
    screen.handle_event(pygame.event.Event(pygame.KEYDOWN, key=key, mod=0))


def _advance(clock: FakeClock, screen: DetectionScreen, seconds: float, step: float = 0.0625) -> None:
    for _ in range(int(round(seconds / step))):
        clock.advance(step)
        screen.update()


def _run_to_finish(clock: FakeClock, screen: DetectionScreen, session: object) -> None:
    for _ in range(5000):
        if session.state is SessionState.FINISHED:
            return
        clock.advance(0.0625)
        screen.update()
    raise AssertionError("session did not finish")


def test_enter_starts_with_the_selected_target() -> None:
    _, session, screen = _screen()
    _key(screen, pygame.K_RIGHT)
    _key(screen, pygame.K_RETURN)

    snap = session.snapshot()
    assert snap.state is SessionState.PREVIEWING_TARGET
    assert snap.target_pitch == 65


def test_space_records_a_tap_on_the_current_trial() -> None:
    clock, session, screen = _screen()
    _key(screen, pygame.K_RETURN)
    _advance(clock, screen, 1.5)
    assert session.state is SessionState.RUNNING

    clock.advance(0.25)
    _key(screen, pygame.K_SPACE)
    trial = session.trials()[0]
    assert trial.responded is True
    assert trial.response_time_s == 0.25

    # A second tap in the same window is ignored.
    clock.advance(0.25)
    _key(screen, pygame.K_SPACE)
    assert session.trials()[0].response_time_s == 0.25


def test_escape_while_running_resets_to_idle() -> None:
    clock, session, screen = _screen()
    _key(screen, pygame.K_RETURN)
    _advance(clock, screen, 2.0)
    assert session.state is SessionState.RUNNING

    _key(screen, pygame.K_ESCAPE)
    assert session.state is SessionState.IDLE
    assert session.trials() == ()
    assert screen.quit_requested is False


def test_escape_during_preview_resets_to_idle() -> None:
    _, session, screen = _screen()
    _key(screen, pygame.K_RETURN)
    _key(screen, pygame.K_ESCAPE)
    assert session.state is SessionState.IDLE


def test_enter_when_finished_runs_again() -> None:
    clock, session, screen = _screen()
    _key(screen, pygame.K_RETURN)
    _run_to_finish(clock, screen, session)
    first_run = session.run_id
    assert session.summary() is not None

    _key(screen, pygame.K_RETURN)
    snap = session.snapshot()
    assert snap.state is SessionState.PREVIEWING_TARGET
    assert snap.run_id > first_run
    assert snap.summary is None
    assert snap.target_pitch == 64


def test_backspace_and_escape_when_finished_reset() -> None:
    for key in (pygame.K_BACKSPACE, pygame.K_ESCAPE):
        clock, session, screen = _screen()
        _key(screen, pygame.K_RETURN)
        _run_to_finish(clock, screen, session)

        _key(screen, key)
        assert session.state is SessionState.IDLE
        assert session.summary() is None
        assert screen.quit_requested is False


def test_space_outside_running_does_nothing() -> None:
    clock, session, screen = _screen()
    _key(screen, pygame.K_SPACE)
    assert session.state is SessionState.IDLE

    _key(screen, pygame.K_RETURN)
    _key(screen, pygame.K_SPACE)
    assert session.state is SessionState.PREVIEWING_TARGET
    _advance(clock, screen, 1.5)
    assert not any(t.responded for t in session.trials())


def test_bad_config_keeps_idle_and_shows_error() -> None:
    cfg = DetectionConfig(target=TargetChoice.fixed(64), response_window_ms=3000)
    _, session, screen = _screen(cfg)
    _key(screen, pygame.K_RETURN)
    assert session.state is SessionState.IDLE
    assert screen._error is not None


def test_escape_in_idle_and_window_close_request_quit() -> None:
    _, _, screen = _screen()
    _key(screen, pygame.K_ESCAPE)
    assert screen.quit_requested is True

    _, _, screen = _screen()
    screen.handle_event(pygame.event.Event(pygame.QUIT))
    assert screen.quit_requested is True
