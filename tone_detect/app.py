"""Pygame shell for the tone detection drill.

Deterministic timing/scoring/RNG/state lives in tone_detect/* (core modules).
This module only turns key presses into session commands, draws snapshots,
and plays ToneBank buffers through pygame.mixer.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable
from dataclasses import replace

import pygame

from .audio import ToneSink
from .detection_core import ConfigurationError, PlaybackUnavailable, SessionSnapshot, SessionState
from .pitches import note_name
from .scheduler import MonotonicClock
from .session import DetectionConfig, DetectionSession, build_detection_session
from .sequencer import TargetChoice
from .tone_bank import ToneBank

logger = logging.getLogger(__name__)

WINDOW_SIZE = (720, 480)
TARGET_FPS = 120


class PygameToneSink:
    """pygame.mixer playback of ToneBank buffers.

    With ``strict=True`` a mixer that cannot start raises PlaybackUnavailable;
    otherwise the sink stays muted and logs once. ``muted=True`` never opens
    the mixer and only warms the bank.
    """

    def __init__(self, bank: ToneBank, *, strict: bool = False, muted: bool = False) -> None:
        self._bank = bank
        self._sounds: dict[int, pygame.mixer.Sound] = {}
        self._available = False
        if muted:
            return

        try:
            current = pygame.mixer.get_init()
            if current is not None and (current[0] != bank.sample_rate or current[2] != 1):
                # Buffers are mono at the bank's rate; any other mixer format would detune them.
                pygame.mixer.quit()
                current = None
            if current is None:
                pygame.mixer.init(frequency=bank.sample_rate, size=-16, channels=1, buffer=512)
            pygame.mixer.set_num_channels(max(8, int(pygame.mixer.get_num_channels())))
            self._available = True
        except pygame.error as exc:
            if strict:
                raise PlaybackUnavailable(f"audio output unavailable: {exc}") from exc
            logger.warning("Audio output unavailable, running muted: %s", exc)

    @property
    def available(self) -> bool:
        return self._available

    def preload(self, pitches: Iterable[int]) -> None:
        for pitch in pitches:
            self._sound_for(int(pitch))

    def play(self, pitch: int, duration_s: float) -> None:
        sound = self._sound_for(pitch)
        if sound is None:
            return
        try:
            sound.play(maxtime=max(1, int(round(float(duration_s) * 1000.0))))
        except pygame.error as exc:
            logger.warning("Playback of pitch %s failed: %s", pitch, exc)

    def stop(self) -> None:
        if not self._available:
            return
        try:
            pygame.mixer.stop()
        except pygame.error as exc:
            logger.warning("Stopping playback failed: %s", exc)

    def _sound_for(self, pitch: int) -> pygame.mixer.Sound | None:
        sound = self._sounds.get(pitch)
        if sound is not None:
            return sound
        if not self._available:
            # Muted: warm the bank only.
            self._bank.get(pitch)
            return None
        pcm = self._bank.pcm16(pitch)
        if pcm is None:
            return None
        try:
            sound = pygame.mixer.Sound(buffer=pcm)
        except pygame.error as exc:
            logger.warning("Could not build sound for pitch %s: %s", pitch, exc)
            return None
        self._sounds[pitch] = sound
        return sound


class DetectionScreen:
    def __init__(
        self, *, session: DetectionSession, base_config: DetectionConfig, font: pygame.font.Font
    ) -> None:
        self._session = session
        self._base_config = base_config

        pitches = base_config.pitch_set
        fixed = base_config.target.pitch
        self._selected = pitches.index(fixed) if fixed in pitches else 0
        self._random_target = base_config.target.is_random
        self._allow_repeats = base_config.allow_immediate_repeat
        self._error: str | None = None
        self._quit_requested = False

        self._font = font
        self._big_font = pygame.font.Font(None, 72)
        self._small_font = pygame.font.Font(None, 26)
        self._tiny_font = pygame.font.Font(None, 20)

    def pending_config(self) -> DetectionConfig:
        pitches = self._base_config.pitch_set
        target = (
            TargetChoice.random()
            if self._random_target
            else TargetChoice.fixed(pitches[self._selected % len(pitches)])
        )
        return replace(self._base_config, target=target, allow_immediate_repeat=self._allow_repeats)

    @property
    def quit_requested(self) -> bool:
        return self._quit_requested

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self._quit_requested = True
            return
        if event.type != pygame.KEYDOWN:
            return
        state = self._session.state
        key = event.key

        if state is SessionState.IDLE:
            self._handle_idle_key(key)
        elif state is SessionState.RUNNING:
            if key == pygame.K_SPACE:
                self._session.respond()
            elif key == pygame.K_ESCAPE:
                self._session.reset()
        elif state is SessionState.PREVIEWING_TARGET:
            if key == pygame.K_ESCAPE:
                self._session.reset()
        elif state is SessionState.FINISHED:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                self._session.run_again()
            elif key in (pygame.K_BACKSPACE, pygame.K_ESCAPE):
                self._session.reset()

    def _handle_idle_key(self, key: int) -> None:
        n = len(self._base_config.pitch_set)
        if key == pygame.K_LEFT:
            self._selected = (self._selected - 1) % n
        elif key == pygame.K_RIGHT:
            self._selected = (self._selected + 1) % n
        elif key == pygame.K_r:
            self._random_target = not self._random_target
        elif key == pygame.K_p:
            self._allow_repeats = not self._allow_repeats
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            try:
                self._session.start(self.pending_config())
                self._error = None
            except ConfigurationError as exc:
                logger.error("Cannot start: %s", exc)
                self._error = str(exc)
        elif key == pygame.K_ESCAPE:
            self._quit_requested = True

    def update(self) -> None:
        self._session.update()

    def render(self, surface: pygame.Surface) -> None:
        snap = self._session.snapshot()
        w, h = surface.get_size()
        surface.fill((10, 10, 14))

        title = self._font.render(snap.title, True, (235, 235, 245))
        surface.blit(title, (40, 30))

        if snap.state is SessionState.PREVIEWING_TARGET and snap.target_name is not None:
            label = self._big_font.render(snap.target_name, True, (120, 200, 255))
            surface.blit(label, label.get_rect(center=(w // 2, h // 2)))
        elif snap.state is SessionState.RUNNING:
            self._render_progress(surface, snap)

        y = 90
        for line in snap.prompt.split("\n"):
            if snap.state is SessionState.PREVIEWING_TARGET:
                break
            text = self._small_font.render(line, True, (210, 210, 220))
            surface.blit(text, (40, y))
            y += 30

        if snap.state is SessionState.IDLE:
            target = "random" if self._random_target else note_name(
                self._base_config.pitch_set[self._selected]
            )
            repeats = "yes" if self._allow_repeats else "no"
            options = self._small_font.render(
                f"Target: {target}    Same pitch twice in a row: {repeats}", True, (180, 220, 180)
            )
            surface.blit(options, (40, y + 20))
            if self._error is not None:
                err = self._small_font.render(self._error, True, (240, 110, 110))
                surface.blit(err, (40, y + 56))

        hint = self._tiny_font.render(snap.input_hint, True, (150, 150, 165))
        surface.blit(hint, (40, h - 36))

    def _render_progress(self, surface: pygame.Surface, snap: SessionSnapshot) -> None:
        w, _ = surface.get_size()
        bar = pygame.Rect(40, 160, w - 80, 14)
        pygame.draw.rect(surface, (50, 50, 64), bar, border_radius=4)
        frac = 0.0 if snap.total_trials <= 0 else (snap.current_index + 1) / snap.total_trials
        fill = bar.copy()
        fill.width = int(bar.width * max(0.0, min(1.0, frac)))
        pygame.draw.rect(surface, (70, 130, 240), fill, border_radius=4)
        if snap.window_open:
            pygame.draw.circle(surface, (90, 220, 120), (w - 60, 60), 10)


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(
    *,
    config: DetectionConfig | None = None,
    seed: int | None = None,
    mute: bool = False,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
) -> int:
    cfg = config or DetectionConfig()
    cfg.validate()

    bank = ToneBank(pitches=cfg.pitch_set, duration_s=cfg.note_duration_s)
    pygame.mixer.pre_init(frequency=bank.sample_rate, size=-16, channels=1, buffer=512)
    pygame.init()
    pygame.display.set_caption("Simple Speed")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)
    font = pygame.font.Font(None, 40)
    frame_clock = pygame.time.Clock()

    sink: ToneSink = PygameToneSink(bank, muted=mute)
    session = build_detection_session(
        clock=MonotonicClock(),
        seed=_new_seed() if seed is None else seed,
        sink=sink,
        config=cfg,
    )
    logger.info("Session seed %d", session.seed)

    screen = DetectionScreen(session=session, base_config=cfg, font=font)

    frame = 0
    try:
        while not screen.quit_requested:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                screen.handle_event(event)

            screen.update()
            screen.render(surface)
            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            frame_clock.tick(TARGET_FPS)
    finally:
        session.reset()
        pygame.quit()

    return 0
