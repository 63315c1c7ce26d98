from __future__ import annotations

import logging
import math
from array import array
from collections.abc import Iterable

from .detection_core import ConfigurationError
from .pitches import MIDI_MAX, MIDI_MIN, WHITE_KEYS_C4, midi_to_hz

logger = logging.getLogger(__name__)

_TWO_PI = 2.0 * math.pi
_PCM16_AMP = 32767


def render_sine(
    frequency_hz: float,
    *,
    duration_s: float,
    sample_rate: int,
    gain: float,
    fade_ms: float,
) -> array[float]:
    """Phase-accumulated sine with a linear fade at both edges.

    Samples are float32 in [-gain, gain]. The phase is wrapped every cycle so
    the accumulator never grows past 2*pi.
    """

    total = int(duration_s * sample_rate)
    fade_n = int((fade_ms / 1000.0) * sample_rate)
    step = _TWO_PI * float(frequency_hz) / float(sample_rate)

    out = array("f")
    phase = 0.0
    for n in range(total):
        s = math.sin(phase)
        if fade_n > 0:
            if n < fade_n:
                s *= n / float(fade_n)
            elif n >= total - fade_n:
                s *= (total - n) / float(fade_n)
        out.append(s * gain)
        phase += step
        if phase > _TWO_PI:
            phase -= _TWO_PI
    return out


class ToneBank:
    """One fixed-duration mono buffer per pitch of a fixed pitch set.

    Each buffer is synthesized at most once and ``get`` returns the cached
    buffer, which callers treat as read-only. Pitches outside the set yield
    ``None`` rather than an error so playback of a bad id is a no-op.
    """

    def __init__(
        self,
        *,
        pitches: Iterable[int] = WHITE_KEYS_C4,
        sample_rate: int = 44100,
        duration_s: float = 1.0,
        gain: float = 0.2,
        fade_ms: float = 10.0,
    ) -> None:
        if sample_rate <= 0:
            raise ConfigurationError("sample_rate must be > 0")
        if duration_s <= 0.0:
            raise ConfigurationError("duration_s must be > 0")
        if not (0.0 < gain <= 1.0):
            raise ConfigurationError("gain must be in (0.0, 1.0]")
        if fade_ms < 0.0:
            raise ConfigurationError("fade_ms must be >= 0")
        pitch_set = frozenset(int(p) for p in pitches)
        if not pitch_set:
            raise ConfigurationError("pitch set must not be empty")
        if any(p < MIDI_MIN or p > MIDI_MAX for p in pitch_set):
            raise ConfigurationError(f"pitches must be MIDI numbers in [{MIDI_MIN}, {MIDI_MAX}]")

        self._pitches = pitch_set
        self._sample_rate = int(sample_rate)
        self._duration_s = float(duration_s)
        self._gain = float(gain)
        self._fade_ms = float(fade_ms)
        self._buffers: dict[int, array[float]] = {}

    @property
    def pitches(self) -> frozenset[int]:
        return self._pitches

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def duration_s(self) -> float:
        return self._duration_s

    def preload(self, pitches: Iterable[int]) -> None:
        for pitch in pitches:
            self.get(pitch)

    def get(self, pitch: int) -> array[float] | None:
        if pitch not in self._pitches:
            logger.warning("No tone for unknown pitch %r", pitch)
            return None
        buf = self._buffers.get(pitch)
        if buf is None:
            buf = render_sine(
                midi_to_hz(pitch),
                duration_s=self._duration_s,
                sample_rate=self._sample_rate,
                gain=self._gain,
                fade_ms=self._fade_ms,
            )
            self._buffers[pitch] = buf
            logger.debug("Synthesized pitch %d (%d samples)", pitch, len(buf))
        return buf

    def pcm16(self, pitch: int) -> bytes | None:
        """Signed 16-bit little-endian mono PCM for the given pitch."""

        buf = self.get(pitch)
        if buf is None:
            return None
        out = array("h")
        for s in buf:
            out.append(int(max(-1.0, min(1.0, s)) * _PCM16_AMP))
        return out.tobytes()

    def cached_pitches(self) -> tuple[int, ...]:
        return tuple(sorted(self._buffers))
