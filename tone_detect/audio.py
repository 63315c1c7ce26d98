from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol


class ToneSink(Protocol):
    """Audio output used by the session.

    ``play`` is fire-and-forget and must not raise: a failed or unknown tone
    is skipped so scoring is unaffected.
    """

    def play(self, pitch: int, duration_s: float) -> None: ...
    def preload(self, pitches: Iterable[int]) -> None: ...


class MutedToneSink:
    """Records what would have played. Used headless and when audio is unavailable."""

    def __init__(self) -> None:
        self.played: list[tuple[int, float]] = []
        self.preloaded: set[int] = set()

    def play(self, pitch: int, duration_s: float) -> None:
        self.played.append((int(pitch), float(duration_s)))

    def preload(self, pitches: Iterable[int]) -> None:
        self.preloaded.update(int(p) for p in pitches)
