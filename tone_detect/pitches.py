from __future__ import annotations

# White keys C4..B4 as MIDI note numbers.
WHITE_KEYS_C4: tuple[int, ...] = (60, 62, 64, 65, 67, 69, 71)

_NOTE_NAMES: tuple[str, ...] = ("C", "C#", "D", "Eb", "E", "F", "F#", "G", "Ab", "A", "Bb", "B")

MIDI_MIN = 0
MIDI_MAX = 127


def midi_to_hz(pitch: int) -> float:
    """Equal-temperament frequency, A4 (MIDI 69) = 440 Hz."""

    return 440.0 * (2.0 ** ((float(pitch) - 69.0) / 12.0))


def note_name(pitch: int) -> str:
    pc = int(pitch) % 12
    octave = (int(pitch) // 12) - 1
    return f"{_NOTE_NAMES[pc]}{octave}"


def parse_note_name(raw: str) -> int:
    """Inverse of note_name(). Accepts "C4", "c#4", "Bb3" or a bare MIDI number."""

    text = str(raw).strip()
    if text == "":
        raise ValueError("empty note name")
    if text.lstrip("-").isdigit():
        return int(text)

    letter = text[0].upper()
    rest = text[1:]
    accidental = ""
    if rest[:1] in ("#", "b"):
        accidental = rest[0]
        rest = rest[1:]
    try:
        octave = int(rest)
    except ValueError:
        raise ValueError(f"bad note name: {raw!r}") from None

    naturals = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}
    if letter not in naturals:
        raise ValueError(f"bad note name: {raw!r}")
    pc = naturals[letter] + (1 if accidental == "#" else -1 if accidental == "b" else 0)
    return (octave + 1) * 12 + pc
