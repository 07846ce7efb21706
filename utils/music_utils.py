import re

import numpy as np

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

# Semitone offsets from A within octave 4
NOTE_OFFSETS = {
    "C": -9, "C#": -8, "D": -7, "D#": -6,
    "E": -5, "F": -4, "F#": -3, "G": -2,
    "G#": -1, "A": 0, "A#": 1, "B": 2,
}

_FLATS = {"Db": "C#", "Eb": "D#", "Gb": "F#", "Ab": "G#", "Bb": "A#"}
_NOTE_RE = re.compile(r"^([A-Ga-g][#b]?)(-?\d+)$")

# -------------------------
# Pitch to note names
# -------------------------


def freq_to_note_name(freq: float) -> str:
    if not freq or freq <= 0:
        return "N/A"
    midi = int(round(69 + 12 * np.log2(freq / 440.0)))
    if midi < 0 or midi >= 128:
        return "N/A"
    name = NOTE_NAMES[midi % 12]
    octave = midi // 12 - 1
    return f"{name}{octave}"


def frequency_to_note(frequency):
    """
    Nearest equal-tempered note for a frequency.

    Returns a dict with the note name (e.g. "E3"), the signed cents offset
    from that note (floored, as the live display shows it) and the input
    frequency, or None for non-positive input.
    """
    if frequency is None or frequency <= 0:
        return None

    note_num = 12 * np.log2(frequency / 440.0)
    nearest = int(round(note_num))
    midi = nearest + 69
    octave = midi // 12 - 1
    cents = int(np.floor((note_num - nearest) * 100))

    return {
        "note": f"{NOTE_NAMES[midi % 12]}{octave}",
        "cents": cents,
        "frequency": float(frequency),
    }


def note_to_frequency(note, octave=None):
    """
    Frequency of a note, referenced to A4 = 440 Hz.

    Accepts either ``note_to_frequency("E", 3)`` or ``note_to_frequency("E3")``.
    """
    if octave is None:
        m = _NOTE_RE.match(str(note).strip())
        if not m:
            raise ValueError(f"unrecognised note: {note!r}")
        note, octave = m.group(1), int(m.group(2))

    name = str(note).strip()
    name = name[0].upper() + name[1:]
    name = _FLATS.get(name, name)
    if name not in NOTE_OFFSETS:
        raise ValueError(f"unrecognised note: {note!r}")

    semitones = NOTE_OFFSETS[name] + (int(octave) - 4) * 12
    return float(440.0 * 2 ** (semitones / 12.0))
