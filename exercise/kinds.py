"""
Exercise kinds as tagged configuration.

Every exercise runs through the same capture state machine; a kind only
chooses the target and failure predicates, the sustain gate, the voiced-time
cap and the scoring formula.
"""
from dataclasses import dataclass
from typing import Callable, Optional

TARGET_TOLERANCE_HZ = 5.0
LOW_PITCH_LIMIT_HZ = 150.0
RESONANCE_FAILURE_PCT = 15.0
VOICED_CAP_SECONDS = 30.0
READY_DELAY_SECONDS = 2.0

# Window sizes used for the live readings
AVG_WINDOW = 5
STD_WINDOW = 10


# ---------------------------------------------------------
# Predicates: (readings, target_frequency) -> bool
# ---------------------------------------------------------

def pitch_on_target(readings, target_frequency):
    if readings.pitch is None or target_frequency is None:
        return False
    return abs(readings.pitch - target_frequency) <= TARGET_TOLERANCE_HZ


def pitch_too_low(readings, _target_frequency=None):
    return readings.pitch is not None and readings.pitch < LOW_PITCH_LIMIT_HZ


def resonance_unstable(readings, _target_frequency=None):
    return (
        readings.stability is not None
        and readings.stability > RESONANCE_FAILURE_PCT
    )


@dataclass(frozen=True)
class ExerciseKind:
    name: str
    section: int
    needs_formants: bool = False
    target: Optional[Callable] = None
    sustain_seconds: float = 0.0
    ready_delay: float = 0.0
    failure: Optional[Callable] = None
    failure_grace: float = 0.0
    failure_reason: str = ""
    auto_stop_seconds: Optional[float] = None
    scorer: Optional[str] = None
    test_mode: bool = False

    @property
    def sustain_gated(self):
        return self.sustain_seconds > 0


PITCH_SUSTAIN = ExerciseKind(
    name="pitch_sustain",
    section=1,
    target=pitch_on_target,
    sustain_seconds=3.0,
    ready_delay=READY_DELAY_SECONDS,
    failure=pitch_too_low,
    failure_grace=0.5,
    failure_reason="pitch dropped below 150 Hz for longer than 0.5 s",
    auto_stop_seconds=VOICED_CAP_SECONDS,
    scorer="pitch",
    test_mode=True,
)

PITCH_PRACTICE = ExerciseKind(
    name="pitch_practice",
    section=1,
)

SENTENCE = ExerciseKind(
    name="sentence",
    section=2,
    scorer="sentence",
    test_mode=True,
)

RESONANCE_SUSTAIN = ExerciseKind(
    name="resonance_sustain",
    section=3,
    needs_formants=True,
    failure=resonance_unstable,
    failure_grace=1.0,
    failure_reason="resonance stability above 15% for longer than 1 s",
    auto_stop_seconds=VOICED_CAP_SECONDS,
    scorer="resonance",
    test_mode=True,
)

RESONANCE_PRACTICE = ExerciseKind(
    name="resonance_practice",
    section=3,
    needs_formants=True,
)

WORD_DRILL = ExerciseKind(
    name="word_drill",
    section=4,
    needs_formants=True,
    scorer="word",
)

EXERCISE_KINDS = {
    kind.name: kind
    for kind in (
        PITCH_SUSTAIN,
        PITCH_PRACTICE,
        SENTENCE,
        RESONANCE_SUSTAIN,
        RESONANCE_PRACTICE,
        WORD_DRILL,
    )
}

# Word/phrase drill material
DRILL_LEVELS = {
    "vowels": ["A", "E", "I", "O", "U"],
    "words": [
        "hello", "water", "sister", "mother", "beautiful",
        "amazing", "wonderful", "together", "forever", "sunshine",
    ],
    "phrases": [
        "how are you", "nice to meet you", "have a nice day",
        "see you later", "good morning",
    ],
}


def get_kind(kind):
    """Resolve a kind name (or pass through an ExerciseKind)."""
    if isinstance(kind, ExerciseKind):
        return kind
    try:
        return EXERCISE_KINDS[kind]
    except KeyError:
        raise KeyError(f"unknown exercise kind: {kind!r}") from None
