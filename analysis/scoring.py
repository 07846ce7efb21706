# analysis/scoring.py
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

SUSTAIN_FULL_SECONDS = 30.0

PITCH_STDDEV_PASS = 10.0       # Hz, pitch sustain test
RESONANCE_PASS = 10.0          # %, resonance sustain test
WORD_PITCH_PASS = 10.0         # Hz, word/phrase drill
WORD_RESONANCE_PASS = 10.0     # %, word/phrase drill
SENTENCE_STDDEV_PASS = 15.0    # Hz, melodic stability per sentence
SENTENCE_MIN_PITCH = 150.0     # Hz


@dataclass(frozen=True)
class ScoreResult:
    score: int
    components: dict = field(default_factory=dict)
    passed: Optional[bool] = None


def round_half_up(x):
    """Round .5 away from zero for the non-negative totals scored here."""
    return int(math.floor(x + 0.5))


def _clamped(x):
    return max(0.0, float(x))


# ---------------------------------------------------------
# Per-kind formulas
# ---------------------------------------------------------

def pitch_score(target, avg_pitch, time_to_hit, duration, avg_stddev):
    """
    Pitch sustain score, 0-350:
      accuracy  (max 100) 10 points lost per Hz off target
      speed     (max 50)  10 points lost per second to reach the target
      sustain   (max 100) proportional to duration, full at 30 s
      stability (max 100) 10 points lost per Hz of standard deviation
    """
    accuracy = _clamped(100 - 10 * abs(target - avg_pitch))
    speed = _clamped(50 - 10 * (time_to_hit or 0.0))
    sustain = min(100.0, _clamped(100 * duration / SUSTAIN_FULL_SECONDS))
    stability = _clamped(100 - 10 * avg_stddev)

    total = accuracy + speed + sustain + stability
    return ScoreResult(
        score=round_half_up(total),
        components={
            "accuracy": accuracy,
            "speed": speed,
            "sustain": sustain,
            "stability": stability,
        },
        passed=avg_stddev < PITCH_STDDEV_PASS,
    )


def resonance_score(avg_stability):
    """Resonance sustain score, 0-100; lower stability percentage is better."""
    score = _clamped(100 - 10 * avg_stability)
    return ScoreResult(
        score=round_half_up(score),
        components={"stability": score},
        passed=avg_stability < RESONANCE_PASS,
    )


def word_score(pitch_stddev, resonance_stddev):
    """Word/phrase drill score: mean of the pitch and resonance components."""
    pitch_part = _clamped(100 - 10 * pitch_stddev)
    resonance_part = _clamped(100 - 10 * resonance_stddev)
    return ScoreResult(
        score=round_half_up((pitch_part + resonance_part) / 2),
        components={"pitch": pitch_part, "resonance": resonance_part},
        passed=(
            pitch_stddev < WORD_PITCH_PASS
            and resonance_stddev < WORD_RESONANCE_PASS
        ),
    )


def melodic_stability(pitches):
    """Population standard deviation across a whole utterance."""
    arr = np.asarray([p for p in pitches if p is not None], dtype=float)
    if arr.size == 0:
        return None
    return float(np.std(arr))


def evaluate_sentence(pitches):
    """
    Evaluate one recorded sentence.

    Returns (avg_pitch, stability, passed) or None when nothing was recorded.
    """
    arr = np.asarray([p for p in pitches if p is not None], dtype=float)
    if arr.size == 0:
        return None
    avg = float(np.mean(arr))
    stability = melodic_stability(arr)
    passed = stability < SENTENCE_STDDEV_PASS and avg >= SENTENCE_MIN_PITCH
    return avg, stability, passed


# ---------------------------------------------------------
# Session dispatch
# ---------------------------------------------------------

def _mean(values):
    vals = [v for v in values if v is not None]
    if not vals:
        return None
    return float(np.mean(vals))


def score_session(scorer, rows, target_frequency=None, duration=0.0,
                  time_to_hit=None):
    """
    Score a finished session's sample rows with the named formula.

    Returns None when there is nothing to score (no rows, unscored kinds,
    or a pitch score without a target).
    """
    if not rows or scorer is None:
        return None

    if scorer == "pitch":
        if target_frequency is None:
            return None
        return pitch_score(
            target_frequency,
            _mean(r.pitch for r in rows),
            time_to_hit,
            duration,
            _mean(r.pitch_stddev for r in rows) or 0.0,
        )

    if scorer == "resonance":
        avg_stability = _mean(r.stability for r in rows)
        if avg_stability is None:
            return None
        return resonance_score(avg_stability)

    if scorer == "word":
        avg_stability = _mean(r.stability for r in rows)
        if avg_stability is None:
            return None
        return word_score(_mean(r.pitch_stddev for r in rows) or 0.0, avg_stability)

    raise ValueError(f"unknown scorer: {scorer!r}")
