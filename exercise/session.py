from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from exercise.kinds import ExerciseKind


class ExerciseState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    LISTENING = "listening"
    SUSTAINING = "sustaining"
    CAPTURING = "capturing"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


LIVE_STATES = frozenset({
    ExerciseState.ARMED,
    ExerciseState.LISTENING,
    ExerciseState.SUSTAINING,
    ExerciseState.CAPTURING,
})


@dataclass(frozen=True)
class Readings:
    """Feature snapshot taken on one voiced frame."""

    raw_pitch: Optional[float]
    pitch: Optional[float]
    pitch_stddev: float = 0.0
    formants: Optional[tuple] = None
    stability: Optional[float] = None
    brightness: Optional[float] = None


@dataclass(frozen=True)
class SampleRow:
    offset: float
    pitch: Optional[float]
    pitch_stddev: float
    raw_pitch: Optional[float] = None
    formants: Optional[tuple] = None
    stability: Optional[float] = None
    brightness: Optional[float] = None


@dataclass
class ExerciseSession:
    kind: ExerciseKind
    started_at: float
    target_frequency: Optional[float] = None
    state: ExerciseState = ExerciseState.IDLE

    voiced_time: float = 0.0
    sustain_elapsed: float = 0.0
    failure_elapsed: float = 0.0
    failing: bool = False

    listening_since: Optional[float] = None
    time_to_hit: Optional[float] = None
    last_frame_at: Optional[float] = None
    ended_at: Optional[float] = None

    rows: list = field(default_factory=list)
    failed: bool = False
    failure_reason: Optional[str] = None
    last_readings: Optional[Readings] = None

    @property
    def is_live(self):
        return self.state in LIVE_STATES

    @property
    def is_finished(self):
        return self.state in (
            ExerciseState.COMPLETED,
            ExerciseState.FAILED,
            ExerciseState.STOPPED,
        )

    def elapsed(self, now):
        end = self.ended_at if self.ended_at is not None else now
        return max(0.0, end - self.started_at)

    def time_remaining(self):
        cap = self.kind.auto_stop_seconds
        if cap is None:
            return None
        return max(0.0, cap - self.voiced_time)


@dataclass(frozen=True)
class SessionResult:
    kind: str
    section: int
    state: ExerciseState
    duration: float
    rows: int = 0
    avg_pitch: Optional[float] = None
    avg_stddev: Optional[float] = None
    avg_stability: Optional[float] = None
    melodic_stability: Optional[float] = None
    time_to_hit: Optional[float] = None
    target_frequency: Optional[float] = None
    score: Optional[int] = None
    components: dict = field(default_factory=dict)
    passed: Optional[bool] = None
    disqualified: bool = False
    no_data: bool = False
    failure_reason: Optional[str] = None

    @property
    def message(self):
        if self.disqualified:
            return f"Exercise disqualified: {self.failure_reason}"
        if self.no_data:
            return "No data recorded, try again"
        if self.passed is None:
            return "Session finished"
        return "Passed" if self.passed else "Did not pass"
