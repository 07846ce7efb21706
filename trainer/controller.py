# trainer/controller.py
import logging
from time import monotonic

from analysis.formants import FormantEstimator
from analysis.pitch import PitchEstimator
from exercise.kinds import get_kind
from exercise.state_machine import CaptureStateMachine
from utils.music_utils import freq_to_note_name

logger = logging.getLogger(__name__)


class ExerciseError(RuntimeError):
    """Raised when the trainer is driven out of order."""


class Trainer:
    """
    Runs one exercise at a time: frames in, live status out.

    Owns the pitch and formant estimators (one instance each, histories
    cleared at every session start) and the current ExerciseSession. When a
    session ends the finalized result is kept in ``last_result`` and the
    session itself is discarded.
    """

    def __init__(
        self,
        sample_rate=44100,
        frame_source=None,
        pitch_estimator=None,
        formant_estimator=None,
        formant_method="lpc",
        clock=monotonic,
    ):
        self.sample_rate = int(sample_rate)
        self.frame_source = frame_source
        self.clock = clock

        # Estimators: allow injection for tests, otherwise construct
        if pitch_estimator is None:
            pitch_estimator = PitchEstimator(sample_rate=sample_rate)
        if formant_estimator is None:
            formant_estimator = FormantEstimator(
                sample_rate=sample_rate, method=formant_method
            )
        self.pitch_estimator = pitch_estimator
        self.formant_estimator = formant_estimator

        self.machine = None
        self.session = None
        self.last_result = None

    def _now(self, now):
        return self.clock() if now is None else float(now)

    @property
    def is_running(self):
        return self.session is not None and self.session.is_live

    # ---------------------------------------------------------
    # Session control
    # ---------------------------------------------------------
    def start_exercise(self, kind, target_frequency=None, now=None):
        if self.is_running:
            raise ExerciseError(
                f"exercise {self.session.kind.name} is still running; stop it first"
            )

        try:
            kind = get_kind(kind)
        except KeyError as e:
            raise ExerciseError(str(e.args[0])) from None
        if kind.scorer == "pitch" and target_frequency is None:
            raise ExerciseError(f"{kind.name} needs a target frequency")

        # Acquire audio before any session state exists
        if self.frame_source is not None and not self.frame_source.is_open:
            self.frame_source.open()

        self.machine = CaptureStateMachine(
            kind,
            self.pitch_estimator,
            self.formant_estimator,
            clock=self.clock,
        )
        self.session = self.machine.start(
            now=self._now(now), target_frequency=target_frequency
        )
        self.last_result = None
        return self.session

    def stop_exercise(self, now=None):
        """Stop the running exercise and return its result (None if idle)."""
        if self.session is None:
            return self.last_result

        result = self.machine.stop(self.session, now=self._now(now))
        self._close(result)
        return result

    def _close(self, result):
        self.last_result = result
        self.session = None
        logger.info(
            "exercise %s finished: %s (score=%s)",
            result.kind, result.message, result.score,
        )

    # ---------------------------------------------------------
    # Frame processing
    # ---------------------------------------------------------
    def process_frame(self, frame, now=None):
        if self.session is None:
            raise ExerciseError("no exercise is running")

        now = self._now(now)
        kind = self.session.kind

        pitch = self.pitch_estimator.detect(frame)
        formants = None
        if kind.needs_formants:
            formants = self.formant_estimator.detect(frame)

        self.machine.process(self.session, pitch, formants, now=now)
        status = self.live_status(now)
        status["detected_pitch"] = pitch

        if self.session.is_finished:
            result = self.machine.finalize(self.session)
            self._close(result)
            status["result"] = result

        return status

    def live_status(self, now=None):
        """Snapshot of the running session for a live display."""
        session = self.session
        if session is None:
            return {"state": None, "result": self.last_result}

        now = self._now(now)
        r = session.last_readings
        pitch = r.pitch if r is not None else None

        return {
            "kind": session.kind.name,
            "state": session.state.value,
            "pitch": pitch,
            "pitch_stddev": r.pitch_stddev if r is not None else None,
            "note": freq_to_note_name(pitch) if pitch else None,
            "target_frequency": session.target_frequency,
            "formants": r.formants if r is not None else None,
            "stability": r.stability if r is not None else None,
            "brightness": r.brightness if r is not None else None,
            "elapsed": session.elapsed(now),
            "voiced_time": session.voiced_time,
            "time_remaining": session.time_remaining(),
            "sustain_elapsed": session.sustain_elapsed,
            "sustain_required": session.kind.sustain_seconds,
            "failure_elapsed": session.failure_elapsed,
            "rows": len(session.rows),
        }

    def run(self, frames, max_frames=None):
        """
        Feed frames until the session ends (or max_frames have been used).
        Returns the last status dict.
        """
        status = self.live_status()
        for i, frame in enumerate(frames):
            if self.session is None:
                break
            status = self.process_frame(frame)
            if "result" in status:
                break
            if max_frames is not None and i + 1 >= max_frames:
                break
        return status
