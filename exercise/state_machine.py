import logging
from time import monotonic

import numpy as np

from analysis.scoring import evaluate_sentence, score_session
from exercise.kinds import AVG_WINDOW, STD_WINDOW, get_kind
from exercise.session import (
    ExerciseSession,
    ExerciseState,
    Readings,
    SampleRow,
    SessionResult,
)

logger = logging.getLogger(__name__)

# Accumulated frame deltas may land a hair short of a threshold
TIME_EPS = 1e-6


class CaptureStateMachine:
    """
    Generic capture state machine for one exercise kind:

      idle → armed → listening → (sustaining →) capturing
           → completed | failed | stopped

    The machine itself holds only configuration and the estimators it reads
    statistics from; everything that changes during a run lives in the
    ExerciseSession passed to each call. Timers advance by the wall-clock
    delta between successive processed frames, and only on voiced frames.
    """

    def __init__(self, kind, pitch_estimator, formant_estimator=None,
                 clock=monotonic):
        self.kind = get_kind(kind)
        self.pitch_estimator = pitch_estimator
        self.formant_estimator = formant_estimator
        self.clock = clock

        if self.kind.needs_formants and formant_estimator is None:
            raise ValueError(f"{self.kind.name} needs a formant estimator")

    def _now(self, now):
        return self.clock() if now is None else float(now)

    # ---------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------
    def start(self, now=None, target_frequency=None):
        now = self._now(now)

        self.pitch_estimator.clear_history()
        if self.formant_estimator is not None:
            self.formant_estimator.clear_history()

        session = ExerciseSession(
            kind=self.kind,
            started_at=now,
            target_frequency=target_frequency,
            last_frame_at=now,
        )

        if self.kind.ready_delay > 0:
            session.state = ExerciseState.ARMED
        else:
            session.state = ExerciseState.LISTENING
            session.listening_since = now

        logger.info(
            "exercise %s started (state=%s target=%s)",
            self.kind.name, session.state.value, target_frequency,
        )
        return session

    def tick(self, session, now=None):
        """Fire the one-shot ready transition once the delay has passed."""
        now = self._now(now)
        if session.state is ExerciseState.ARMED:
            ready_at = session.started_at + self.kind.ready_delay
            if now >= ready_at - TIME_EPS:
                session.state = ExerciseState.LISTENING
                session.listening_since = now
                logger.info("exercise %s ready", self.kind.name)
        return session.state

    def stop(self, session, now=None):
        """Manual stop; safe in any state and idempotent."""
        now = self._now(now)
        if session.is_live or session.state is ExerciseState.IDLE:
            session.state = ExerciseState.STOPPED
            session.ended_at = now
            logger.info(
                "exercise %s stopped with %d rows",
                self.kind.name, len(session.rows),
            )
        return self.finalize(session)

    # ---------------------------------------------------------
    # Per-frame update
    # ---------------------------------------------------------
    def _readings(self, pitch, formants):
        avg_pitch = self.pitch_estimator.average_over(AVG_WINDOW)
        if avg_pitch is None:
            avg_pitch = pitch

        avg_formants = stability = brightness = None
        if formants is not None and self.formant_estimator is not None:
            avg = self.formant_estimator.average_over(AVG_WINDOW)
            avg_formants = tuple(avg) if avg is not None else None
            stability = self.formant_estimator.resonance_stability(STD_WINDOW)
            brightness = self.formant_estimator.brightness_ratio()

        return Readings(
            raw_pitch=pitch,
            pitch=avg_pitch,
            pitch_stddev=self.pitch_estimator.stddev_over(STD_WINDOW),
            formants=avg_formants,
            stability=stability,
            brightness=brightness,
        )

    def _is_voiced(self, pitch, formants):
        if pitch is None:
            return False
        return formants is not None or not self.kind.needs_formants

    def process(self, session, pitch, formants=None, now=None):  # noqa: C901
        now = self._now(now)
        if not session.is_live:
            return session.state

        was_armed = session.state is ExerciseState.ARMED
        self.tick(session, now)

        prev = session.last_frame_at if session.last_frame_at is not None else now
        delta = max(0.0, now - prev)
        session.last_frame_at = now
        if was_armed:
            # Time spent armed is never voiced time
            delta = 0.0

        if session.state is ExerciseState.ARMED:
            return session.state

        if not self._is_voiced(pitch, formants):
            # A running failure window is wall-clock time; only a voiced
            # frame that clears the predicate can stop it
            if session.failing:
                session.failure_elapsed += delta
                if session.failure_elapsed > self.kind.failure_grace + TIME_EPS:
                    self._fail(session, now)
            return session.state

        kind = self.kind
        readings = self._readings(pitch, formants)
        session.last_readings = readings

        # 1-2. Failure predicate with grace window
        if kind.failure is not None and kind.failure(readings, session.target_frequency):
            if session.failing:
                session.failure_elapsed += delta
            else:
                session.failing = True
                session.failure_elapsed = 0.0

            if session.failure_elapsed > kind.failure_grace + TIME_EPS:
                self._fail(session, now)
                return session.state
        else:
            session.failing = False
            session.failure_elapsed = 0.0

        # 3. Voiced time
        session.voiced_time += delta

        # 4. Target / sustain gate
        if session.state in (ExerciseState.LISTENING, ExerciseState.SUSTAINING):
            on_target = (
                kind.target is None
                or kind.target(readings, session.target_frequency)
            )
            if on_target:
                if session.state is ExerciseState.SUSTAINING:
                    session.sustain_elapsed += delta
                elif kind.sustain_gated:
                    session.state = ExerciseState.SUSTAINING
                    session.sustain_elapsed = 0.0
                    logger.debug("on target, sustain timer started")

                if session.sustain_elapsed >= kind.sustain_seconds - TIME_EPS:
                    since = session.listening_since
                    session.time_to_hit = now - (since if since is not None else session.started_at)
                    session.state = ExerciseState.CAPTURING
                    logger.info(
                        "exercise %s capturing (time to hit %.2fs)",
                        kind.name, session.time_to_hit,
                    )
            elif session.state is ExerciseState.SUSTAINING:
                logger.debug(
                    "lost target after %.2fs, sustain timer reset",
                    session.sustain_elapsed,
                )
                session.sustain_elapsed = 0.0
                session.state = ExerciseState.LISTENING

        # 5. Record
        if session.state is ExerciseState.CAPTURING:
            session.rows.append(SampleRow(
                offset=now - session.started_at,
                pitch=readings.pitch,
                pitch_stddev=readings.pitch_stddev,
                raw_pitch=readings.raw_pitch,
                formants=readings.formants,
                stability=readings.stability,
                brightness=readings.brightness,
            ))

        # 6. Auto-stop on voiced-time cap
        cap = kind.auto_stop_seconds
        if cap is not None and session.voiced_time >= cap - TIME_EPS:
            session.state = ExerciseState.COMPLETED
            session.ended_at = now
            logger.info(
                "exercise %s completed after %.1fs voiced",
                kind.name, session.voiced_time,
            )

        return session.state

    def _fail(self, session, now):
        session.state = ExerciseState.FAILED
        session.failed = True
        session.failure_reason = self.kind.failure_reason
        session.ended_at = now
        logger.warning(
            "exercise %s disqualified: %s", self.kind.name, session.failure_reason
        )

    # ---------------------------------------------------------
    # Results
    # ---------------------------------------------------------
    def finalize(self, session):
        end = session.ended_at
        if end is None:
            end = session.last_frame_at if session.last_frame_at is not None else session.started_at
        duration = max(0.0, end - session.started_at)

        base = dict(
            kind=self.kind.name,
            section=self.kind.section,
            state=session.state,
            duration=duration,
            rows=len(session.rows),
            time_to_hit=session.time_to_hit,
            target_frequency=session.target_frequency,
        )

        if session.failed:
            return SessionResult(
                **base,
                passed=False,
                disqualified=True,
                failure_reason=session.failure_reason,
            )

        rows = session.rows
        if not rows:
            return SessionResult(**base, no_data=True)

        pitches = [r.pitch for r in rows if r.pitch is not None]
        stabilities = [r.stability for r in rows if r.stability is not None]

        avg_pitch = float(np.mean(pitches)) if pitches else None
        avg_stddev = float(np.mean([r.pitch_stddev for r in rows]))
        avg_stability = float(np.mean(stabilities)) if stabilities else None

        if self.kind.scorer == "sentence":
            evaluation = evaluate_sentence(pitches)
            melodic = evaluation[1] if evaluation else None
            passed = evaluation[2] if evaluation else False
            return SessionResult(
                **base,
                avg_pitch=avg_pitch,
                avg_stddev=avg_stddev,
                melodic_stability=melodic,
                passed=passed,
            )

        scored = score_session(
            self.kind.scorer,
            rows,
            target_frequency=session.target_frequency,
            duration=duration,
            time_to_hit=session.time_to_hit,
        )

        return SessionResult(
            **base,
            avg_pitch=avg_pitch,
            avg_stddev=avg_stddev,
            avg_stability=avg_stability,
            score=scored.score if scored else None,
            components=dict(scored.components) if scored else {},
            passed=scored.passed if scored else None,
        )
