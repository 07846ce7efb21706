import dataclasses
import itertools
from unittest.mock import MagicMock

import pytest

from analysis.frame import Frame
from analysis.pitch import PitchEstimator
from analysis.synthetic import silence, sine_frame
from audio.frame_source import AudioUnavailableError
from exercise.kinds import PITCH_SUSTAIN
from exercise.session import ExerciseState
from trainer.controller import ExerciseError, Trainer

SR = 44100
PITCH_NO_DELAY = dataclasses.replace(PITCH_SUSTAIN, ready_delay=0.0)


def stepping_clock(step=0.1):
    ticks = itertools.count()
    return lambda: next(ticks) * step


# ---------------------------------------------------------
# Session control
# ---------------------------------------------------------
def test_start_while_running_raises(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    trainer.start_exercise("pitch_practice", now=0.0)

    with pytest.raises(ExerciseError):
        trainer.start_exercise("sentence", now=1.0)
    assert trainer.session.kind.name == "pitch_practice"


def test_pitch_sustain_needs_target(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    with pytest.raises(ExerciseError):
        trainer.start_exercise("pitch_sustain", now=0.0)
    assert trainer.session is None


def test_audio_unavailable_creates_no_session(pitch_stub, formant_stub):
    source = MagicMock()
    source.is_open = False
    source.open.side_effect = AudioUnavailableError("no input device")
    trainer = Trainer(frame_source=source, pitch_estimator=pitch_stub,
                      formant_estimator=formant_stub)

    with pytest.raises(AudioUnavailableError):
        trainer.start_exercise("pitch_practice", now=0.0)
    assert trainer.session is None
    assert not trainer.is_running


def test_frame_source_opened_on_start(pitch_stub, formant_stub):
    source = MagicMock()
    source.is_open = False
    trainer = Trainer(frame_source=source, pitch_estimator=pitch_stub,
                      formant_estimator=formant_stub)
    trainer.start_exercise("pitch_practice", now=0.0)
    source.open.assert_called_once()


def test_process_without_session_raises(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    with pytest.raises(ExerciseError):
        trainer.process_frame(200.0, now=0.0)


def test_stop_when_idle(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    assert trainer.stop_exercise(now=0.0) is None
    assert trainer.live_status() == {"state": None, "result": None}


def test_restart_after_stop(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    trainer.start_exercise("pitch_practice", now=0.0)
    trainer.process_frame(180.0, now=0.1)
    result = trainer.stop_exercise(now=0.5)

    assert trainer.last_result is result
    trainer.start_exercise("sentence", now=1.0)
    assert trainer.last_result is None
    assert pitch_stub.values == []


# ---------------------------------------------------------
# Frame processing
# ---------------------------------------------------------
def test_live_status_fields(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    trainer.start_exercise(PITCH_NO_DELAY, target_frequency=220.0, now=0.0)
    status = trainer.process_frame(220.0, now=0.1)

    assert status["state"] == ExerciseState.SUSTAINING.value
    assert status["pitch"] == pytest.approx(220.0)
    assert status["detected_pitch"] == pytest.approx(220.0)
    assert status["note"] == "A3"
    assert status["time_remaining"] == pytest.approx(29.9)
    assert status["sustain_required"] == 3.0
    assert "result" not in status


def test_formants_only_read_for_formant_kinds(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    trainer.start_exercise("pitch_practice", now=0.0)
    trainer.process_frame(180.0, now=0.1)
    assert formant_stub.count == 0

    trainer.stop_exercise(now=0.2)
    trainer.start_exercise("resonance_practice", now=1.0)
    status = trainer.process_frame(180.0, now=1.1)
    assert formant_stub.count == 1
    assert status["stability"] == formant_stub.stability
    assert status["brightness"] == pytest.approx(3.0)


def test_auto_stop_returns_result(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    trainer.start_exercise(PITCH_NO_DELAY, target_frequency=200.0, now=0.0)

    status = None
    for i in range(400):
        status = trainer.process_frame(200.0, now=i / 10.0)
        if "result" in status:
            break

    result = status["result"]
    assert result.state is ExerciseState.COMPLETED
    assert result.passed is True
    assert trainer.session is None
    assert trainer.last_result is result
    assert not trainer.is_running


def test_run_respects_max_frames(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub,
                      clock=stepping_clock())
    trainer.start_exercise("pitch_practice", now=0.0)
    trainer.run([180.0] * 20, max_frames=5)
    assert len(pitch_stub.values) == 5
    assert trainer.is_running


def test_run_stops_on_result(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub,
                      clock=stepping_clock())
    trainer.start_exercise(PITCH_NO_DELAY, target_frequency=200.0, now=0.0)
    status = trainer.run([200.0] * 400)

    assert "result" in status
    assert len(pitch_stub.values) < 400


# ---------------------------------------------------------
# Real estimators on synthetic audio
# ---------------------------------------------------------
def test_practice_with_sine_frames():
    trainer = Trainer(sample_rate=SR)
    trainer.start_exercise("pitch_practice", now=0.0)
    for i in range(20):
        trainer.process_frame(Frame(sine_frame(220.0, sr=SR), SR), now=i * 0.05)

    result = trainer.stop_exercise(now=1.0)
    assert result.rows == 20
    assert result.avg_pitch == pytest.approx(220.0, rel=0.01)
    assert result.score is None


def test_pitch_sustain_with_sine_frames():
    trainer = Trainer(sample_rate=SR)
    trainer.start_exercise("pitch_sustain", target_frequency=200.0, now=0.0)

    tone = Frame(sine_frame(200.0, sr=SR), SR)
    quiet = Frame(silence(), SR)
    states = []
    for i in range(61):
        t = i / 10.0
        frame = quiet if i < 5 else tone
        states.append(trainer.process_frame(frame, now=t)["state"])

    assert states[0] == ExerciseState.ARMED.value
    assert states[20] == ExerciseState.SUSTAINING.value
    assert states[50] == ExerciseState.CAPTURING.value
    assert trainer.session.time_to_hit == pytest.approx(3.0)

    result = trainer.stop_exercise(now=6.0)
    assert result.rows == 11
    assert result.passed is True
    assert result.components["speed"] == pytest.approx(20.0)
    assert result.components["sustain"] == pytest.approx(20.0)
    assert result.components["stability"] == pytest.approx(100.0)
    assert 230 <= result.score <= 240


def test_resonance_with_real_pitch(formant_stub):
    trainer = Trainer(sample_rate=SR, formant_estimator=formant_stub)
    trainer.start_exercise("resonance_sustain", now=0.0)
    tone = Frame(sine_frame(180.0, sr=SR), SR)
    for i in range(10):
        trainer.process_frame(tone, now=i * 0.1)

    result = trainer.stop_exercise(now=1.0)
    assert result.avg_stability == pytest.approx(2.0)
    assert result.score == 80
    assert result.passed is True


def test_injected_empty_estimator_is_kept():
    est = PitchEstimator(sample_rate=SR)
    trainer = Trainer(sample_rate=SR, pitch_estimator=est)
    assert trainer.pitch_estimator is est


def test_unknown_kind_raises_exercise_error(pitch_stub, formant_stub):
    trainer = Trainer(pitch_estimator=pitch_stub, formant_estimator=formant_stub)
    with pytest.raises(ExerciseError, match="karaoke"):
        trainer.start_exercise("karaoke", now=0.0)
    assert trainer.session is None
