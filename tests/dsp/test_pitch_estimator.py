import numpy as np
import pytest

from analysis.frame import Frame
from analysis.pitch import PitchEstimator, autocorrelation_pitch, center_clip
from analysis.synthetic import silence, sine_frame, voiced_frame

SR = 44100


@pytest.mark.parametrize("freq", [80.0, 110.0, 165.0, 220.0, 262.0, 440.0, 660.0, 1000.0])
def test_pure_tone_within_one_percent(freq):
    est = PitchEstimator(sample_rate=SR)
    f0 = est.detect(sine_frame(freq, sr=SR))
    assert f0 is not None
    assert abs(f0 - freq) / freq < 0.01


@pytest.mark.parametrize("f0", [110.0, 150.0, 200.0, 300.0])
def test_vowel_like_frame_reports_fundamental(f0):
    """Formant ringing must not outrank the glottal period."""
    est = PitchEstimator(sample_rate=SR)
    f = est.detect(voiced_frame(f0, sr=SR))
    assert f is not None
    assert abs(f - f0) / f0 < 0.01


def test_low_voice_is_not_read_as_high():
    f = autocorrelation_pitch(voiced_frame(110.0, sr=SR), SR)
    assert f < 150.0


def test_center_clip():
    x = np.array([1.0, 0.7, 0.5, 0.0, -0.5, -0.8, -1.0])
    assert np.allclose(center_clip(x), [0.4, 0.1, 0.0, 0.0, 0.0, -0.2, -0.4])
    assert np.array_equal(center_clip(np.zeros(4)), np.zeros(4))


def test_pure_tone_other_sample_rate():
    f0 = autocorrelation_pitch(sine_frame(200.0, sr=48000), 48000)
    assert f0 == pytest.approx(200.0, rel=0.01)


def test_frame_object_carries_sample_rate():
    est = PitchEstimator(sample_rate=SR)
    frame = Frame(sine_frame(300.0, sr=16000, n=1024), 16000)
    assert est.detect(frame) == pytest.approx(300.0, rel=0.01)


def test_silence_returns_none_and_leaves_history():
    est = PitchEstimator(sample_rate=SR)
    est.detect(sine_frame(200.0))
    assert est.detect(silence()) is None
    assert est.detect(silence(level=0.001, seed=1)) is None
    assert len(est) == 1


def test_below_rms_gate():
    est = PitchEstimator(sample_rate=SR)
    assert est.detect(sine_frame(200.0, amplitude=0.004)) is None


def test_noise_has_no_clear_period():
    rng = np.random.default_rng(3)
    assert autocorrelation_pitch(rng.standard_normal(2048), SR) is None


def test_degenerate_inputs():
    assert autocorrelation_pitch(np.array([]), SR) is None
    assert autocorrelation_pitch(np.ones(4), SR) is None
    assert autocorrelation_pitch(sine_frame(200.0), 0) is None


def test_detect_swallows_bad_frames():
    est = PitchEstimator()
    assert est.detect(object()) is None
    assert len(est) == 0


def test_history_is_bounded():
    est = PitchEstimator(sample_rate=SR)
    frame = sine_frame(220.0)
    for _ in range(60):
        est.detect(frame)
    assert len(est) == 50


def test_stddev_of_identical_pitches_is_zero():
    est = PitchEstimator(sample_rate=SR)
    frame = sine_frame(220.0)
    for _ in range(12):
        est.detect(frame)
    assert est.stddev_over(10) == pytest.approx(0.0, abs=1e-9)
    assert est.average_over(5) == pytest.approx(220.0, rel=0.01)


def test_empty_history_statistics():
    est = PitchEstimator()
    assert est.average_over(10) is None
    assert est.stddev_over(10) == 0.0


def test_clear_history():
    est = PitchEstimator(sample_rate=SR)
    est.detect(sine_frame(220.0))
    est.clear_history()
    assert est.history == []


def test_is_on_target_threshold():
    assert PitchEstimator.is_on_target(205.0, 200.0)
    assert not PitchEstimator.is_on_target(205.5, 200.0)
    assert not PitchEstimator.is_on_target(None, 200.0)


def test_note_helpers_exposed():
    assert PitchEstimator.note_to_frequency("A", 4) == pytest.approx(440.0)
    assert PitchEstimator.frequency_to_note(440.0)["note"] == "A4"
