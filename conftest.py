# conftest.py
import numpy as np
import pytest

from analysis.formants import Formant, FormantSample


# ---------------------------------------------------------
# Scripted estimators
# ---------------------------------------------------------
class StubPitchEstimator:
    """
    Pitch estimator double: ``detect`` treats the frame itself as the
    detected pitch (a float or None), so tests can script exact readings.
    """

    def __init__(self):
        self.values = []
        self.cleared = 0

    def detect(self, frame, sample_rate=None):
        if frame is None:
            return None
        self.values.append(float(frame))
        return float(frame)

    def push(self, value):
        self.values.append(float(value))

    def average_over(self, n=10):
        window = self.values[-n:]
        if not window:
            return None
        return float(np.mean(window))

    def stddev_over(self, n=10):
        window = self.values[-n:]
        if len(window) < 2:
            return 0.0
        return float(np.std(window))

    def clear_history(self):
        self.values = []
        self.cleared += 1


class StubFormantEstimator:
    """Formant estimator double with a settable stability reading."""

    def __init__(self, frequencies=(500.0, 1500.0, 2500.0), stability=2.0):
        self.frequencies = frequencies
        self.stability = stability
        self.count = 0
        self.cleared = 0

    def sample(self):
        return FormantSample(*[Formant(f) for f in self.frequencies])

    def detect(self, frame, sample_rate=None):
        if frame is None:
            return None
        self.count += 1
        return self.sample()

    def average_over(self, n=10):
        return self.frequencies if self.count else None

    def stddev_over(self, n=10, formant_number=1):
        return 0.0

    def resonance_stability(self, n=10):
        return self.stability

    def brightness_ratio(self, n=10):
        return self.frequencies[1] / self.frequencies[0]

    def clear_history(self):
        self.count = 0
        self.cleared += 1


@pytest.fixture
def pitch_stub():
    return StubPitchEstimator()


@pytest.fixture
def formant_stub():
    return StubFormantEstimator()


@pytest.fixture
def frame_times():
    """Frame timestamps every 0.1 s, computed without float drift."""
    def _times(start, stop):
        first = int(round(start * 10))
        last = int(round(stop * 10))
        return [i / 10.0 for i in range(first, last + 1)]
    return _times
