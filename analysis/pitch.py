# analysis/pitch.py
import logging

import numpy as np

from analysis.frame import Frame, rms
from analysis.history import RingHistory
from utils.music_utils import frequency_to_note, note_to_frequency

logger = logging.getLogger(__name__)

MIN_RMS = 0.005          # below this a frame counts as silence
HISTORY_SIZE = 50
VOICE_FMIN = 80.0        # lag search band (human voice)
VOICE_FMAX = 1000.0
ACCEPT_FMIN = 60.0       # sanity band applied to the refined estimate
ACCEPT_FMAX = 1200.0
MIN_CORRELATION = 0.5
CLIP_RATIO = 0.6        # center-clip threshold, fraction of the block peak


def center_clip(frame, ratio=CLIP_RATIO):
    """Zero everything within ratio * peak of zero and shift the rest toward it."""
    clip_level = ratio * np.max(np.abs(frame))
    if clip_level <= 0:
        return frame
    return np.where(
        frame >= clip_level,
        frame - clip_level,
        np.where(frame <= -clip_level, frame + clip_level, 0.0),
    )


def autocorrelation_pitch(samples, sr, fmin=VOICE_FMIN, fmax=VOICE_FMAX,
                          min_rms=MIN_RMS):
    """
    Normalized-autocorrelation pitch estimate for one block.

    The RMS gate looks at the raw block; the block is then mean-removed and
    center-clipped so formant ringing does not outrank the pitch period.
    The first half of the block is correlated against lagged copies of the
    block and each lag is divided by the geometric mean of the two windows'
    energies, so every lag compares equal-length windows on a [-1, 1] scale.
    The first true peak (greater than both neighbours) above
    MIN_CORRELATION inside the lag window for [fmin, fmax] wins; lags
    shorter than sr/fmax are never considered, which keeps the main lobe at
    lag 0 from producing octave-up errors. The peak is refined by parabolic
    interpolation.

    Returns the frequency in Hz, or None for silence / no clear period.
    """
    x = np.asarray(samples, dtype=float).flatten()
    n = x.size
    if n < 8 or sr is None or sr <= 0:
        return None

    if rms(x) < min_rms:
        return None

    x = center_clip(x - np.mean(x))

    half = n // 2
    corr = np.correlate(x, x[:half], mode="valid")[:half]

    energy = np.concatenate(([0.0], np.cumsum(x ** 2)))
    lags = np.arange(half)
    e0 = energy[half]
    e_lag = energy[lags + half] - energy[lags]
    denom = np.sqrt(e0 * e_lag)
    if e0 <= 0:
        return None
    norm = np.divide(corr, denom, out=np.zeros_like(corr), where=denom > 0)

    min_lag = max(1, int(np.floor(sr / fmax)))
    max_lag = min(int(np.floor(sr / fmin)), half - 2)
    if min_lag > max_lag:
        return None

    seg = norm[min_lag:max_lag + 1]
    prev = norm[min_lag - 1:max_lag]
    nxt = norm[min_lag + 1:max_lag + 2]
    peaks = np.flatnonzero((seg > MIN_CORRELATION) & (seg > prev) & (seg > nxt))
    if peaks.size == 0:
        return None

    lag = int(peaks[0]) + min_lag

    alpha, beta, gamma = norm[lag - 1], norm[lag], norm[lag + 1]
    curvature = alpha - 2 * beta + gamma
    delta = 0.5 * (alpha - gamma) / curvature if curvature != 0 else 0.0
    refined = lag + delta
    if refined <= 0:
        return None

    return float(sr / refined)


class PitchEstimator:
    """
    Per-frame fundamental-frequency estimator with a bounded history.

    ``detect`` never raises: malformed frames are logged and reported as
    unvoiced, so one bad block cannot abort an exercise.
    """

    def __init__(self, sample_rate=44100, history_size=HISTORY_SIZE,
                 min_rms=MIN_RMS):
        self.sample_rate = int(sample_rate)
        self.min_rms = float(min_rms)
        self._history = RingHistory(capacity=history_size, width=1)

    def detect(self, frame, sample_rate=None):
        if isinstance(frame, Frame):
            samples, sr = frame.samples, frame.sample_rate
        else:
            samples, sr = frame, sample_rate or self.sample_rate

        try:
            f0 = autocorrelation_pitch(samples, sr, min_rms=self.min_rms)
        except Exception as e:
            logger.debug("pitch detection failed: %s", e)
            return None

        if f0 is None or not np.isfinite(f0):
            return None
        if not (ACCEPT_FMIN < f0 < ACCEPT_FMAX):
            return None

        self._history.push([f0])
        return f0

    # ---------------------------------------------------------
    # History queries
    # ---------------------------------------------------------
    def __len__(self):
        return len(self._history)

    @property
    def history(self):
        return self._history.column(0).tolist()

    def average_over(self, n=10):
        return self._history.mean_over(n)

    def stddev_over(self, n=10):
        return self._history.std_over(n)

    def clear_history(self):
        self._history.clear()

    @staticmethod
    def is_on_target(avg, target, threshold_hz=5.0):
        if avg is None or target is None:
            return False
        return abs(avg - target) <= threshold_hz

    # 12-TET conversions, exposed here for the live display
    frequency_to_note = staticmethod(frequency_to_note)
    note_to_frequency = staticmethod(note_to_frequency)
