# analysis/formants.py
import logging
from dataclasses import dataclass
from typing import NamedTuple, Optional

import librosa
import numpy as np
from scipy.signal import freqz

from analysis.frame import Frame
from analysis.history import RingHistory

logger = logging.getLogger(__name__)

HISTORY_SIZE = 50
MIN_ENERGY = 1e-6        # mean-square gate, same as the LPC path uses

# Search bands for the spectral-peak path (Hz)
FORMANT_BANDS = (
    (200.0, 1000.0),     # F1
    (800.0, 3000.0),     # F2
    (2000.0, 4000.0),    # F3
)


@dataclass(frozen=True)
class Formant:
    frequency: float
    energy: float = 0.0
    bandwidth: float = 0.0


@dataclass(frozen=True)
class FormantSample:
    f1: Formant
    f2: Formant
    f3: Formant

    @property
    def frequencies(self):
        return (self.f1.frequency, self.f2.frequency, self.f3.frequency)

    def as_row(self):
        return [
            value
            for f in (self.f1, self.f2, self.f3)
            for value in (f.frequency, f.energy, f.bandwidth)
        ]


class FormantAverage(NamedTuple):
    f1: float
    f2: float
    f3: float


# ---------------------------------------------------------
# Backends
# ---------------------------------------------------------
class SpectralPeakFormantBackend:
    """
    Simplified formant search: the strongest magnitude-spectrum bin inside
    each of the three formant bands. Energy and bandwidth are not measured
    on this path and are reported as zero.
    """

    name = "spectral"

    def __init__(self, nfft=2048, bands=FORMANT_BANDS):
        self.nfft = int(nfft)
        self.bands = bands

    def analyze(self, samples, sr) -> Optional[FormantSample]:
        x = np.asarray(samples, dtype=float).flatten()
        if x.size == 0:
            return None

        nfft = max(self.nfft, int(2 ** np.ceil(np.log2(x.size))))
        mag = np.abs(np.fft.rfft(x * np.hamming(x.size), n=nfft))
        freqs = np.fft.rfftfreq(nfft, 1.0 / sr)

        found = []
        for lo, hi in self.bands:
            mask = (freqs >= lo) & (freqs <= hi)
            if not np.any(mask):
                return None
            idx = int(np.argmax(mag[mask]))
            found.append(Formant(float(freqs[mask][idx])))

        return FormantSample(*found)


class LpcFormantBackend:
    """
    Linear-prediction formant extraction.

    Pole angles give the formant frequencies, pole radii the bandwidths, and
    the LPC envelope level at each pole frequency the energy (dB). When
    fewer than three plausible poles survive filtering the frame is handed
    to the spectral-peak fallback.
    """

    name = "lpc"

    def __init__(self, order=None, pre_emph=0.97, min_freq=90.0,
                 max_freq=5000.0, max_bandwidth=600.0, fallback=None):
        self.order = order
        self.pre_emph = float(pre_emph)
        self.min_freq = float(min_freq)
        self.max_freq = float(max_freq)
        self.max_bandwidth = float(max_bandwidth)
        self.fallback = fallback or SpectralPeakFormantBackend()

    def analyze(self, samples, sr) -> Optional[FormantSample]:
        y = np.asarray(samples, dtype=float).flatten()

        if self.pre_emph > 0 and y.size > 1:
            y = np.append(y[0], y[1:] - self.pre_emph * y[:-1])

        order = self.order
        if order is None:
            order = int(2 + sr / 1000)
        order = max(8, min(int(order), 40))

        if y.size < 3 * order:
            return None

        segment = y * np.hamming(y.size)
        A = librosa.lpc(segment, order=order)

        roots = np.roots(A)
        roots = roots[np.imag(roots) > 1e-6]

        freqs = np.angle(roots) * (sr / (2.0 * np.pi))
        bws = -0.5 * (sr / np.pi) * np.log(np.abs(roots))

        mask = (
            (freqs > self.min_freq)
            & (freqs < min(self.max_freq, sr / 2.0))
            & (bws > 0)
            & (bws < self.max_bandwidth)
        )
        freqs, bws = freqs[mask], bws[mask]

        if freqs.size < 3:
            logger.debug("LPC found %d poles, using spectral peaks", freqs.size)
            return self.fallback.analyze(samples, sr)

        order_idx = np.argsort(freqs)[:3]
        freqs, bws = freqs[order_idx], bws[order_idx]

        _, h = freqz([1.0], A, worN=freqs, fs=sr)
        energies = 20.0 * np.log10(np.abs(h) + 1e-12)

        return FormantSample(*[
            Formant(float(f), float(e), float(b))
            for f, e, b in zip(freqs, energies, bws)
        ])


def make_backend(method="lpc"):
    if method == "lpc":
        return LpcFormantBackend()
    if method == "spectral":
        return SpectralPeakFormantBackend()
    raise ValueError(f"unknown formant method: {method!r}")


# ---------------------------------------------------------
# Estimator
# ---------------------------------------------------------
class FormantEstimator:
    """
    Per-frame F1/F2/F3 estimator with a bounded history.

    The backend is chosen once at construction. ``detect`` catches backend
    failures and reports the frame as unvoiced without touching history.
    """

    def __init__(self, sample_rate=44100, backend=None, method="lpc",
                 history_size=HISTORY_SIZE, min_energy=MIN_ENERGY):
        self.sample_rate = int(sample_rate)
        self.backend = backend if backend is not None else make_backend(method)
        self.min_energy = float(min_energy)
        self._history = RingHistory(capacity=history_size, width=9)

    @property
    def method(self):
        return getattr(self.backend, "name", type(self.backend).__name__)

    def detect(self, frame, sample_rate=None) -> Optional[FormantSample]:
        if isinstance(frame, Frame):
            samples, sr = frame.samples, frame.sample_rate
        else:
            samples, sr = frame, sample_rate or self.sample_rate

        try:
            x = np.asarray(samples, dtype=float).flatten()
            if x.size == 0 or np.mean(x ** 2) < self.min_energy:
                return None

            sample = self.backend.analyze(x, sr)
            if sample is None:
                return None

            row = sample.as_row()
            if not np.all(np.isfinite(row)):
                return None
        except Exception as e:
            logger.debug("formant analysis failed (%s): %s", self.method, e)
            return None

        self._history.push(row)
        return sample

    # ---------------------------------------------------------
    # History queries
    # ---------------------------------------------------------
    def __len__(self):
        return len(self._history)

    def average_formants(self, n=10) -> Optional[FormantAverage]:
        if len(self._history) == 0:
            return None
        return FormantAverage(*[
            self._history.mean_over(n, col=3 * i) for i in range(3)
        ])

    def stddev(self, formant_number=1, n=10):
        if formant_number not in (1, 2, 3):
            raise ValueError("formant_number must be 1, 2 or 3")
        return self._history.std_over(n, col=3 * (formant_number - 1))

    # Shared windowing names, matching PitchEstimator
    average_over = average_formants

    def stddev_over(self, n=10, formant_number=1):
        return self.stddev(formant_number, n)

    def resonance_stability(self, n=10):
        """
        Mean coefficient of variation (percent) of F1 and F2.

        Lower is steadier; an empty history reports 100, the worst case.
        """
        avg = self.average_formants(n)
        if avg is None:
            return 100.0

        f1_cv = self.stddev(1, n) / avg.f1 * 100.0 if avg.f1 > 0 else 100.0
        f2_cv = self.stddev(2, n) / avg.f2 * 100.0 if avg.f2 > 0 else 100.0
        return (f1_cv + f2_cv) / 2.0

    def brightness_ratio(self, n=10):
        """Mean F2 / mean F1, or None without data."""
        avg = self.average_formants(n)
        if avg is None or avg.f1 == 0:
            return None
        return avg.f2 / avg.f1

    def clear_history(self):
        self._history.clear()
