import numpy as np
from scipy.signal import lfilter


def sine_frame(freq, sr=44100, n=2048, amplitude=0.5, phase=0.0):
    """A pure tone block of n samples."""
    t = np.arange(n) / float(sr)
    return amplitude * np.sin(2 * np.pi * freq * t + phase)


def voiced_frame(f0, formants=(700.0, 1200.0, 2600.0), sr=44100, n=2048,
                 amplitude=0.5, bandwidth=80.0):
    """
    Vowel-like block: a glottal pulse train at f0 shaped by a cascade of
    two-pole resonators at the given formant frequencies.

    Parameters
    ----------
    f0 : float
        Fundamental frequency in Hz.
    formants : sequence of float
        Resonance centre frequencies in Hz.
    sr : int
        Sample rate.
    n : int
        Number of samples.

    Returns
    -------
    np.ndarray
        The synthetic block, peak-normalised to ``amplitude``.
    """
    period = max(1, int(round(sr / f0)))
    pulses = np.zeros(n + 4 * period)
    pulses[::period] = 1.0

    y = pulses
    for fc in formants:
        r = np.exp(-np.pi * bandwidth / sr)
        theta = 2 * np.pi * fc / sr
        y = lfilter([1.0], [1.0, -2 * r * np.cos(theta), r * r], y)

    y = y[-n:]
    peak = np.max(np.abs(y))
    if peak > 0:
        y = y / peak * amplitude
    return y


def silence(n=2048, level=0.0, seed=None):
    """Silent (or very low-level noise) block."""
    if level <= 0:
        return np.zeros(n)
    rng = np.random.default_rng(seed)
    return level * rng.standard_normal(n)
