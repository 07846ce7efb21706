# analysis/frame.py
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Frame:
    """
    One fixed-length block of mono time-domain samples.

    The samples are copied into a read-only float64 array so that every
    estimator sees the same immutable data.
    """

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        arr = np.array(self.samples, dtype=float).flatten()
        arr.setflags(write=False)
        object.__setattr__(self, "samples", arr)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    def __len__(self):
        return int(self.samples.size)

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.samples.size / float(self.sample_rate)


def rms(samples) -> float:
    """Root-mean-square level of a block; 0.0 for empty input."""
    arr = np.asarray(samples, dtype=float).flatten()
    if arr.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(arr ** 2)))
