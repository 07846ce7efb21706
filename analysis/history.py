# analysis/history.py
import numpy as np


class RingHistory:
    """
    Fixed-capacity FIFO of feature rows backed by a preallocated numpy arena.

    Each push writes one row of ``width`` floats at the write index; once the
    arena is full the oldest row is overwritten. Windowed queries always look
    at the trailing ``min(n, len(self))`` rows in chronological order.
    """

    def __init__(self, capacity=50, width=1):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = int(capacity)
        self.width = int(width)
        self._data = np.zeros((self.capacity, self.width), dtype=float)
        self._next = 0
        self._count = 0

    def __len__(self):
        return self._count

    def push(self, values):
        row = np.asarray(values, dtype=float).reshape(-1)
        if row.size != self.width:
            raise ValueError(
                f"expected {self.width} values per row, got {row.size}"
            )
        self._data[self._next] = row
        self._next = (self._next + 1) % self.capacity
        self._count = min(self._count + 1, self.capacity)

    def clear(self):
        self._next = 0
        self._count = 0

    def tail(self, n=None):
        """Return the trailing n rows (all rows if n is None) oldest first."""
        if self._count == 0:
            return np.empty((0, self.width), dtype=float)

        k = self._count if n is None else max(0, min(int(n), self._count))
        if k == 0:
            return np.empty((0, self.width), dtype=float)

        start = (self._next - k) % self.capacity
        idx = (start + np.arange(k)) % self.capacity
        return self._data[idx].copy()

    def column(self, col=0, n=None):
        return self.tail(n)[:, col]

    # ---------------------------------------------------------
    # Windowed statistics
    # ---------------------------------------------------------
    def mean_over(self, n, col=0):
        """Mean of the trailing window, or None when the history is empty."""
        values = self.column(col, n)
        if values.size == 0:
            return None
        return float(np.mean(values))

    def std_over(self, n, col=0):
        """Population standard deviation; 0.0 for fewer than two rows."""
        if self._count < 2:
            return 0.0
        values = self.column(col, n)
        if values.size < 2:
            return 0.0
        return float(np.std(values))
