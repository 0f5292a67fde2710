"""Fixed-range integer histogram with an explicit overflow bucket.

Values ``0..max_value`` each get their own bin; anything larger lands in the
overflow bucket so that the total always equals the number of values added.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np


class Histogram:
    def __init__(self, max_value: int) -> None:
        if max_value < 0:
            raise ValueError("max_value must be >= 0")
        self.max_value = int(max_value)
        self.counts = np.zeros(self.max_value + 1, dtype=np.int64)
        self.overflow = 0

    def add(self, value: int, n: int = 1) -> None:
        if value < 0:
            raise ValueError(f"Histogram values must be >= 0, got {value}")
        if value > self.max_value:
            self.overflow += n
        else:
            self.counts[value] += n

    def add_many(self, values: Sequence[int] | np.ndarray) -> None:
        arr = np.asarray(values, dtype=np.int64)
        if arr.size == 0:
            return
        if arr.min() < 0:
            raise ValueError("Histogram values must be >= 0")
        inside = arr[arr <= self.max_value]
        self.overflow += int(arr.size - inside.size)
        self.counts += np.bincount(inside, minlength=self.max_value + 1)

    def get(self, value: int) -> int:
        return int(self.counts[value])

    @property
    def total(self) -> int:
        return int(self.counts.sum()) + self.overflow

    def mean(self) -> Optional[float]:
        """Mean over in-range values; overflow values are not included."""
        n = int(self.counts.sum())
        if n == 0:
            return None
        return float(np.dot(np.arange(self.max_value + 1), self.counts) / n)

    def percentile(self, q: float) -> Optional[float]:
        """Nearest-rank percentile over in-range values (q in [0, 100])."""
        n = int(self.counts.sum())
        if n == 0:
            return None
        rank = max(1, int(np.ceil(q / 100.0 * n)))
        cum = np.cumsum(self.counts)
        return float(np.searchsorted(cum, rank))

    def median(self) -> Optional[float]:
        return self.percentile(50.0)

    def max_observed(self) -> Optional[int]:
        nz = np.flatnonzero(self.counts)
        if nz.size == 0:
            return None
        return int(nz[-1])

    def table(self) -> List[List[int]]:
        """Non-empty bins as ordered ``[value, count]`` pairs."""
        return [[int(i), int(self.counts[i])] for i in np.flatnonzero(self.counts)]

    def summary(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "overflow": int(self.overflow),
            "mean": self.mean(),
            "median": self.median(),
            "p05": self.percentile(5.0),
            "p95": self.percentile(95.0),
            "max_value": self.max_value,
            "counts": self.table(),
        }
