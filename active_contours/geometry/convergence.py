"""
Sliding window of a scalar shape measure.

Each integration step pushes the current perimeter (2D) or volume (3D)
of a boundary. Once the window is full, its coefficient of variation
tells whether the boundary has stopped evolving.
"""

from collections import deque
from typing import Optional

import numpy as np


class SlidingWindow:
    """
    Fixed-capacity FIFO of float samples.

    Example:
        >>> window = SlidingWindow(3)
        >>> for value in (10.0, 10.0, 10.0, 10.0):
        ...     window.push(value)
        >>> window.is_converged(1e-3)
        True
    """

    def __init__(self, size: int):
        """
        Args:
            size: Window capacity (>= 1)

        Raises:
            ValueError: If size < 1
        """
        if size < 1:
            raise ValueError(f"Window size must be >= 1, got {size}")
        self.size = int(size)
        self._values = deque(maxlen=self.size)

    def push(self, value: float):
        """Append a sample, dropping the oldest one when full."""
        self._values.append(float(value))

    def clear(self):
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)

    @property
    def values(self) -> np.ndarray:
        """Samples currently held, oldest first."""
        return np.asarray(self._values, dtype=np.float64)

    @property
    def is_full(self) -> bool:
        return len(self._values) == self.size

    def mean(self) -> float:
        if not self._values:
            return 0.0
        return float(np.mean(self.values))

    def variance(self) -> float:
        if not self._values:
            return 0.0
        return float(np.var(self.values))

    def coefficient_of_variation(self) -> Optional[float]:
        """
        Standard deviation divided by the mean.

        Returns:
            The coefficient, or None when the window is empty or its mean is zero
        """
        mean = self.mean()
        if not self._values or mean == 0.0:
            return None
        return float(np.sqrt(self.variance()) / abs(mean))

    def is_converged(self, criterion: float) -> bool:
        """
        True once the window is full and its coefficient of variation
        is below ``criterion``.
        """
        if not self.is_full:
            return False
        cv = self.coefficient_of_variation()
        return cv is not None and cv < criterion

    def __repr__(self) -> str:
        return f"SlidingWindow(size={self.size}, filled={len(self)})"
