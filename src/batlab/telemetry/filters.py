"""Outlier suppression for instantaneous power readings."""

import math
from collections import deque

import numpy as np

# Scale factor turning a MAD into a standard-deviation estimate for normal data
MAD_SCALE = 1.4826


class HampelFilter:
    """
    Rolling Hampel identifier with hard plausibility bounds.

    Hard bounds reject negative draw and accept draw above `ceiling_watts`
    only when at least `min_corroborations` sources agree on it. The rolling
    window replaces values more than `n_sigmas` scaled MADs from the window
    median with that median.
    """

    def __init__(
        self,
        window: int = 15,
        n_sigmas: float = 3.0,
        ceiling_watts: float = 60.0,
        min_corroborations: int = 2,
        min_history: int = 3,
    ):
        if window < 3:
            raise ValueError(f"Hampel window must be at least 3, got {window}")
        self.window = window
        self.n_sigmas = n_sigmas
        self.ceiling_watts = ceiling_watts
        self.min_corroborations = min_corroborations
        self.min_history = min_history
        self.history = deque(maxlen=window)

    def accepts(self, value: float, corroborations: int = 1) -> bool:
        """Check a reading against the hard bounds."""
        if value is None or not math.isfinite(value) or value < 0:
            return False
        if value > self.ceiling_watts:
            return corroborations >= self.min_corroborations
        return True

    def observe(self, value: float) -> None:
        """Record an accepted direct reading."""
        self.history.append(float(value))

    def filter(self, value: float) -> float:
        """Pass a value through the window, returning it or the window median."""
        value = float(value)
        if len(self.history) < self.min_history:
            self.history.append(value)
            return value

        values = np.asarray(self.history, dtype=float)
        median = float(np.median(values))
        mad = float(np.median(np.abs(values - median))) * MAD_SCALE
        self.history.append(value)

        # A flat window carries no spread estimate
        if mad == 0.0:
            return value
        if abs(value - median) > self.n_sigmas * mad:
            return median
        return value

    def reset(self) -> None:
        self.history.clear()
