"""
Spectral-flux onset tracking.

Responds to any sharp transient, periodic or not, by comparing the positive
spectral change of the current frame to the recent average change.
"""

from collections import deque
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from genrescope.core.features import as_byte_array


@dataclass(frozen=True)
class OnsetConfig:
    """Onset detection parameters."""

    history_size: int = 8
    # Flux must exceed the recent average by this relative margin
    margin: float = 0.10


class OnsetTracker:
    """
    Detects onsets from frame-to-frame positive spectral flux.

    Keeps its own copy of the previous spectrum, independent of the
    feature extractor's.
    """

    def __init__(self, config: OnsetConfig | None = None):
        self.config = config or OnsetConfig()
        self._previous: np.ndarray | None = None
        self._flux_history: deque[float] = deque(maxlen=max(self.config.history_size, 5))

    def reset(self) -> None:
        self._previous = None
        self._flux_history.clear()

    def detect(self, spectrum: Sequence[float] | np.ndarray | None) -> float:
        """
        Feed one spectrum and return the onset strength.

        Args:
            spectrum: Byte magnitudes of the current frame.

        Returns:
            ``flux / recent_average`` when the flux exceeds the recent
            average by the configured margin, otherwise 0.
        """
        mags = as_byte_array(spectrum)
        if mags is None:
            return 0.0

        previous = self._previous
        if previous is None or previous.size != mags.size:
            previous = np.zeros_like(mags)
        flux = float(np.maximum(mags - previous, 0.0).sum() / mags.size)
        self._previous = mags.copy()

        average = float(np.mean(self._flux_history)) if self._flux_history else 0.0
        self._flux_history.append(flux)

        if average <= 0:
            return 0.0
        if flux > average * (1.0 + self.config.margin):
            return flux / average
        return 0.0
