"""
Adaptive beat and tempo tracking.

Beats are detected by comparing the current energy to a local average over
the last few frames. The trigger threshold rises with the local variance so
that busy passages need a proportionally larger jump, which keeps detection
stable across genres and playback volumes. Tempo is derived from the spacing
of recent beats.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable

import numpy as np

from genrescope.core.history import RollingHistory

MIN_BPM = 60.0
MAX_BPM = 200.0
DEFAULT_BPM = 120.0


def monotonic_ms() -> float:
    """Default clock: monotonic time in milliseconds."""
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class BeatConfig:
    """Beat detection parameters."""

    history_size: int = 60
    history_horizon_ms: float = 3000.0
    min_samples: int = 10
    local_window: int = 20

    # threshold = base_threshold + variance_weight * sqrt(local variance)
    base_threshold: float = 1.3
    variance_weight: float = 0.4

    # Debounce so one percussive hit cannot trigger twice
    min_interval_ms: float = 120.0

    # strength = clamp((energy_ratio - 1) / strength_scale, 0, 1)
    strength_scale: float = 2.0

    # Tempo estimation
    bpm_window: int = 8
    min_beats_for_bpm: int = 4
    beat_horizon_ms: float = 10000.0


@dataclass
class BeatState:
    """Mutable tracker state, updated once per frame."""

    last_beat_ms: float = -math.inf
    threshold: float = 0.0
    bpm: float = DEFAULT_BPM
    strength: float = 0.0
    confidence: float = 0.0


@dataclass(frozen=True)
class BeatInfo:
    """Per-frame beat detection result."""

    is_beat: bool
    strength: float
    confidence: float
    bpm: float


class BeatTracker:
    """
    Detects beats from a per-frame energy signal and estimates BPM.

    Energies are expected on a unit scale (e.g. normalized band levels);
    the variance term of the threshold is in the same units.
    """

    def __init__(
        self,
        config: BeatConfig | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the tracker.

        Args:
            config: Detection parameters.
            clock: Callable returning the current time in milliseconds.
        """
        self.config = config or BeatConfig()
        self.clock = clock or monotonic_ms
        self.state = BeatState()
        self._energy: RollingHistory[float] = RollingHistory(
            self.config.history_size,
            horizon_ms=self.config.history_horizon_ms,
        )
        self._beats: RollingHistory[float] = RollingHistory(
            self.config.bpm_window,
            horizon_ms=self.config.beat_horizon_ms,
        )

    @property
    def bpm(self) -> float:
        return self.state.bpm

    @property
    def beat_times(self) -> list[float]:
        """Timestamps (ms) of the beats currently used for tempo estimation."""
        return self._beats.timestamps()

    def reset(self) -> None:
        """Clear all history; BPM returns to the default."""
        self._energy.clear()
        self._beats.clear()
        self.state = BeatState()

    def detect_beat(self, current_energy: float, now_ms: float | None = None) -> BeatInfo:
        """
        Feed one frame's energy and report whether it is a beat.

        Args:
            current_energy: Non-negative energy of the current frame.
            now_ms: Frame timestamp; defaults to the tracker clock.

        Returns:
            BeatInfo with beat flag, strength, confidence and current BPM.
        """
        cfg = self.config
        state = self.state
        now = self.clock() if now_ms is None else now_ms

        energy = float(current_energy)
        if not math.isfinite(energy) or energy < 0:
            energy = 0.0

        self._energy.append(energy, now)
        self._beats.expire(now)

        if len(self._energy) < cfg.min_samples:
            state.strength = 0.0
            return BeatInfo(False, 0.0, state.confidence, state.bpm)

        local = np.asarray(self._energy.recent(cfg.local_window), dtype=np.float64)
        local_mean = float(local.mean())
        variance = float(local.var())
        state.threshold = cfg.base_threshold + cfg.variance_weight * math.sqrt(variance)

        ratio = energy / local_mean if local_mean > 0 else 0.0
        strength = min(max((ratio - 1.0) / cfg.strength_scale, 0.0), 1.0)
        state.strength = strength

        is_beat = (
            ratio > state.threshold
            and now - state.last_beat_ms >= cfg.min_interval_ms
        )
        if is_beat:
            state.last_beat_ms = now
            state.confidence = strength
            self._beats.append(now, now)
            self._update_bpm()

        return BeatInfo(is_beat, strength, state.confidence, state.bpm)

    def _update_bpm(self) -> None:
        """Recompute BPM from recent beat spacing (needs enough beats)."""
        times = self._beats.timestamps()
        if len(times) < self.config.min_beats_for_bpm:
            return
        intervals = np.diff(np.asarray(times, dtype=np.float64))
        mean_interval = float(intervals.mean())
        if mean_interval <= 0:
            return
        bpm = round(60000.0 / mean_interval)
        self.state.bpm = float(min(max(bpm, MIN_BPM), MAX_BPM))
