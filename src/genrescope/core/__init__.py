"""Core per-frame audio analysis modules."""

from genrescope.core.beat import BeatInfo, BeatTracker
from genrescope.core.features import FeatureExtractor, FeatureVector
from genrescope.core.history import RollingHistory
from genrescope.core.onset import OnsetTracker
from genrescope.core.source import FileSignalSource, SignalSource, SilentSource

__all__ = [
    "BeatInfo",
    "BeatTracker",
    "FeatureExtractor",
    "FeatureVector",
    "RollingHistory",
    "OnsetTracker",
    "FileSignalSource",
    "SignalSource",
    "SilentSource",
]
