"""Real-time audio analysis core for genre-aware audio-reactive visuals."""

from genrescope.classify.classifier import GenreClassifier
from genrescope.core.beat import BeatTracker
from genrescope.core.features import FeatureExtractor
from genrescope.core.onset import OnsetTracker
from genrescope.io.preset import PresetSettings
from genrescope.pipeline import AudioReactivePipeline

__version__ = "0.1.0"
__all__ = [
    "FeatureExtractor",
    "BeatTracker",
    "OnsetTracker",
    "GenreClassifier",
    "PresetSettings",
    "AudioReactivePipeline",
]
