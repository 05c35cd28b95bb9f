"""Genre classification: vocabulary, scoring model, rule fallback and smoothing."""

from genrescope.classify.classifier import ClassifierConfig, GenreClassifier, PredictionSmoother
from genrescope.classify.genres import GENRE_PRESETS, GENRES, GenrePrediction, preset_for_genre
from genrescope.classify.heuristic import classify_heuristic
from genrescope.classify.model import DenseScoringModel, ScoringModel, project_features

__all__ = [
    "ClassifierConfig",
    "GenreClassifier",
    "PredictionSmoother",
    "GENRE_PRESETS",
    "GENRES",
    "GenrePrediction",
    "preset_for_genre",
    "classify_heuristic",
    "DenseScoringModel",
    "ScoringModel",
    "project_features",
]
