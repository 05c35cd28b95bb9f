"""
Rule-based genre classification.

Used whenever no scoring model is attached or the model fails. The rules
work on a handful of derived levels and check the most extreme combinations
first, so loud, dense, bright material is routed to the aggressive
electronic genres before anything falls through to the generic branches.
"""

import math
from dataclasses import dataclass

import numpy as np

from genrescope.classify.genres import DEFAULT_GENRE, GenrePrediction
from genrescope.core.features import MAX_MAGNITUDE, FeatureVector

# Spectral flux at which complexity saturates (byte units per bin)
FLUX_SATURATION = 50.0


@dataclass(frozen=True)
class RuleInputs:
    """Normalized levels the rule tree looks at."""

    energy_level: float   # spectrum RMS / 255
    bass_level: float
    treble_level: float
    brightness: float
    rhythmicity: float    # zero-crossing rate
    complexity: float     # saturated spectral flux
    harmonicity: float    # peak consonance score
    tonality: float       # chroma peak / chroma mean
    dynamic_range: float  # waveform RMS

    @classmethod
    def from_features(cls, features: FeatureVector) -> "RuleInputs":
        chroma = np.asarray(features.chroma, dtype=np.float64)
        chroma_mean = float(chroma.mean()) if chroma.size else 0.0
        tonality = float(chroma.max()) / chroma_mean if chroma_mean > 0 else 0.0
        energy = max(features.energy, 0.0)
        return cls(
            energy_level=math.sqrt(energy) / MAX_MAGNITUDE,
            bass_level=features.bass,
            treble_level=features.treble,
            brightness=features.brightness,
            rhythmicity=features.zero_crossing_rate,
            complexity=min(features.spectral_flux / FLUX_SATURATION, 1.0),
            harmonicity=features.harmonicity,
            tonality=tonality,
            dynamic_range=features.rms,
        )


def classify_rules(inputs: RuleInputs) -> tuple[str, float]:
    """Walk the rule tree and return ``(genre, confidence)``."""
    energy = inputs.energy_level
    brightness = inputs.brightness
    rhythm = inputs.rhythmicity
    complexity = inputs.complexity

    # Loud, dense and bright
    if energy > 0.75 and complexity > 0.5 and brightness > 0.6:
        if rhythm > 0.15:
            return "dubstep", 0.85
        if brightness > 0.75:
            return "metal", 0.8
        return "electronic", 0.75

    # Loud and bass-dominant
    if energy > 0.6 and inputs.bass_level >= 0.6 and inputs.bass_level >= inputs.treble_level:
        if rhythm < 0.1:
            return "hip-hop", 0.75
        if inputs.tonality > 2.2:
            return "house", 0.7
        return "electronic", 0.7

    # Loud and busy
    if energy > 0.6 and rhythm > 0.12:
        if brightness > 0.55:
            return "rock", 0.7
        return "house", 0.65

    # Strongly tonal and dark
    if inputs.tonality > 2.8 and brightness < 0.4:
        if complexity < 0.3 and inputs.dynamic_range < 0.4:
            return "classical", 0.75
        if complexity > 0.5:
            return "jazz", 0.7
        return "blues", 0.65

    # Quiet and static
    if energy < 0.3 and complexity < 0.3:
        return "ambient", 0.7

    # Mid energy
    if 0.4 <= energy <= 0.75:
        if inputs.tonality > 2.0 or inputs.harmonicity > 0.6:
            return "pop", 0.65
        if rhythm < 0.06:
            return "folk", 0.6
        if rhythm < 0.1 and brightness < 0.45:
            return "reggae", 0.55
        return "country", 0.55

    if energy > 0.6 and brightness > 0.65:
        return "trance", 0.6
    if energy > 0.6:
        return "techno", 0.55

    return DEFAULT_GENRE, 0.4


def classify_heuristic(features: FeatureVector) -> GenrePrediction:
    """Rule-based prediction for a single feature vector."""
    genre, confidence = classify_rules(RuleInputs.from_features(features))
    return GenrePrediction.from_rule(genre, confidence)
