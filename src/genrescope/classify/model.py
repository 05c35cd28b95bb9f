"""
Numeric projection of feature vectors and the genre scoring model.

The classifier's model path works on a fixed 40-dimensional vector built
from a FeatureVector. Any object implementing :class:`ScoringModel` can score
it; :class:`DenseScoringModel` is a small fully-connected network evaluated
with numpy whose weights can be stored in an ``.npz`` archive.
"""

from pathlib import Path
from typing import Protocol, Sequence, Union, runtime_checkable

import numpy as np

from genrescope.classify.genres import GENRES
from genrescope.core.features import MAX_MAGNITUDE, FeatureVector

FEATURE_DIM = 40
N_MFCC = 13
DEFAULT_LAYER_SIZES = (FEATURE_DIM, 256, 128, 64, 32, len(GENRES))


def project_features(features: FeatureVector) -> np.ndarray:
    """
    Flatten a FeatureVector into the model's 40-dimensional input.

    Layout: 9 normalized scalar descriptors, 13 cepstral coefficients,
    12 chroma values, 4 spectral shape statistics, bass and treble levels.
    """
    n_bins = max(features.n_bins, 1)
    scalars = [
        features.spectral_centroid / n_bins,
        features.spectral_rolloff / n_bins,
        features.spectral_flux / MAX_MAGNITUDE,
        features.energy / MAX_MAGNITUDE ** 2,
        features.zero_crossing_rate,
        features.rms,
        features.brightness,
        features.roughness,
        features.harmonicity,
    ]

    mfcc = np.zeros(N_MFCC)
    if features.mfcc is not None:
        coeffs = np.asarray(features.mfcc, dtype=np.float64)[:N_MFCC]
        mfcc[: coeffs.size] = coeffs

    shape = [
        features.spectral_spread,
        features.spectral_skewness,
        features.spectral_kurtosis,
        features.spectral_slope,
    ]

    vector = np.concatenate([
        np.asarray(scalars, dtype=np.float64),
        mfcc,
        np.asarray(features.chroma, dtype=np.float64)[:12],
        np.asarray(shape, dtype=np.float64),
        np.asarray([features.bass, features.treble], dtype=np.float64),
    ])
    return np.nan_to_num(vector, nan=0.0, posinf=0.0, neginf=0.0)


def standardize(vector: np.ndarray) -> np.ndarray:
    """Z-score a vector against its own mean and standard deviation."""
    mean = vector.mean()
    std = np.sqrt(vector.var() + 1e-8)
    return (vector - mean) / std


@runtime_checkable
class ScoringModel(Protocol):
    """Maps a projected feature vector to genre probabilities."""

    def predict_proba(self, vector: np.ndarray) -> np.ndarray:
        """Probability per entry of ``GENRES`` (same order)."""
        ...


def _softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - logits.max()
    exp = np.exp(shifted)
    return exp / exp.sum()


class DenseScoringModel:
    """
    Fully-connected network: ReLU hidden layers, softmax output.

    Args:
        weights: Weight matrices, ``weights[i]`` of shape (fan_in, fan_out).
        biases: Bias vectors matching each weight matrix's fan_out.
    """

    def __init__(self, weights: Sequence[np.ndarray], biases: Sequence[np.ndarray]):
        if len(weights) == 0 or len(weights) != len(biases):
            raise ValueError("weights and biases must be non-empty and of equal length")
        self.weights = [np.asarray(w, dtype=np.float64) for w in weights]
        self.biases = [np.asarray(b, dtype=np.float64).ravel() for b in biases]

        for i, (w, b) in enumerate(zip(self.weights, self.biases)):
            if w.ndim != 2 or w.shape[1] != b.size:
                raise ValueError(f"layer {i}: weight shape {w.shape} does not match bias size {b.size}")
            if i > 0 and w.shape[0] != self.weights[i - 1].shape[1]:
                raise ValueError(f"layer {i}: input size {w.shape[0]} does not match previous layer")

        if self.input_size != FEATURE_DIM:
            raise ValueError(f"model input must be {FEATURE_DIM}-dimensional, got {self.input_size}")
        if self.output_size != len(GENRES):
            raise ValueError(f"model output must have {len(GENRES)} classes, got {self.output_size}")

    @property
    def input_size(self) -> int:
        return self.weights[0].shape[0]

    @property
    def output_size(self) -> int:
        return self.weights[-1].shape[1]

    @classmethod
    def glorot(
        cls,
        layer_sizes: Sequence[int] = DEFAULT_LAYER_SIZES,
        seed: int | None = None,
    ) -> "DenseScoringModel":
        """Untrained model with Glorot-uniform weights and zero biases."""
        rng = np.random.default_rng(seed)
        weights, biases = [], []
        for fan_in, fan_out in zip(layer_sizes[:-1], layer_sizes[1:]):
            limit = np.sqrt(6.0 / (fan_in + fan_out))
            weights.append(rng.uniform(-limit, limit, size=(fan_in, fan_out)))
            biases.append(np.zeros(fan_out))
        return cls(weights, biases)

    @classmethod
    def from_npz(cls, path: Union[str, Path]) -> "DenseScoringModel":
        """Load weights saved with :meth:`save_npz` (keys ``W0, b0, W1, b1, ...``)."""
        with np.load(path) as archive:
            n_layers = sum(1 for key in archive.files if key.startswith("W"))
            weights = [archive[f"W{i}"] for i in range(n_layers)]
            biases = [archive[f"b{i}"] for i in range(n_layers)]
        return cls(weights, biases)

    def save_npz(self, path: Union[str, Path]) -> Path:
        """Write the weights to an ``.npz`` archive."""
        path = Path(path)
        arrays = {}
        for i, (w, b) in enumerate(zip(self.weights, self.biases)):
            arrays[f"W{i}"] = w
            arrays[f"b{i}"] = b
        np.savez(path, **arrays)
        return path

    def predict_proba(self, vector: np.ndarray) -> np.ndarray:
        hidden = np.asarray(vector, dtype=np.float64).ravel()
        for w, b in zip(self.weights[:-1], self.biases[:-1]):
            hidden = np.maximum(hidden @ w + b, 0.0)
        return _softmax(hidden @ self.weights[-1] + self.biases[-1])
