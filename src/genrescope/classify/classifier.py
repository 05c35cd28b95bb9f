"""
Genre classification with model/heuristic switching and temporal smoothing.

:class:`GenreClassifier` scores averaged feature vectors with an attached
:class:`~genrescope.classify.model.ScoringModel` when one is available and
falls back to the rule tree otherwise, or whenever the model fails or is too
slow. Raw predictions then pass through :class:`PredictionSmoother`, a
confidence-weighted vote over the most recent predictions, so a single noisy
window cannot flip the visible genre.
"""

import logging
import threading
from collections import deque
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass

import numpy as np

from genrescope.classify.genres import DEFAULT_GENRE, GENRES, GenrePrediction
from genrescope.classify.heuristic import classify_heuristic
from genrescope.classify.model import ScoringModel, project_features, standardize
from genrescope.core.features import FeatureVector
from genrescope.core.history import RollingHistory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifierConfig:
    """Classification parameters."""

    # Temporal averaging of model inputs
    history_size: int = 200
    average_window: int = 30

    # Confidence boosting of decisive model outputs
    boost_margin: float = 0.25
    boost_winner: float = 1.3
    boost_others: float = 0.85

    # Prediction smoothing
    smoothing_window: int = 15
    smoothing_min_history: int = 8
    smoothing_boost: float = 1.5

    # Run model inference on a worker thread with a bounded wait (seconds)
    background: bool = False
    inference_timeout: float = 0.1


class PredictionSmoother:
    """
    Confidence-weighted majority vote over recent predictions.

    Until ``min_history`` predictions have been seen the latest prediction
    passes through unchanged.
    """

    def __init__(self, window: int = 15, min_history: int = 8, boost_factor: float = 1.5):
        self.window = window
        self.min_history = min(min_history, window)
        self.boost_factor = boost_factor
        self._recent: deque[GenrePrediction] = deque(maxlen=window)

    def __len__(self) -> int:
        return len(self._recent)

    def reset(self) -> None:
        self._recent.clear()

    def update(self, prediction: GenrePrediction) -> GenrePrediction:
        """Record ``prediction`` and return the smoothed result."""
        self._recent.append(prediction)
        if len(self._recent) < self.min_history:
            return prediction

        scores: dict[str, float] = {}
        for pred in self._recent:
            scores[pred.genre] = scores.get(pred.genre, 0.0) + max(pred.confidence, 0.0)
        total = sum(scores.values())
        if total <= 0:
            return prediction

        best_genre = max(scores, key=scores.get)
        confidence = min(scores[best_genre] / total * self.boost_factor, 1.0)

        return GenrePrediction(
            genre=best_genre,
            confidence=confidence,
            probabilities=self._mean_distribution(),
            source=prediction.source,
        )

    def _mean_distribution(self) -> dict[str, float]:
        accumulated = np.zeros(len(GENRES))
        for pred in self._recent:
            accumulated += [pred.probabilities.get(g, 0.0) for g in GENRES]
        total = accumulated.sum()
        if total <= 0:
            return {g: 1.0 / len(GENRES) for g in GENRES}
        return {g: float(p) for g, p in zip(GENRES, accumulated / total)}


class GenreClassifier:
    """
    Classifies feature vectors into the fixed genre vocabulary.

    ``classify`` never raises: model failures and inference timeouts are
    logged and answered by the rule-based fallback.
    """

    def __init__(
        self,
        model: ScoringModel | None = None,
        config: ClassifierConfig | None = None,
        executor: Executor | None = None,
    ):
        """
        Initialize the classifier.

        Args:
            model: Optional scoring model; without one the rule tree is used.
            config: Classification parameters.
            executor: Executor for background inference. When omitted and
                ``config.background`` is set, a single-thread pool is created
                and owned by the classifier.
        """
        self.config = config or ClassifierConfig()
        self.model = model
        self.smoother = PredictionSmoother(
            window=self.config.smoothing_window,
            min_history=self.config.smoothing_min_history,
            boost_factor=self.config.smoothing_boost,
        )
        self._history: RollingHistory[np.ndarray] = RollingHistory(self.config.history_size)
        self._lock = threading.Lock()
        self._sequence = 0

        self._owns_executor = executor is None and self.config.background
        if self._owns_executor:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="genre-inference")
        self._executor = executor

    @property
    def has_model(self) -> bool:
        return self.model is not None

    def attach_model(self, model: ScoringModel | None) -> None:
        """Swap the scoring model; ``None`` switches to the rule tree."""
        with self._lock:
            self.model = model
            self._history.clear()
        logger.info("Genre classifier using %s", "model" if model is not None else "heuristic rules")

    def reset(self) -> None:
        """Forget averaged inputs and smoothing history."""
        with self._lock:
            self._history.clear()
        self.smoother.reset()

    def close(self) -> None:
        """Release the owned worker thread, if any."""
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def classify(self, features: FeatureVector) -> GenrePrediction:
        """
        Classify one feature vector and return the smoothed prediction.

        Args:
            features: Feature vector of the current analysis window.

        Returns:
            Smoothed GenrePrediction; the label is always in ``GENRES`` and
            the confidence in [0, 1].
        """
        try:
            raw = self._raw_prediction(features)
        except Exception:
            logger.warning("Genre model failed; using heuristic classification", exc_info=True)
            raw = self.classify_heuristic(features)
        return self.smoother.update(raw)

    def classify_heuristic(self, features: FeatureVector) -> GenrePrediction:
        """Unsmoothed rule-based prediction."""
        try:
            return classify_heuristic(features)
        except Exception:
            logger.exception("Heuristic classification failed")
            return GenrePrediction.from_rule(DEFAULT_GENRE, 0.4)

    def _raw_prediction(self, features: FeatureVector) -> GenrePrediction:
        if self.model is None:
            return self.classify_heuristic(features)
        if self._executor is None:
            return self.predict_model(features)

        future = self._executor.submit(self.predict_model, features)
        try:
            return future.result(timeout=self.config.inference_timeout)
        except FuturesTimeoutError:
            future.cancel()
            logger.debug(
                "Genre inference exceeded %.0f ms; using heuristic classification",
                self.config.inference_timeout * 1000,
            )
            return self.classify_heuristic(features)

    def predict_model(self, features: FeatureVector) -> GenrePrediction:
        """
        Unsmoothed model prediction over the temporally averaged input.

        Raises:
            RuntimeError: if no model is attached.
            ValueError: if the model output is not a usable distribution.
        """
        model = self.model
        if model is None:
            raise RuntimeError("no scoring model attached")

        vector = standardize(project_features(features))
        with self._lock:
            self._sequence += 1
            self._history.append(vector, float(self._sequence))
            averaged = np.mean(self._history.recent(self.config.average_window), axis=0)

        probabilities = np.asarray(model.predict_proba(averaged), dtype=np.float64).ravel()
        if probabilities.size != len(GENRES) or not np.all(np.isfinite(probabilities)):
            raise ValueError(f"model returned an invalid distribution of shape {probabilities.shape}")
        probabilities = np.clip(probabilities, 0.0, None)
        if probabilities.sum() <= 0:
            raise ValueError("model returned an all-zero distribution")
        probabilities = probabilities / probabilities.sum()

        boosted = self.boost(probabilities)
        winner = int(np.argmax(boosted))
        distribution = boosted / boosted.sum()

        return GenrePrediction(
            genre=GENRES[winner],
            confidence=float(min(boosted[winner], 1.0)),
            probabilities={g: float(p) for g, p in zip(GENRES, distribution)},
            source="model",
        )

    def boost(self, probabilities: np.ndarray) -> np.ndarray:
        """
        Sharpen decisive distributions.

        When the top probability leads the runner-up by more than the
        margin, the winner is scaled up (capped at 1) and all others down.
        Ambiguous distributions are returned unchanged.
        """
        cfg = self.config
        if probabilities.size < 2:
            return probabilities.copy()
        ranked = np.sort(probabilities)[::-1]
        if ranked[0] - ranked[1] <= cfg.boost_margin:
            return probabilities.copy()

        winner = int(np.argmax(probabilities))
        boosted = probabilities * cfg.boost_others
        boosted[winner] = min(probabilities[winner] * cfg.boost_winner, 1.0)
        return boosted
