"""Tests for genre classification."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from genrescope.classify.classifier import ClassifierConfig, GenreClassifier, PredictionSmoother
from genrescope.classify.genres import GENRE_PRESETS, GENRES, GenrePrediction, preset_for_genre
from genrescope.classify.heuristic import RuleInputs, classify_heuristic, classify_rules
from genrescope.classify.model import (
    FEATURE_DIM,
    DenseScoringModel,
    ScoringModel,
    project_features,
    standardize,
)
from genrescope.core.features import FeatureExtractor, FeatureVector
from genrescope.io.preset import PresetSettings


class RaisingModel:
    def predict_proba(self, vector):
        raise RuntimeError("model exploded")


class ConstantModel:
    """Always puts most of the mass on one genre."""

    def __init__(self, genre: str, mass: float = 0.9):
        self.probabilities = np.full(len(GENRES), (1.0 - mass) / (len(GENRES) - 1))
        self.probabilities[GENRES.index(genre)] = mass
        self.calls = 0

    def predict_proba(self, vector):
        self.calls += 1
        assert vector.shape == (FEATURE_DIM,)
        return self.probabilities


class BadShapeModel:
    def predict_proba(self, vector):
        return np.ones(3)


class NaNModel:
    def predict_proba(self, vector):
        return np.full(len(GENRES), np.nan)


class HangingModel:
    """Blocks until released, like a stalled inference backend."""

    def __init__(self):
        self.release = threading.Event()

    def predict_proba(self, vector):
        self.release.wait(timeout=5)
        return np.full(len(GENRES), 1.0 / len(GENRES))


def assert_valid(prediction: GenrePrediction):
    assert prediction.genre in GENRES
    assert 0.0 <= prediction.confidence <= 1.0
    assert set(prediction.probabilities) == set(GENRES)
    assert sum(prediction.probabilities.values()) == pytest.approx(1.0)


@pytest.fixture
def bass_heavy_features(bass_heavy_spectrum, flat_buffer) -> FeatureVector:
    return FeatureExtractor().extract(bass_heavy_spectrum, flat_buffer)


class TestGenreVocabulary:
    """Tests for genre presets and predictions."""

    def test_every_genre_has_preset(self):
        assert set(GENRE_PRESETS) == set(GENRES)
        assert len(GENRES) == 16
        for preset in GENRE_PRESETS.values():
            assert isinstance(preset, PresetSettings)

    def test_unknown_genre_gets_pop(self):
        assert preset_for_genre("polka") == GENRE_PRESETS["pop"]

    def test_rule_prediction_distribution(self):
        prediction = GenrePrediction.from_rule("jazz", 0.7)

        assert_valid(prediction)
        assert prediction.probabilities["jazz"] == 0.7
        assert prediction.top(1) == [("jazz", 0.7)]


class TestHeuristic:
    """Tests for the rule-based fallback."""

    def test_bass_heavy_frame(self, bass_heavy_features):
        """Loud, bass-dominant input lands in a bass-driven genre."""
        prediction = classify_heuristic(bass_heavy_features)

        assert prediction.genre in ("hip-hop", "electronic")
        assert prediction.confidence > 0.6
        assert prediction.source == "heuristic"

    def test_silence_is_ambient(self, silent_spectrum, flat_buffer):
        features = FeatureExtractor().extract(silent_spectrum, flat_buffer)

        assert classify_heuristic(features).genre == "ambient"

    def test_aggressive_branch_checked_first(self):
        inputs = RuleInputs(
            energy_level=0.9, bass_level=0.9, treble_level=0.8, brightness=0.7,
            rhythmicity=0.2, complexity=0.8, harmonicity=0.1, tonality=1.5,
            dynamic_range=0.8,
        )

        assert classify_rules(inputs) == ("dubstep", 0.85)

    def test_tonal_dark_branch(self):
        inputs = RuleInputs(
            energy_level=0.35, bass_level=0.3, treble_level=0.1, brightness=0.2,
            rhythmicity=0.02, complexity=0.1, harmonicity=0.7, tonality=3.5,
            dynamic_range=0.2,
        )

        assert classify_rules(inputs) == ("classical", 0.75)

    def test_default_branch(self):
        inputs = RuleInputs(
            energy_level=0.35, bass_level=0.3, treble_level=0.3, brightness=0.5,
            rhythmicity=0.1, complexity=0.5, harmonicity=0.2, tonality=1.2,
            dynamic_range=0.3,
        )

        assert classify_rules(inputs) == ("pop", 0.4)

    def test_random_features_stay_in_vocabulary(self):
        rng = np.random.default_rng(5)
        extractor = FeatureExtractor()
        for _ in range(30):
            features = extractor.extract(rng.integers(0, 256, 512), rng.integers(0, 256, 512))
            assert_valid(classify_heuristic(features))


class TestScoringModel:
    """Tests for the projection and dense model."""

    def test_projection_dimension(self, bass_heavy_features):
        vector = project_features(bass_heavy_features)

        assert vector.shape == (FEATURE_DIM,)
        assert np.all(np.isfinite(vector))

    def test_projection_of_zero_vector(self):
        vector = project_features(FeatureVector.zeros())

        assert vector.shape == (FEATURE_DIM,)
        assert np.all(vector == 0.0)

    def test_standardize(self):
        vector = standardize(np.arange(FEATURE_DIM, dtype=float))

        assert vector.mean() == pytest.approx(0.0, abs=1e-9)
        assert vector.std() == pytest.approx(1.0, abs=1e-6)
        assert np.all(standardize(np.zeros(FEATURE_DIM)) == 0.0)

    def test_glorot_outputs_distribution(self):
        model = DenseScoringModel.glorot(seed=0)
        probabilities = model.predict_proba(np.random.default_rng(0).normal(size=FEATURE_DIM))

        assert isinstance(model, ScoringModel)
        assert probabilities.shape == (len(GENRES),)
        assert probabilities.sum() == pytest.approx(1.0)
        assert np.all(probabilities >= 0.0)

    def test_glorot_is_seeded(self):
        a = DenseScoringModel.glorot(seed=3)
        b = DenseScoringModel.glorot(seed=3)

        assert all(np.array_equal(x, y) for x, y in zip(a.weights, b.weights))

    def test_rejects_wrong_dimensions(self):
        with pytest.raises(ValueError):
            DenseScoringModel.glorot(layer_sizes=(10, 16))
        with pytest.raises(ValueError):
            DenseScoringModel.glorot(layer_sizes=(FEATURE_DIM, 8))
        with pytest.raises(ValueError):
            DenseScoringModel([np.zeros((FEATURE_DIM, 4))], [np.zeros(5)])

    def test_npz_round_trip(self, tmp_path):
        model = DenseScoringModel.glorot(layer_sizes=(FEATURE_DIM, 32, len(GENRES)), seed=1)
        path = model.save_npz(tmp_path / "weights.npz")

        loaded = DenseScoringModel.from_npz(path)
        vector = np.linspace(-1, 1, FEATURE_DIM)

        assert np.allclose(loaded.predict_proba(vector), model.predict_proba(vector))


class TestPredictionSmoother:
    """Tests for confidence-weighted smoothing."""

    def test_passes_through_until_minimum_history(self):
        smoother = PredictionSmoother(window=15, min_history=8)
        prediction = GenrePrediction.from_rule("rock", 0.7)

        for _ in range(7):
            assert smoother.update(prediction) is prediction

    def test_identical_predictions_converge(self):
        """Repeated identical predictions return that genre with boosted confidence."""
        smoother = PredictionSmoother(window=15, min_history=8, boost_factor=1.5)
        prediction = GenrePrediction.from_rule("jazz", 0.5)

        for _ in range(10):
            result = smoother.update(prediction)

        assert result.genre == "jazz"
        assert result.confidence == 1.0
        assert result.probabilities["jazz"] == pytest.approx(0.5)

    def test_single_outlier_does_not_flip(self):
        smoother = PredictionSmoother()
        for _ in range(12):
            smoother.update(GenrePrediction.from_rule("house", 0.7))

        result = smoother.update(GenrePrediction.from_rule("metal", 0.8))

        assert result.genre == "house"
        assert result.probabilities["house"] > result.probabilities["metal"]

    def test_window_is_bounded(self):
        smoother = PredictionSmoother(window=15)
        for _ in range(40):
            smoother.update(GenrePrediction.from_rule("folk", 0.6))

        assert len(smoother) == 15
        smoother.reset()
        assert len(smoother) == 0


class TestGenreClassifier:
    """Tests for model selection, fallback and boosting."""

    def test_heuristic_without_model(self, bass_heavy_features):
        classifier = GenreClassifier()
        prediction = classifier.classify(bass_heavy_features)

        assert not classifier.has_model
        assert prediction.source == "heuristic"
        assert prediction.genre in ("hip-hop", "electronic")
        assert prediction.confidence > 0.6

    def test_model_prediction_is_boosted(self, bass_heavy_features):
        classifier = GenreClassifier(model=ConstantModel("techno", mass=0.6))
        prediction = classifier.classify(bass_heavy_features)

        assert prediction.source == "model"
        assert prediction.genre == "techno"
        assert prediction.confidence == pytest.approx(0.78)
        assert_valid(prediction)

    def test_boost_only_when_decisive(self):
        classifier = GenreClassifier()
        ambiguous = np.array([0.4, 0.3, 0.3])
        decisive = np.array([0.7, 0.2, 0.1])

        assert np.array_equal(classifier.boost(ambiguous), ambiguous)
        boosted = classifier.boost(decisive)
        assert boosted[0] == pytest.approx(0.91)
        assert boosted[1] == pytest.approx(0.17)

    def test_boost_caps_winner(self):
        boosted = GenreClassifier().boost(np.array([0.95, 0.05]))

        assert boosted[0] == 1.0

    def test_raising_model_falls_back(self, bass_heavy_features, caplog):
        """A model that raises never propagates out of classify()."""
        classifier = GenreClassifier(model=RaisingModel())

        with caplog.at_level(logging.WARNING, logger="genrescope.classify.classifier"):
            prediction = classifier.classify(bass_heavy_features)

        assert prediction.source == "heuristic"
        assert_valid(prediction)
        assert "heuristic" in caplog.text

    @pytest.mark.parametrize("model", [BadShapeModel(), NaNModel()])
    def test_invalid_output_falls_back(self, model, bass_heavy_features):
        prediction = GenreClassifier(model=model).classify(bass_heavy_features)

        assert prediction.source == "heuristic"
        assert_valid(prediction)

    def test_hanging_model_times_out(self, bass_heavy_features):
        """Background inference that exceeds the wait falls back to the rules."""
        model = HangingModel()
        executor = ThreadPoolExecutor(max_workers=1)
        classifier = GenreClassifier(
            model=model,
            config=ClassifierConfig(inference_timeout=0.05),
            executor=executor,
        )
        try:
            prediction = classifier.classify(bass_heavy_features)
        finally:
            model.release.set()
            executor.shutdown(wait=True)

        assert prediction.source == "heuristic"
        assert_valid(prediction)

    def test_background_inference_with_owned_executor(self, bass_heavy_features):
        classifier = GenreClassifier(
            model=ConstantModel("trance"),
            config=ClassifierConfig(background=True, inference_timeout=2.0),
        )
        try:
            prediction = classifier.classify(bass_heavy_features)
        finally:
            classifier.close()

        assert prediction.genre == "trance"
        assert prediction.source == "model"

    def test_model_input_is_averaged(self, bass_heavy_features):
        model = ConstantModel("jazz")
        classifier = GenreClassifier(model=model)
        for _ in range(40):
            classifier.classify(bass_heavy_features)

        assert model.calls == 40
        assert len(classifier._history) == 40

    def test_attach_and_detach_model(self, bass_heavy_features):
        classifier = GenreClassifier()
        classifier.attach_model(DenseScoringModel.glorot(seed=2))

        assert classifier.has_model
        assert classifier.classify(bass_heavy_features).source == "model"

        classifier.attach_model(None)
        assert not classifier.has_model

    def test_smoothed_output_stays_valid(self):
        rng = np.random.default_rng(9)
        extractor = FeatureExtractor()
        classifier = GenreClassifier(model=DenseScoringModel.glorot(seed=4))
        for _ in range(25):
            features = extractor.extract(rng.integers(0, 256, 512), rng.integers(0, 256, 512))
            assert_valid(classifier.classify(features))

    def test_reset_clears_history(self, bass_heavy_features):
        classifier = GenreClassifier(model=ConstantModel("rock"))
        for _ in range(10):
            classifier.classify(bass_heavy_features)

        classifier.reset()

        assert len(classifier._history) == 0
        assert len(classifier.smoother) == 0
