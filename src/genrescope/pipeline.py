"""
Per-frame audio-reactive analysis pipeline.

Orchestrates the flow from analyser data to the renderer: every frame the
source is read, features, beat and onset are computed and pushed to the
visualization sink; every few seconds the genre is classified and, when the
prediction is confident enough, the matching preset is applied.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

import numpy as np

from genrescope.classify.classifier import GenreClassifier
from genrescope.classify.genres import GENRES, GenrePrediction, preset_for_genre
from genrescope.classify.model import FEATURE_DIM
from genrescope.core.beat import BeatInfo, BeatTracker, monotonic_ms
from genrescope.core.features import FeatureExtractor, FeatureVector, VisualBands, visual_bands
from genrescope.core.onset import OnsetTracker
from genrescope.core.source import SignalSource
from genrescope.io.preset import PresetSettings, decode_any, encode_compact, encode_verbose

logger = logging.getLogger(__name__)


@dataclass
class FrameAnalysis:
    """Everything computed for one animation frame."""

    features: FeatureVector
    beat: BeatInfo
    onset_strength: float
    bands: VisualBands
    spectrum: np.ndarray
    time_ms: float
    session: int
    prediction: GenrePrediction | None = None


@runtime_checkable
class VisualizationSink(Protocol):
    """Renderer side of the pipeline."""

    def set_algorithm(self, algorithm: str) -> None:
        ...

    def update_settings(self, settings: PresetSettings) -> None:
        ...

    def update_visualization(self, analysis: FrameAnalysis) -> None:
        ...

    def resize(self, width: int, height: int) -> None:
        ...

    def dispose(self) -> None:
        ...


@dataclass(frozen=True)
class PipelineConfig:
    """Pipeline scheduling parameters."""

    # Genre classification cadence
    classify_interval_ms: float = 3000.0

    # Minimum confidence for switching presets automatically
    auto_apply_threshold: float = 0.75


class AudioReactivePipeline:
    """
    Drives analysis and visualization one frame at a time.

    Playback is identified by a session token; a classification computed
    for a session that has since been stopped or restarted is discarded.
    """

    def __init__(
        self,
        source: SignalSource,
        sink: VisualizationSink | None = None,
        extractor: FeatureExtractor | None = None,
        beat_tracker: BeatTracker | None = None,
        onset_tracker: OnsetTracker | None = None,
        classifier: GenreClassifier | None = None,
        settings: PresetSettings | None = None,
        clock: Callable[[], float] | None = None,
        config: PipelineConfig | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            source: Provider of per-frame spectrum and waveform.
            sink: Renderer receiving settings and frame analyses.
            extractor: Feature extractor (default configuration if omitted).
            beat_tracker: Beat tracker; shares the pipeline clock if omitted.
            onset_tracker: Onset tracker.
            classifier: Genre classifier (rule-based if omitted).
            settings: Initial visualization settings.
            clock: Callable returning the current time in milliseconds.
            config: Scheduling parameters.
        """
        self.source = source
        self.sink = sink
        self.clock = clock or monotonic_ms
        self.config = config or PipelineConfig()

        self.extractor = extractor or FeatureExtractor()
        self.beat_tracker = beat_tracker or BeatTracker(clock=self.clock)
        self.onset_tracker = onset_tracker or OnsetTracker()
        self.classifier = classifier or GenreClassifier()

        self.settings = settings or PresetSettings()
        self.current_prediction: GenrePrediction | None = None
        self.applied_genre: str | None = None
        self.preset_locked = False

        self._session = 0
        self._playing = False
        self._last_classify_ms: float | None = None
        self.frames_processed = 0

    @property
    def session(self) -> int:
        return self._session

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def current_genre(self) -> str | None:
        return self.current_prediction.genre if self.current_prediction else None

    def start(self, session: int | None = None) -> int:
        """
        Begin a new playback session and reset all trackers.

        Args:
            session: Explicit token; defaults to the previous token + 1.

        Returns:
            The new session token.
        """
        self._session = self._session + 1 if session is None else session
        self._playing = True
        self._last_classify_ms = None
        self.frames_processed = 0

        self.extractor.reset()
        self.beat_tracker.reset()
        self.onset_tracker.reset()
        self.classifier.reset()
        self.current_prediction = None

        logger.info("Analysis session %d started", self._session)
        return self._session

    def stop(self) -> None:
        """Stop processing; the current session's pending results become stale."""
        if self._playing:
            logger.info("Analysis session %d stopped", self._session)
        self._playing = False
        self._session += 1

    def process_frame(self, now_ms: float | None = None) -> FrameAnalysis | None:
        """
        Analyze the source's current frame and push it to the sink.

        Args:
            now_ms: Frame timestamp; defaults to the pipeline clock.

        Returns:
            FrameAnalysis for the frame, or None when not playing.
        """
        if not self._playing:
            return None

        now = self.clock() if now_ms is None else now_ms
        session = self._session

        spectrum = np.asarray(self.source.frequency_data())
        waveform = np.asarray(self.source.time_data())

        features = self.extractor.extract(spectrum, waveform)
        bands = visual_bands(spectrum, sensitivity=self.settings.sensitivity)
        beat = self.beat_tracker.detect_beat(bands.beat_energy, now_ms=now)
        onset = self.onset_tracker.detect(spectrum)

        prediction = None
        if self._classification_due(now):
            prediction = self._classify(features, session)
            if session != self._session:
                return None

        analysis = FrameAnalysis(
            features=features,
            beat=beat,
            onset_strength=onset,
            bands=bands,
            spectrum=spectrum,
            time_ms=now,
            session=session,
            prediction=prediction,
        )
        self.frames_processed += 1
        if self.sink is not None:
            self.sink.update_visualization(analysis)
        return analysis

    def _classification_due(self, now: float) -> bool:
        if self._last_classify_ms is None:
            self._last_classify_ms = now
            return False
        elapsed = now - self._last_classify_ms
        if elapsed < self.config.classify_interval_ms:
            return False
        self._last_classify_ms = now
        return True

    def _classify(self, features: FeatureVector, session: int) -> GenrePrediction | None:
        prediction = self.classifier.classify(features)
        if session != self._session or not self._playing:
            logger.debug("Discarding classification for stale session %d", session)
            return None

        self.current_prediction = prediction
        logger.debug(
            "Genre %s (%.2f, %s)", prediction.genre, prediction.confidence, prediction.source
        )

        if (
            not self.preset_locked
            and prediction.confidence > self.config.auto_apply_threshold
            and prediction.genre != self.applied_genre
        ):
            logger.info(
                "Auto-applying %s preset (confidence %.2f)", prediction.genre, prediction.confidence
            )
            self.apply_preset(prediction.genre, lock=False)
        return prediction

    def apply_preset(self, genre: str, lock: bool = True) -> PresetSettings:
        """
        Apply the preset for ``genre``.

        Args:
            genre: Genre name; unknown names get the default preset.
            lock: Stop automatic preset switching until :meth:`unlock_preset`.
        """
        self.applied_genre = genre
        self.preset_locked = self.preset_locked or lock
        self._push_settings(preset_for_genre(genre))
        return self.settings

    def unlock_preset(self) -> None:
        self.preset_locked = False

    def update_settings(self, patch: Mapping[str, Any]) -> PresetSettings:
        """
        Merge a partial settings update.

        Raises:
            SettingsError: if any value is invalid; nothing is applied then.
        """
        self._push_settings(self.settings.apply_patch(patch))
        return self.settings

    def _push_settings(self, settings: PresetSettings) -> None:
        previous = self.settings
        self.settings = settings
        if self.sink is None:
            return
        if settings.algorithm != previous.algorithm:
            self.sink.set_algorithm(settings.algorithm)
        self.sink.update_settings(settings)

    def export_preset(self, verbose: bool = False) -> str:
        """Current settings as a compact code, or the verbose envelope."""
        if not verbose:
            return encode_compact(self.settings)
        metadata = {
            "featureCount": FEATURE_DIM,
            "genreCount": len(GENRES),
            "modelVersion": "model" if self.classifier.has_model else "heuristic",
        }
        return encode_verbose(self.settings, metadata=metadata)

    def import_preset(self, code: str) -> PresetSettings:
        """
        Apply a shared preset code and lock automatic switching.

        Raises:
            PresetFormatError: if the code cannot be decoded.
        """
        settings = decode_any(code, base=self.settings)
        self.preset_locked = True
        self._push_settings(settings)
        logger.info("Imported preset: %s / %s", settings.algorithm, settings.color_palette)
        return settings

    def resize(self, width: int, height: int) -> None:
        if self.sink is not None:
            self.sink.resize(width, height)

    def dispose(self) -> None:
        """Stop processing and release the classifier and the sink."""
        self.stop()
        self.classifier.close()
        if self.sink is not None:
            self.sink.dispose()
