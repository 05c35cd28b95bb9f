"""
Per-frame feature extraction module.

Turns the byte spectra delivered by the analysis source into a fixed-shape
FeatureVector: spectral statistics, chroma, cepstral coefficients and band
levels. Extraction runs once per animation frame, so every lookup table that
only depends on the bin count is built once and cached.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Sequence

import librosa
import numpy as np
from scipy import fft as scipy_fft

# Byte-domain constants of the analyser node
SILENCE_BASELINE = 128.0
MAX_MAGNITUDE = 255.0

CHROMA_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


@dataclass(frozen=True)
class ExtractorConfig:
    """Tunable parameters for feature extraction."""

    sample_rate: int = 44100
    rolloff_percentage: float = 0.85
    # Peaks below this fraction of the spectrum maximum are ignored
    peak_threshold: float = 0.1
    reference_tuning_hz: float = 440.0

    # Cepstral coefficients (mel filter bank + DCT)
    compute_mfcc: bool = True
    n_mfcc: int = 13
    mel_fmin: float = 80.0
    mel_fmax: float = 8000.0


@dataclass(frozen=True, eq=False)
class FeatureVector:
    """
    Spectral and temporal descriptors of a single analysis frame.

    Ratio fields (zero_crossing_rate, rms, brightness, roughness,
    harmonicity, band levels and chroma entries) lie in [0, 1].
    Flux and energy are unbounded non-negative values in byte units.
    """

    spectral_centroid: float = 0.0  # bin index
    spectral_rolloff: float = 0.0   # bin index
    spectral_flux: float = 0.0
    energy: float = 0.0
    zero_crossing_rate: float = 0.0
    rms: float = 0.0
    brightness: float = 0.0
    roughness: float = 0.0
    harmonicity: float = 0.0
    chroma: np.ndarray = field(default_factory=lambda: np.zeros(12))
    mfcc: np.ndarray | None = None

    # Spectral shape statistics over the bin-index distribution
    spectral_spread: float = 0.0   # normalized by bin count
    spectral_skewness: float = 0.0
    spectral_kurtosis: float = 0.0
    spectral_slope: float = 0.0

    # Coarse band levels [0, 1]
    bass: float = 0.0
    mid: float = 0.0
    treble: float = 0.0

    n_bins: int = 0

    @classmethod
    def zeros(cls, n_mfcc: int | None = 13, n_bins: int = 0) -> "FeatureVector":
        """Feature vector reported when no analysis input is available."""
        mfcc = np.zeros(n_mfcc) if n_mfcc else None
        return cls(chroma=np.zeros(12), mfcc=mfcc, n_bins=n_bins)

    @property
    def dominant_chroma_index(self) -> int:
        """Pitch class with the most energy (0 = C)."""
        return int(np.argmax(self.chroma)) if np.any(self.chroma > 0) else 0

    def to_dict(self) -> dict[str, Any]:
        """Plain-Python representation (lists instead of arrays)."""
        data = asdict(self)
        data["chroma"] = [float(v) for v in self.chroma]
        data["mfcc"] = None if self.mfcc is None else [float(v) for v in self.mfcc]
        return data


@dataclass(frozen=True)
class VisualBands:
    """Seven sensitivity-scaled band levels consumed by the renderer."""

    sub_bass: float
    bass: float
    low_mid: float
    mid: float
    high_mid: float
    treble: float
    presence: float

    @property
    def beat_energy(self) -> float:
        """Energy signal fed to the beat tracker."""
        return (self.bass + self.mid) / 2.0

    @property
    def average_level(self) -> float:
        return (
            self.sub_bass + self.bass + self.low_mid + self.mid
            + self.high_mid + self.treble + self.presence
        ) / 7.0


@dataclass
class _BinTables:
    """Lookup tables for one spectrum resolution."""

    bin_index: np.ndarray
    pitch_classes: np.ndarray        # pitch class of bins 1..N-1
    mel_filters: np.ndarray | None   # (n_mfcc, N)


def as_byte_array(data: Sequence[float] | np.ndarray | None) -> np.ndarray | None:
    """Copy input into a float array clipped to the byte range, or None if empty."""
    if data is None:
        return None
    arr = np.asarray(data, dtype=np.float64).ravel()
    if arr.size == 0:
        return None
    arr = np.nan_to_num(arr, nan=0.0, posinf=MAX_MAGNITUDE, neginf=0.0)
    return np.clip(arr, 0.0, MAX_MAGNITUDE)


def _safe_mean(values: np.ndarray) -> float:
    return float(values.mean()) if values.size else 0.0


def frequency_bands(spectrum: Sequence[float] | np.ndarray, n_bands: int = 64) -> np.ndarray:
    """
    Average a spectrum into ``n_bands`` contiguous bands.

    Args:
        spectrum: Byte magnitudes.
        n_bands: Number of output bands.

    Returns:
        Array of band means in byte units (zeros for empty input).
    """
    mags = as_byte_array(spectrum)
    if mags is None:
        return np.zeros(n_bands)
    return np.array([_safe_mean(chunk) for chunk in np.array_split(mags, n_bands)])


def visual_bands(spectrum: Sequence[float] | np.ndarray, sensitivity: float = 1.0) -> VisualBands:
    """
    Split a spectrum into the renderer's seven bands.

    The spectrum is first averaged into 16 bands which are grouped from
    sub-bass up to presence, scaled by ``sensitivity`` and capped at 1.
    """
    b = frequency_bands(spectrum, 16)

    def level(lo: int, hi: int) -> float:
        return float(min(b[lo:hi].mean() / MAX_MAGNITUDE * sensitivity, 1.0))

    return VisualBands(
        sub_bass=level(0, 1),
        bass=level(1, 3),
        low_mid=level(3, 5),
        mid=level(5, 8),
        high_mid=level(8, 11),
        treble=level(11, 14),
        presence=level(14, 16),
    )


class FeatureExtractor:
    """
    Computes a FeatureVector from one frame of analyser data.

    The only state retained between calls is the previous spectrum, needed
    for spectral flux. Degenerate input (silence, missing source) yields a
    well-defined vector; no method raises on bad data.
    """

    def __init__(self, config: ExtractorConfig | None = None):
        """
        Initialize the extractor.

        Args:
            config: Extraction parameters (defaults to ExtractorConfig()).
        """
        self.config = config or ExtractorConfig()
        self._previous: np.ndarray | None = None
        self._tables: dict[int, _BinTables] = {}

    @property
    def n_mfcc(self) -> int | None:
        return self.config.n_mfcc if self.config.compute_mfcc else None

    def reset(self) -> None:
        """Forget the previous spectrum."""
        self._previous = None

    def _bin_tables(self, n_bins: int) -> _BinTables:
        tables = self._tables.get(n_bins)
        if tables is not None:
            return tables

        cfg = self.config
        bin_index = np.arange(n_bins, dtype=np.float64)

        # Bin i of an N-bin analyser sits at i * sr / (2N) Hz
        freqs = bin_index[1:] * cfg.sample_rate / (2.0 * n_bins)
        midi = librosa.hz_to_midi(freqs * (440.0 / cfg.reference_tuning_hz))
        pitch_classes = np.mod(np.round(midi).astype(int), 12)

        mel_filters = None
        if cfg.compute_mfcc and cfg.n_mfcc > 0:
            mel_filters = librosa.filters.mel(
                sr=cfg.sample_rate,
                n_fft=2 * n_bins,
                n_mels=cfg.n_mfcc,
                fmin=cfg.mel_fmin,
                fmax=min(cfg.mel_fmax, cfg.sample_rate / 2.0),
                norm=None,
            )[:, :n_bins].astype(np.float64)

        tables = _BinTables(
            bin_index=bin_index,
            pitch_classes=pitch_classes,
            mel_filters=mel_filters,
        )
        self._tables[n_bins] = tables
        return tables

    def extract(
        self,
        spectrum: Sequence[float] | np.ndarray | None,
        time_buffer: Sequence[float] | np.ndarray | None = None,
        previous_spectrum: Sequence[float] | np.ndarray | None = None,
    ) -> FeatureVector:
        """
        Extract all features for one frame.

        Args:
            spectrum: N byte magnitudes (0-255).
            time_buffer: N byte samples centred on 128, or None for silence.
            previous_spectrum: Spectrum to compute flux against. Defaults to
                the spectrum seen by the previous call.

        Returns:
            A new FeatureVector. The retained previous spectrum is updated.
        """
        mags = as_byte_array(spectrum)
        if mags is None:
            return FeatureVector.zeros(self.n_mfcc)

        n = mags.size
        tables = self._bin_tables(n)

        prev = as_byte_array(previous_spectrum)
        if prev is None:
            prev = self._previous
        if prev is None or prev.size != n:
            prev = np.zeros(n)
        self._previous = mags.copy()

        total = float(mags.sum())
        power = mags ** 2
        total_power = float(power.sum())

        centroid = self.spectral_centroid(mags, tables.bin_index, total)
        spread, skewness, kurtosis = self._spectral_moments(mags, tables.bin_index, centroid, total)

        samples = as_byte_array(time_buffer)
        zcr, rms = self._temporal_features(samples)

        bass, mid, treble = self._band_levels(mags)

        return FeatureVector(
            spectral_centroid=centroid,
            spectral_rolloff=self.spectral_rolloff(mags, total),
            spectral_flux=float(np.maximum(mags - prev, 0.0).sum() / n),
            energy=float(power.mean()),
            zero_crossing_rate=zcr,
            rms=rms,
            brightness=float(power[n // 2:].sum() / total_power) if total_power > 0 else 0.0,
            roughness=self.roughness(mags),
            harmonicity=self.harmonicity(mags),
            chroma=self.chroma(power, tables),
            mfcc=self.cepstral_coefficients(mags, tables),
            spectral_spread=spread / n,
            spectral_skewness=skewness,
            spectral_kurtosis=kurtosis,
            spectral_slope=self.spectral_slope(mags, tables.bin_index),
            bass=bass,
            mid=mid,
            treble=treble,
            n_bins=n,
        )

    def spectral_centroid(self, mags: np.ndarray, bin_index: np.ndarray, total: float) -> float:
        """Magnitude-weighted mean bin index."""
        if total <= 0:
            return 0.0
        return float((bin_index * mags).sum() / total)

    def spectral_rolloff(self, mags: np.ndarray, total: float) -> float:
        """Smallest bin whose cumulative magnitude reaches the rolloff share."""
        threshold = self.config.rolloff_percentage * total
        cumulative = np.cumsum(mags)
        index = int(np.searchsorted(cumulative, threshold, side="left"))
        return float(min(index, mags.size - 1))

    def _spectral_moments(
        self,
        mags: np.ndarray,
        bin_index: np.ndarray,
        centroid: float,
        total: float,
    ) -> tuple[float, float, float]:
        """Spread (in bins), skewness and excess kurtosis around the centroid."""
        if total <= 0:
            return 0.0, 0.0, 0.0
        weights = mags / total
        deviation = bin_index - centroid
        spread = float(np.sqrt((weights * deviation ** 2).sum()))
        if spread <= 0:
            return 0.0, 0.0, 0.0
        z = deviation / spread
        skewness = float((weights * z ** 3).sum())
        kurtosis = float((weights * z ** 4).sum() - 3.0)
        return spread, skewness, kurtosis

    def spectral_slope(self, mags: np.ndarray, bin_index: np.ndarray) -> float:
        """Least-squares slope of normalized magnitude over normalized frequency."""
        if mags.size < 2:
            return 0.0
        x = bin_index / mags.size
        y = mags / MAX_MAGNITUDE
        dx = x - x.mean()
        denom = float((dx ** 2).sum())
        if denom <= 0:
            return 0.0
        return float((dx * (y - y.mean())).sum() / denom)

    def roughness(self, mags: np.ndarray) -> float:
        """Mean deviation of each bin from the average of its neighbours, in [0, 1]."""
        if mags.size < 3:
            return 0.0
        neighbours = (mags[:-2] + mags[2:]) / 2.0
        return float(np.abs(mags[1:-1] - neighbours).mean() / MAX_MAGNITUDE)

    def harmonicity(self, mags: np.ndarray) -> float:
        """
        Consonance of spectral peaks relative to the lowest peak.

        Each peak's frequency ratio to the fundamental scores
        ``exp(-10 * |ratio - round(ratio)|)``; the result is the mean score,
        or 0 when fewer than two peaks are found.
        """
        if mags.size < 3:
            return 0.0
        peak_floor = self.config.peak_threshold * float(mags.max())
        if peak_floor <= 0:
            return 0.0

        interior = mags[1:-1]
        is_peak = (interior > mags[:-2]) & (interior >= mags[2:]) & (interior >= peak_floor)
        peaks = np.nonzero(is_peak)[0] + 1
        if peaks.size < 2:
            return 0.0

        ratios = peaks[1:] / float(peaks[0])
        scores = np.exp(-10.0 * np.abs(ratios - np.round(ratios)))
        return float(scores.mean())

    def chroma(self, power: np.ndarray, tables: _BinTables) -> np.ndarray:
        """Energy per pitch class (C..B), normalized so the maximum is 1."""
        chroma = np.bincount(tables.pitch_classes, weights=power[1:], minlength=12)[:12]
        peak = chroma.max()
        if peak <= 0:
            return np.zeros(12)
        return chroma / peak

    def cepstral_coefficients(self, mags: np.ndarray, tables: _BinTables) -> np.ndarray | None:
        """MFCC-style coefficients: mel filter bank, log compression, DCT-II."""
        if tables.mel_filters is None:
            return None
        mel_energy = tables.mel_filters @ (mags / MAX_MAGNITUDE) ** 2
        return scipy_fft.dct(np.log1p(mel_energy), type=2, norm="ortho")

    def _temporal_features(self, samples: np.ndarray | None) -> tuple[float, float]:
        """Zero-crossing rate and RMS of a byte time-domain buffer."""
        if samples is None or samples.size < 2:
            return 0.0, 0.0
        centred = samples - SILENCE_BASELINE
        crossings = int(np.count_nonzero(centred[1:] * centred[:-1] < 0))
        zcr = crossings / (samples.size - 1)
        rms = float(np.sqrt(np.mean((centred / SILENCE_BASELINE) ** 2)))
        return float(zcr), min(rms, 1.0)

    def _band_levels(self, mags: np.ndarray) -> tuple[float, float, float]:
        """Bass (first eighth), mid (up to half) and treble levels in [0, 1]."""
        n = mags.size
        bass_end = max(1, n // 8)
        mid_end = max(bass_end, n // 2)
        return (
            _safe_mean(mags[:bass_end]) / MAX_MAGNITUDE,
            _safe_mean(mags[bass_end:mid_end]) / MAX_MAGNITUDE,
            _safe_mean(mags[mid_end:]) / MAX_MAGNITUDE,
        )

    @staticmethod
    def chroma_index_to_name(index: int) -> str:
        """Convert chroma index (0-11) to note name."""
        return CHROMA_NAMES[index % 12]
