"""
Analysis sources feeding the per-frame pipeline.

A source exposes the two byte arrays an analyser node refreshes every
animation frame: the frequency spectrum and the time-domain buffer. The live
application gets them from the platform audio layer; for offline use this
module provides a file-backed source that emulates the analyser from decoded
audio, and a silent source used when nothing is connected.
"""

from pathlib import Path
from typing import Protocol, Union, runtime_checkable

import librosa
import numpy as np
from scipy import signal as scipy_signal


@runtime_checkable
class SignalSource(Protocol):
    """Provider of per-frame analyser data."""

    def frequency_data(self) -> np.ndarray:
        """N unsigned byte magnitudes (0-255)."""
        ...

    def time_data(self) -> np.ndarray:
        """N unsigned byte samples centred on 128."""
        ...


class SilentSource:
    """Source used when no audio is connected: zero spectrum, flat waveform."""

    def __init__(self, n_bins: int = 512):
        self.n_bins = n_bins

    def frequency_data(self) -> np.ndarray:
        return np.zeros(self.n_bins, dtype=np.uint8)

    def time_data(self) -> np.ndarray:
        return np.full(self.n_bins, 128, dtype=np.uint8)


class FileSignalSource:
    """
    Replays decoded audio through an analyser-node emulation.

    Each call to :meth:`advance` moves the read position forward by one
    animation frame and refreshes both byte arrays:

    * spectrum: windowed FFT magnitude, exponentially smoothed across frames,
      converted to dB and mapped from ``[min_db, max_db]`` onto 0-255;
    * time data: the latest ``n_bins`` samples mapped onto 0-255.
    """

    def __init__(
        self,
        samples: np.ndarray,
        sample_rate: int,
        fps: int = 60,
        fft_size: int = 1024,
        smoothing: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ):
        """
        Initialize the source.

        Args:
            samples: Mono float audio in [-1, 1].
            sample_rate: Sample rate of ``samples``.
            fps: Animation frame rate driving :meth:`advance`.
            fft_size: Analysis window; yields ``fft_size // 2`` bins.
            smoothing: Time constant for spectrum smoothing (0 disables).
            min_db: dB value mapped to byte 0.
            max_db: dB value mapped to byte 255.
        """
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        self.samples = np.asarray(samples, dtype=np.float32).ravel()
        self.sample_rate = sample_rate
        self.fps = fps or 60
        self.fft_size = fft_size
        self.n_bins = fft_size // 2
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db

        self.hop_length = max(1, int(sample_rate / self.fps))
        self.frame_index = 0
        self._position = 0
        self._window = scipy_signal.get_window("blackman", fft_size, fftbins=True)
        self._smoothed = np.zeros(self.n_bins)
        self._spectrum = np.zeros(self.n_bins, dtype=np.uint8)
        self._waveform = np.full(self.n_bins, 128, dtype=np.uint8)

    @classmethod
    def from_file(
        cls,
        audio_path: Union[str, Path],
        sr: int | None = 44100,
        **kwargs,
    ) -> "FileSignalSource":
        """
        Load an audio file (wav, mp3, flac) and wrap it in a source.

        Args:
            audio_path: Path to the audio file.
            sr: Target sample rate. None preserves the original.
            **kwargs: Forwarded to the constructor.
        """
        y, sr_out = librosa.load(audio_path, sr=sr, mono=True)
        return cls(y, sr_out, **kwargs)

    @property
    def duration(self) -> float:
        """Length of the audio in seconds."""
        return len(self.samples) / float(self.sample_rate)

    @property
    def position_ms(self) -> float:
        """Playback position of the current frame in milliseconds."""
        return self._position * 1000.0 / self.sample_rate

    @property
    def finished(self) -> bool:
        return self._position + self.hop_length > len(self.samples)

    def advance(self) -> bool:
        """
        Move to the next frame and refresh the analyser arrays.

        Returns:
            False when the end of the audio has been reached.
        """
        if self.finished:
            return False
        self._position += self.hop_length
        self.frame_index += 1

        end = self._position
        start = end - self.fft_size
        block = self.samples[max(start, 0):end]
        if block.size < self.fft_size:
            block = np.pad(block, (self.fft_size - block.size, 0))

        magnitude = np.abs(np.fft.rfft(block * self._window))[: self.n_bins] / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude

        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._smoothed)
        scaled = 255.0 / (self.max_db - self.min_db) * (db - self.min_db)
        self._spectrum = np.clip(np.floor(np.nan_to_num(scaled, neginf=0.0)), 0, 255).astype(np.uint8)

        recent = block[-self.n_bins:]
        self._waveform = np.clip(np.floor(128.0 * (1.0 + recent)), 0, 255).astype(np.uint8)
        return True

    def frequency_data(self) -> np.ndarray:
        return self._spectrum.copy()

    def time_data(self) -> np.ndarray:
        return self._waveform.copy()
