"""Genre vocabulary, predictions and the visualization preset attached to each genre."""

from dataclasses import dataclass, field

from genrescope.io.preset import PresetSettings

GENRES = (
    "rock", "electronic", "jazz", "classical", "pop", "hip-hop",
    "ambient", "folk", "metal", "reggae", "blues", "country",
    "dubstep", "house", "techno", "trance",
)

DEFAULT_GENRE = "pop"

GENRE_PRESETS: dict[str, PresetSettings] = {
    "electronic": PresetSettings("sdf", "cyberpunk", 1.9, 2.2, 2.8, 2500),
    "rock": PresetSettings("geometric", "fire", 2.1, 1.9, 2.4, 2000),
    "classical": PresetSettings("supershapes", "aurora", 0.8, 1.4, 0.7, 1200),
    "jazz": PresetSettings("klein", "sunset", 1.4, 1.6, 1.3, 1500),
    "ambient": PresetSettings("mandelbrot", "ocean", 0.6, 1.1, 0.5, 800),
    "pop": PresetSettings("particles", "rainbow", 1.5, 1.8, 1.7, 1800),
    "hip-hop": PresetSettings("geometric", "neon", 2.0, 2.0, 1.9, 2200),
    "folk": PresetSettings("waveform", "sunset", 1.2, 1.3, 1.1, 1000),
    "metal": PresetSettings("fractal", "fire", 2.4, 2.1, 2.7, 3000),
    "reggae": PresetSettings("dna", "aurora", 1.3, 1.5, 1.2, 1300),
    "blues": PresetSettings("fluid", "ocean", 1.1, 1.4, 1.0, 1100),
    "country": PresetSettings("waveform", "sunset", 1.2, 1.3, 1.1, 1200),
    "dubstep": PresetSettings("sdf", "cyberpunk", 2.5, 2.3, 3.0, 4000),
    "house": PresetSettings("quantum", "neon", 1.8, 2.0, 2.2, 2000),
    "techno": PresetSettings("neural", "matrix", 2.0, 2.1, 2.5, 2500),
    "trance": PresetSettings("supershapes", "vaporwave", 1.7, 1.9, 2.0, 1800),
}


def preset_for_genre(genre: str) -> PresetSettings:
    """Preset for ``genre``; unknown genres get the pop preset."""
    return GENRE_PRESETS.get(genre, GENRE_PRESETS[DEFAULT_GENRE])


@dataclass(frozen=True)
class GenrePrediction:
    """A genre label with its confidence and full distribution."""

    genre: str
    confidence: float
    probabilities: dict[str, float] = field(default_factory=dict)
    source: str = "heuristic"

    @classmethod
    def from_rule(cls, genre: str, confidence: float) -> "GenrePrediction":
        """Prediction with ``confidence`` on ``genre`` and the rest shared evenly."""
        rest = (1.0 - confidence) / (len(GENRES) - 1)
        probabilities = {g: (confidence if g == genre else rest) for g in GENRES}
        return cls(genre, confidence, probabilities, source="heuristic")

    def top(self, n: int = 3) -> list[tuple[str, float]]:
        """The ``n`` most probable genres, best first."""
        ranked = sorted(self.probabilities.items(), key=lambda item: item[1], reverse=True)
        return ranked[:n]
