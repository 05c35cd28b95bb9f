"""
Visualization preset settings and their exchange formats.

Two encodings are supported:

* a compact 12-character code made of six 2-character base-62 fields
  (algorithm, palette, sensitivity, color intensity, motion speed,
  particle count), each numeric field linearly quantized onto 62 levels;
* a verbose envelope: base64-encoded JSON carrying the settings, a
  timestamp and a version tag, kept for debugging and older share links.
"""

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

import numpy as np

from genrescope.errors import PresetFormatError, SettingsError

logger = logging.getLogger(__name__)

ALGORITHMS = (
    "particles", "waveform", "fractal", "fluid", "geometric", "neural",
    "dna", "quantum", "mandelbrot", "supershapes", "klein", "sdf",
)

PALETTES = (
    "rainbow", "ocean", "fire", "neon", "monochrome", "cyberpunk",
    "sunset", "aurora", "vaporwave", "synthwave", "galaxy", "matrix",
)

BASE62_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
FIELD_WIDTH = 2
MAX_LEVEL = 61
CODE_LENGTH = 6 * FIELD_WIDTH

VERBOSE_VERSION = "3.0"
KNOWN_VERSIONS = ("1.0", "2.0", "3.0")


@dataclass(frozen=True)
class FieldRange:
    """Valid numeric range of a settings field."""

    low: float
    high: float

    @property
    def step(self) -> float:
        """Quantization step of the compact code for this field."""
        return (self.high - self.low) / MAX_LEVEL

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high

    def clamp(self, value: float) -> float:
        return min(max(value, self.low), self.high)


FIELD_RANGES: dict[str, FieldRange] = {
    "sensitivity": FieldRange(0.1, 3.0),
    "color_intensity": FieldRange(0.1, 3.0),
    "motion_speed": FieldRange(0.1, 4.0),
    "particle_count": FieldRange(100, 10000),
}

# Wire (camelCase) names used by the verbose envelope and share links
WIRE_NAMES = {
    "algorithm": "algorithm",
    "color_palette": "colorPalette",
    "sensitivity": "sensitivity",
    "color_intensity": "colorIntensity",
    "motion_speed": "motionSpeed",
    "particle_count": "particleCount",
}
_FIELD_BY_WIRE_NAME = {wire: name for name, wire in WIRE_NAMES.items()}


@dataclass(frozen=True)
class PresetSettings:
    """Settings pushed to the renderer and exchanged as presets."""

    algorithm: str = "particles"
    color_palette: str = "rainbow"
    sensitivity: float = 1.0
    color_intensity: float = 1.0
    motion_speed: float = 1.0
    particle_count: int = 1000

    def __post_init__(self):
        _validate_field("algorithm", self.algorithm)
        _validate_field("color_palette", self.color_palette)
        for name in FIELD_RANGES:
            _validate_field(name, getattr(self, name))

    def apply_patch(self, patch: Mapping[str, Any]) -> "PresetSettings":
        """
        Return a copy with the fields in ``patch`` replaced.

        Keys may be snake_case field names or their camelCase wire names.
        Every value is validated before anything is merged.

        Raises:
            SettingsError: on unknown keys, unknown algorithm/palette names,
                non-numeric or out-of-range numeric values.
        """
        changes: dict[str, Any] = {}
        for key, value in patch.items():
            name = _FIELD_BY_WIRE_NAME.get(key, key)
            if name not in WIRE_NAMES:
                raise SettingsError(f"Unknown setting: {key!r}")
            changes[name] = _coerce_field(name, value)
        return replace(self, **changes)

    def to_dict(self, wire: bool = False) -> dict[str, Any]:
        """Settings as a dict, optionally keyed by wire names."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if wire:
            return {WIRE_NAMES[name]: value for name, value in data.items()}
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PresetSettings":
        """Build settings from a (possibly partial) dict over the defaults."""
        return cls().apply_patch(data)


def _validate_field(name: str, value: Any) -> None:
    if name == "algorithm":
        if value not in ALGORITHMS:
            raise SettingsError(f"Unknown algorithm {value!r}; expected one of {', '.join(ALGORITHMS)}")
        return
    if name == "color_palette":
        if value not in PALETTES:
            raise SettingsError(f"Unknown color palette {value!r}; expected one of {', '.join(PALETTES)}")
        return
    rng = FIELD_RANGES[name]
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise SettingsError(f"{name} must be a number, got {value!r}")
    if not rng.contains(float(value)):
        raise SettingsError(f"{name}={value} is outside [{rng.low}, {rng.high}]")


def _coerce_field(name: str, value: Any) -> Any:
    """Validate a single field and convert it to its stored type."""
    if name in FIELD_RANGES and isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            raise SettingsError(f"{name} must be a number, got {value!r}") from None
    _validate_field(name, value)
    if name == "particle_count":
        return int(round(float(value)))
    if name in FIELD_RANGES:
        return float(value)
    return value


# ---------------------------------------------------------------------------
# Compact code
# ---------------------------------------------------------------------------


def to_base62(number: int, width: int = FIELD_WIDTH) -> str:
    """Encode a non-negative integer as a zero-padded base-62 string."""
    if number < 0:
        raise ValueError(f"cannot encode negative number {number}")
    digits = ""
    while number > 0:
        number, remainder = divmod(number, 62)
        digits = BASE62_ALPHABET[remainder] + digits
    return digits.rjust(width, "0")


def from_base62(text: str) -> int:
    """Decode a base-62 string; raises PresetFormatError on foreign characters."""
    value = 0
    for char in text:
        digit = BASE62_ALPHABET.find(char)
        if digit < 0:
            raise PresetFormatError(f"Invalid character {char!r} in preset code")
        value = value * 62 + digit
    return value


def _quantize(value: float, rng: FieldRange) -> int:
    level = round((rng.clamp(value) - rng.low) / (rng.high - rng.low) * MAX_LEVEL)
    return int(min(max(level, 0), MAX_LEVEL))


def _dequantize(level: int, rng: FieldRange) -> float:
    return rng.clamp(rng.low + min(level, MAX_LEVEL) / MAX_LEVEL * (rng.high - rng.low))


def encode_compact(settings: PresetSettings) -> str:
    """Encode settings into the 12-character share code."""
    parts = [
        to_base62(ALGORITHMS.index(settings.algorithm)),
        to_base62(PALETTES.index(settings.color_palette)),
    ]
    for name in ("sensitivity", "color_intensity", "motion_speed", "particle_count"):
        parts.append(to_base62(_quantize(getattr(settings, name), FIELD_RANGES[name])))
    return "".join(parts)


def decode_compact(code: str) -> PresetSettings:
    """
    Decode a 12-character share code.

    Out-of-range algorithm or palette indices fall back to the defaults and
    numeric levels above 61 are clamped.

    Raises:
        PresetFormatError: if the code has the wrong length or contains
            characters outside the base-62 alphabet.
    """
    if not isinstance(code, str):
        raise PresetFormatError("Preset code must be text")
    if len(code) != CODE_LENGTH:
        raise PresetFormatError(
            f"Invalid preset code length: expected {CODE_LENGTH} characters, got {len(code)}"
        )

    levels = [from_base62(code[i:i + FIELD_WIDTH]) for i in range(0, CODE_LENGTH, FIELD_WIDTH)]
    algorithm_index, palette_index = levels[0], levels[1]
    defaults = PresetSettings()

    sensitivity, color_intensity, motion_speed, particles = (
        _dequantize(level, FIELD_RANGES[name])
        for level, name in zip(
            levels[2:],
            ("sensitivity", "color_intensity", "motion_speed", "particle_count"),
        )
    )

    return PresetSettings(
        algorithm=ALGORITHMS[algorithm_index] if algorithm_index < len(ALGORITHMS) else defaults.algorithm,
        color_palette=PALETTES[palette_index] if palette_index < len(PALETTES) else defaults.color_palette,
        sensitivity=sensitivity,
        color_intensity=color_intensity,
        motion_speed=motion_speed,
        particle_count=int(round(particles)),
    )


def random_code(rng: np.random.Generator | None = None) -> str:
    """Compact code for a random, comfortably in-range preset."""
    rng = rng or np.random.default_rng()
    settings = PresetSettings(
        algorithm=str(rng.choice(ALGORITHMS)),
        color_palette=str(rng.choice(PALETTES)),
        sensitivity=float(rng.uniform(0.5, 2.5)),
        color_intensity=float(rng.uniform(0.5, 2.5)),
        motion_speed=float(rng.uniform(0.5, 3.0)),
        particle_count=int(rng.integers(500, 5000)),
    )
    return encode_compact(settings)


# ---------------------------------------------------------------------------
# Verbose envelope
# ---------------------------------------------------------------------------


def encode_verbose(
    settings: PresetSettings,
    timestamp_ms: int | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> str:
    """
    Wrap settings in the versioned base64 JSON envelope.

    Args:
        settings: Settings to export.
        timestamp_ms: Export time; defaults to now.
        metadata: Extra metadata merged into the envelope's ``metadata``.
    """
    envelope = {
        "settings": settings.to_dict(wire=True),
        "timestamp": int(time.time() * 1000) if timestamp_ms is None else int(timestamp_ms),
        "version": VERBOSE_VERSION,
        "metadata": {"dna": encode_compact(settings), **dict(metadata or {})},
    }
    payload = json.dumps(envelope, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(payload).decode("ascii")


def decode_verbose(code: str, base: PresetSettings | None = None) -> PresetSettings:
    """
    Decode a verbose envelope.

    Settings absent from the envelope keep their value from ``base``
    (defaults when omitted). Unknown but parseable versions are accepted
    with a logged warning.

    Raises:
        PresetFormatError: if the payload is not base64 JSON, is not an
            object, misses ``settings`` or ``version`` (null counts as
            missing, an empty ``settings`` object merges nothing), has an
            empty ``version``, or carries invalid setting values.
    """
    try:
        raw = base64.b64decode(code.strip(), validate=True)
        envelope = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError, AttributeError, RecursionError) as e:
        raise PresetFormatError(f"Preset code is not a valid encoded preset: {e}") from e

    if not isinstance(envelope, dict):
        raise PresetFormatError("Invalid preset format: payload must be an object")
    for key in ("settings", "version"):
        if envelope.get(key) is None:
            raise PresetFormatError(f"Invalid preset format: missing '{key}'")

    settings = envelope["settings"]
    if not isinstance(settings, dict):
        raise PresetFormatError("Invalid preset format: 'settings' must be an object")

    version = str(envelope["version"]).strip()
    if not version:
        raise PresetFormatError("Invalid preset format: empty 'version'")
    if version not in KNOWN_VERSIONS:
        logger.warning("Preset version %s may not be fully compatible", version)

    try:
        return (base or PresetSettings()).apply_patch(settings)
    except SettingsError as e:
        raise PresetFormatError(f"Invalid preset settings: {e}") from e


def decode_any(code: str, base: PresetSettings | None = None) -> PresetSettings:
    """Decode either format; 12-character input is treated as a compact code."""
    code = code.strip()
    if len(code) == CODE_LENGTH:
        return decode_compact(code)
    return decode_verbose(code, base=base)
