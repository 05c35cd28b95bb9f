"""Preset settings and exchange formats."""

from genrescope.io.preset import (
    PresetSettings,
    decode_any,
    decode_compact,
    decode_verbose,
    encode_compact,
    encode_verbose,
)

__all__ = [
    "PresetSettings",
    "decode_any",
    "decode_compact",
    "decode_verbose",
    "encode_compact",
    "encode_verbose",
]
