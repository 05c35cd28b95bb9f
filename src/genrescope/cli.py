"""
Command-line interface for offline analysis and preset sharing.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from genrescope.classify.classifier import GenreClassifier
from genrescope.classify.genres import GENRES, preset_for_genre
from genrescope.classify.model import DenseScoringModel
from genrescope.core.source import FileSignalSource
from genrescope.errors import GenrescopeError
from genrescope.io.preset import (
    ALGORITHMS,
    PALETTES,
    PresetSettings,
    decode_any,
    encode_compact,
    encode_verbose,
)
from genrescope.pipeline import AudioReactivePipeline, PipelineConfig

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="genrescope",
        description="Real-time style audio analysis, genre detection and visualization presets",
    )
    parser.add_argument(
        "-v", "--verbose",
        dest="log_verbose",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # analyze
    analyze = sub.add_parser("analyze", help="Run the frame pipeline over an audio file")
    analyze.add_argument("input", type=Path, help="Input audio file (wav, mp3, flac)")
    analyze.add_argument(
        "-f", "--fps",
        type=int,
        default=60,
        help="Analysis frames per second (default: 60)",
    )
    analyze.add_argument(
        "--fft-size",
        type=int,
        default=1024,
        help="Analyser FFT size, a power of two (default: 1024)",
    )
    analyze.add_argument(
        "--max-duration",
        type=float,
        default=None,
        help="Only analyze the first N seconds",
    )
    analyze.add_argument(
        "--model",
        type=Path,
        default=None,
        help="Scoring model weights (.npz); rule-based classification if omitted",
    )
    analyze.add_argument(
        "--interval",
        type=float,
        default=3000.0,
        help="Genre classification interval in ms (default: 3000)",
    )
    analyze.add_argument(
        "--json",
        action="store_true",
        help="Print the summary as JSON",
    )

    # encode
    encode = sub.add_parser("encode", help="Encode settings as a share code")
    defaults = PresetSettings()
    encode.add_argument("--algorithm", choices=ALGORITHMS, default=defaults.algorithm)
    encode.add_argument("--palette", choices=PALETTES, default=defaults.color_palette)
    encode.add_argument("--sensitivity", type=float, default=defaults.sensitivity)
    encode.add_argument("--color-intensity", type=float, default=defaults.color_intensity)
    encode.add_argument("--motion-speed", type=float, default=defaults.motion_speed)
    encode.add_argument("--particle-count", type=int, default=defaults.particle_count)
    encode.add_argument(
        "--verbose",
        dest="envelope",
        action="store_true",
        help="Emit the versioned base64 JSON envelope instead of the 12-character code",
    )

    # decode
    decode = sub.add_parser("decode", help="Decode a compact code or verbose envelope")
    decode.add_argument("code", help="Share code")

    # preset
    preset = sub.add_parser("preset", help="Print the share code of a genre preset")
    preset.add_argument("genre", choices=GENRES)
    preset.add_argument("--json", action="store_true", help="Also print the settings")

    return parser


def cmd_analyze(args: argparse.Namespace) -> int:
    if not args.input.exists():
        print(f"Error: Input file not found: {args.input}", file=sys.stderr)
        return 1

    source = FileSignalSource.from_file(args.input, fps=args.fps, fft_size=args.fft_size)
    if args.max_duration is not None:
        limit = int(args.max_duration * source.sample_rate)
        source.samples = source.samples[:limit]

    model = None
    if args.model:
        model = DenseScoringModel.from_npz(args.model)
        logger.debug("Loaded scoring model from %s", args.model)
    classifier = GenreClassifier(model=model)

    pipeline = AudioReactivePipeline(
        source,
        classifier=classifier,
        config=PipelineConfig(classify_interval_ms=args.interval),
    )

    if not args.json:
        print(f"Processing: {args.input}")
        print(f"Duration: {source.duration:.2f}s at {args.fps} fps")

    pipeline.start()
    beats = 0
    onsets = 0
    genre_counts: dict[str, int] = {}
    while source.advance():
        analysis = pipeline.process_frame(now_ms=source.position_ms)
        if analysis is None:
            continue
        beats += analysis.beat.is_beat
        onsets += analysis.onset_strength > 0
        prediction = analysis.prediction
        if prediction is not None:
            genre_counts[prediction.genre] = genre_counts.get(prediction.genre, 0) + 1
            if not args.json:
                print(
                    f"[{analysis.time_ms / 1000:7.2f}s] genre={prediction.genre:<10} "
                    f"confidence={prediction.confidence:.2f} bpm={analysis.beat.bpm:.0f}"
                )

    summary = {
        "frames": pipeline.frames_processed,
        "beats": int(beats),
        "onsets": int(onsets),
        "bpm": pipeline.beat_tracker.bpm,
        "genre": pipeline.current_genre,
        "genre_votes": genre_counts,
        "classifier": "model" if classifier.has_model else "heuristic",
        "preset": pipeline.export_preset(),
    }
    pipeline.dispose()

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print(f"Frames: {summary['frames']}")
        print(f"Beats: {summary['beats']}")
        print(f"BPM: {summary['bpm']:.0f}")
        print(f"Genre: {summary['genre'] or 'undetermined'}")
        print(f"Preset: {summary['preset']}")
    return 0


def cmd_encode(args: argparse.Namespace) -> int:
    settings = PresetSettings().apply_patch({
        "algorithm": args.algorithm,
        "color_palette": args.palette,
        "sensitivity": args.sensitivity,
        "color_intensity": args.color_intensity,
        "motion_speed": args.motion_speed,
        "particle_count": args.particle_count,
    })
    print(encode_verbose(settings) if args.envelope else encode_compact(settings))
    return 0


def cmd_decode(args: argparse.Namespace) -> int:
    settings = decode_any(args.code)
    print(json.dumps(settings.to_dict(wire=True), indent=2))
    return 0


def cmd_preset(args: argparse.Namespace) -> int:
    settings = preset_for_genre(args.genre)
    print(encode_compact(settings))
    if args.json:
        print(json.dumps(settings.to_dict(wire=True), indent=2))
    return 0


COMMANDS = {
    "analyze": cmd_analyze,
    "encode": cmd_encode,
    "decode": cmd_decode,
    "preset": cmd_preset,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.log_verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return COMMANDS[args.command](args)
    except GenrescopeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
