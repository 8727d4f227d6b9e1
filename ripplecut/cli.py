"""Thin CLI entry point — builds a session from flags or a manifest and drives it."""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from ripplecut import ffutil
from ripplecut.analyzers.detection import DetectionStatus
from ripplecut.analyzers.silence import PRESETS, FFmpegSilenceDetector
from ripplecut.editors.cut import ExportError, FFmpegExporter
from ripplecut.engine import EditSession
from ripplecut.manifest import SessionConfig, load_manifest
from ripplecut.models import ExportCancelled, ExportProgress


def _intensity(value: str) -> float:
    if value in PRESETS:
        return PRESETS[value]
    try:
        return float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"expected a number or one of {', '.join(PRESETS)}"
        ) from None


def _add_detection_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("video", nargs="?", type=Path, help="Input media file")
    p.add_argument("--manifest", "-m", type=Path, help="Path to a JSON session manifest")
    p.add_argument("--intensity", type=_intensity,
                   help="Cutting strategy: 0..1 or none/natural/fast/super")
    p.add_argument("--threshold", type=float, help="Linear silence threshold (0..1)")
    p.add_argument("--padding", type=float, help="Seconds of air kept around speech")


def _build_config(args) -> SessionConfig:
    config = load_manifest(args.manifest) if args.manifest else SessionConfig()
    if args.video:
        config.input = args.video
    if getattr(args, "output", None):
        config.output = args.output
    if config.input is None:
        print("Error: provide either a VIDEO argument or --manifest.", file=sys.stderr)
        sys.exit(1)
    det = config.detection
    config.detection = replace(
        det,
        intensity=det.intensity if args.intensity is None else args.intensity,
        threshold=det.threshold if args.threshold is None else args.threshold,
        padding=det.padding if args.padding is None else args.padding,
    )
    return config


async def _analyze(session: EditSession) -> bool:
    outcome = await session.analyze()
    if outcome.status is DetectionStatus.FAILED:
        print(f"Error: {outcome.message}", file=sys.stderr)
        return False
    return True


def _print_cuts(session: EditSession) -> None:
    stats = session.timeline.stats
    for seg in session.timeline.pending:
        print(f"  cut {seg.start:8.2f}s -> {seg.end:8.2f}s  ({seg.width:.2f}s)")
    print()
    print(f"  Suggested cuts: {stats.pending_count}")
    print(f"  Duration: {stats.original_duration:.1f}s -> {stats.remaining:.1f}s")


def _open_session(config: SessionConfig, exporter=None) -> EditSession:
    ffutil.check_ffmpeg()
    media = ffutil.probe(config.input)
    session = EditSession(
        config,
        detector=FFmpegSilenceDetector(duration=media.duration),
        exporter=exporter(media) if exporter else None,
        on_export_progress=_print_progress,
    )
    session.load(config.input, media)
    return session


def _print_progress(update: ExportProgress) -> None:
    print(f"  [{update.percent / 100:3.0%}] {update.message}")


def cmd_analyze(args) -> int:
    config = _build_config(args)
    with _open_session(config) as session:
        print(f"Analyzing {config.input} (intensity {session.detection.settings.intensity:.2f})")
        if not asyncio.run(_analyze(session)):
            return 1
        _print_cuts(session)
    return 0


def cmd_process(args) -> int:
    config = _build_config(args)
    output = config.output or config.input.with_stem(config.input.stem + config.export.output_suffix)

    def make_exporter(media):
        return FFmpegExporter(output, media.duration, has_video=media.has_video)

    with _open_session(config, exporter=make_exporter) as session:
        if not asyncio.run(_analyze(session)):
            return 1
        if not session.commit():
            print("No silence found; nothing to cut.")
            return 0
        stats = session.timeline.stats
        print(f"  Cutting {stats.cut_count} silent segments")
        try:
            outcome = asyncio.run(session.export())
        except ExportError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        if isinstance(outcome, ExportCancelled):
            print("Export cancelled.")
            return 1

        print()
        print(f"Done! Output: {outcome.output_path}")
        print(f"  Duration: {stats.original_duration:.1f}s -> {stats.current_base:.1f}s")
        print(f"  Silent segments removed: {stats.cut_count}")
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="ripplecut",
        description="RippleCut — silence detection and ripple editing for speech recordings.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log engine activity")
    sub = parser.add_subparsers(dest="command")

    analyze = sub.add_parser("analyze", help="List the cuts a strategy would make")
    _add_detection_args(analyze)

    proc = sub.add_parser("process", help="Cut the silences and render the result")
    _add_detection_args(proc)
    proc.add_argument("--output", "-o", type=Path, help="Output file path")

    serve = sub.add_parser("serve", help="Launch the session API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from ripplecut.web import create_app
        app = create_app()
        print(f"RippleCut API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    try:
        handler = cmd_analyze if args.command == "analyze" else cmd_process
        sys.exit(handler(args))
    except (ffutil.FFmpegNotFoundError, ffutil.NoAudioStreamError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
