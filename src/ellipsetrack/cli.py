"""
Command-line interface for the ellipse tracker.

Provides commands for tracking an ellipse through a video or an image
sequence and for writing a default configuration file.
"""

import argparse
import sys

from ellipsetrack.config import load_config, save_default_config
from ellipsetrack.tracer import configure_tracer, get_tracer


def parse_point(text):
    """Parse an "i,j" command-line point."""
    try:
        i, j = (float(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected a point as i,j, got {text!r}")
    return (i, j)


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="ellipsetrack: track an ellipse with moving edges",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    track_parser = subparsers.add_parser("track", help="Track an ellipse through frames")
    track_parser.add_argument(
        "--input", "-i",
        required=True,
        help="Video file or directory of images",
    )
    track_parser.add_argument(
        "--points", "-p",
        nargs="+",
        type=parse_point,
        required=True,
        help="Ordered boundary points i,j on the first frame (5+, or 3+ with --circle)",
    )
    track_parser.add_argument(
        "--out", "-o",
        default="tracking_results.json",
        help="Output JSON file",
    )
    track_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to YAML configuration file",
    )
    track_parser.add_argument(
        "--circle",
        action="store_true",
        help="Track a circle instead of a general ellipse",
    )
    track_parser.add_argument(
        "--track-arc",
        action="store_true",
        help="Track only the arc from the first to the last point",
    )
    track_parser.add_argument(
        "--overlay-dir",
        default=None,
        help="Directory receiving one overlay image per frame",
    )
    track_parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable runtime tracing",
    )
    track_parser.add_argument(
        "--trace-level",
        default="INFO",
        choices=["ERROR", "WARN", "INFO", "DEBUG"],
        help="Trace log level",
    )
    track_parser.add_argument(
        "--trace-file",
        default=None,
        help="Path to write trace logs",
    )
    track_parser.add_argument(
        "--trace-json",
        action="store_true",
        help="Enable JSON trace output",
    )

    init_parser = subparsers.add_parser("init-config", help="Create default config file")
    init_parser.add_argument(
        "--out", "-o",
        default="ellipsetrack_config.yaml",
        help="Output path for config file",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "track":
        return handle_track(args)
    elif args.command == "init-config":
        return handle_init_config(args)

    return 0


def handle_track(args):
    """Handle the track command."""
    config = load_config(args.config)
    if args.circle:
        config.ellipse.circle = True

    tracing = config.tracing
    configure_tracer(
        enabled=args.trace or tracing.enabled,
        level=args.trace_level if args.trace else tracing.level,
        file_path=args.trace_file or tracing.file_path,
        json_output=args.trace_json or tracing.json_output,
    )

    tracer = get_tracer()

    try:
        from ellipsetrack.edges import GradientEdgeSearch
        from ellipsetrack.io.frames import iter_frames
        from ellipsetrack.io.save_results import save_json
        from ellipsetrack.pipeline import track_sequence
        from ellipsetrack.tracking.tracker import EllipseTracker

        with tracer.span("cli_track", module="cli"):
            tracker = EllipseTracker.from_config(
                GradientEdgeSearch.from_config(config.moving_edge), config
            )
            tracker.initialize(args.points, track_arc=args.track_arc)
            results = track_sequence(iter_frames(args.input), tracker, overlay_dir=args.overlay_dir)
            save_json(results, args.out)

        print(f"\nTracking finished in state: {tracker.state.value}")
        print(f"  Frames processed: {len(results)}")
        print(tracker.describe())
        print(f"\nResults saved to: {args.out}")

        if results and results[-1].error:
            print(f"\n[!] {results[-1].error}")
            return 1

        return 0

    except Exception as e:
        tracer.event(f"Tracking failed: {str(e)}", level="ERROR")
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 1


def handle_init_config(args):
    """Handle the init-config command."""
    save_default_config(args.out)
    print(f"Default configuration saved to: {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
