"""
Command-line interface for Mirage.

Provides CLI access to text redaction, image redaction, the risk swarm, the
privacy profile and the ledger with argparse.
"""

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path
from typing import Any, List, Optional

from . import __version__
from .config import AUDIENCE_PROFILES, load_config
from .logger import get_logger, setup_root_logger
from .pipeline import ProtectionPipeline, load_media
from .visual_detector import StaticVisionDetector


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="mirage",
        description="Privacy-preserving redaction for images and text",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Redact PII in a sentence
  mirage scan-text "call me at 555-123-4567"

  # Redact an image for a support ticket, with findings from a JSON file
  mirage redact-image photo.jpg --audience support_ticket --findings findings.json -o safe.png

  # Run the risk swarm on a photo
  mirage swarm photo.jpg

  # Show the privacy profile and the last ten ledger entries
  mirage profile
  mirage ledger --limit 10
        """
    )

    parser.add_argument("--config", "-c", type=str, help="Path to JSON configuration file")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: from config, INFO)"
    )
    parser.add_argument("--log-file", type=str, help="Path to log file (default: console only)")
    parser.add_argument("--version", action="version", version=f"Mirage {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_text = subparsers.add_parser("scan-text", help="Redact PII in text through the cascade")
    scan_text.add_argument("text", nargs="?", help="Text to redact (default: read --file or stdin)")
    scan_text.add_argument("--file", "-f", type=str, help="Read text from a file")

    redact = subparsers.add_parser("redact-image", help="Detect and redact sensitive regions in an image")
    redact.add_argument("input", type=str, help="Input image path")
    redact.add_argument("--output", "-o", type=str, help="Output PNG path (default: <input>_protected.png)")
    redact.add_argument(
        "--audience", "-a",
        type=str,
        choices=[p.id for p in AUDIENCE_PROFILES],
        help="Audience profile (default: from config)"
    )
    redact.add_argument("--paranoia", "-p", type=int, help="Paranoia dial 0-100, overrides defaults")
    redact.add_argument(
        "--findings",
        type=str,
        help="JSON file with precomputed detections instead of the vision service"
    )
    redact.add_argument("--redact", nargs="+", default=[], metavar="ID", help="Detection ids to force-redact")
    redact.add_argument("--keep", nargs="+", default=[], metavar="ID", help="Detection ids to keep visible")
    redact.add_argument("--dry-run", action="store_true", help="List detections without exporting")

    swarm = subparsers.add_parser("swarm", help="Run the five-agent risk swarm on a media file")
    swarm.add_argument("input", type=str, help="Input media path")

    subparsers.add_parser("profile", help="Show the privacy profile report")

    ledger = subparsers.add_parser("ledger", help="Show recent ledger entries")
    ledger.add_argument("--limit", "-n", type=int, default=20, help="Number of entries (default: 20)")

    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _read_text(args) -> str:
    if args.text is not None:
        return args.text
    if args.file:
        return Path(args.file).read_text(encoding="utf-8")
    return sys.stdin.read()


def run_scan_text(pipeline: ProtectionPipeline, args) -> int:
    result = asyncio.run(pipeline.scan_text(_read_text(args)))
    _print_json(result.to_dict())
    return 0


def _apply_overrides(session, ids: List[str], redact: bool, logger) -> None:
    for detection_id in ids:
        try:
            session.set_decision(detection_id, redact)
        except KeyError:
            logger.warning(f"Unknown detection id ignored: {detection_id}")


def run_redact_image(pipeline: ProtectionPipeline, args, logger) -> int:
    if args.findings:
        with open(args.findings, "r", encoding="utf-8") as f:
            items = json.load(f)
        pipeline.vision_detector = StaticVisionDetector(
            items.get("detections", []) if isinstance(items, dict) else items,
            pipeline.config.vision.default_confidence,
        )

    media = asyncio.run(load_media(args.input))
    session = asyncio.run(pipeline.scan(media, pipeline.audience(args.audience)))

    if args.paranoia is not None:
        session.apply_paranoia(args.paranoia)
    _apply_overrides(session, args.redact, True, logger)
    _apply_overrides(session, args.keep, False, logger)

    if args.dry_run:
        _print_json({
            "summary": session.summary(),
            "detections": [
                dict(d.to_dict(), redact=session.decisions[d.id]) for d in session.detections
            ],
        })
        return 0

    input_path = Path(args.input)
    output_path = Path(args.output) if args.output else input_path.with_name(f"{input_path.stem}_protected.png")
    result = pipeline.export(session, output_path)
    _print_json({
        "output": str(result.output_path),
        "ledger_status": result.ledger_status,
        "stamp": result.stamp.to_dict(),
    })
    return 0


def run_swarm(pipeline: ProtectionPipeline, args) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")
    mime_type = mimetypes.guess_type(input_path.name)[0] or "application/octet-stream"
    result = asyncio.run(pipeline.run_swarm(input_path.read_bytes(), mime_type))
    _print_json(result.to_dict())
    return 0


def run_profile(pipeline: ProtectionPipeline) -> int:
    _print_json(pipeline.profile_aggregator.report().to_dict())
    return 0


def run_ledger(pipeline: ProtectionPipeline, args) -> int:
    _print_json([entry.to_dict() for entry in pipeline.ledger_writer.list_recent(args.limit)])
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(Path(args.config) if args.config else None)
    except (FileNotFoundError, ValueError, json.JSONDecodeError) as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        return 1

    log_file = Path(args.log_file) if args.log_file else None
    setup_root_logger(args.log_level or config.log_level, log_file)
    logger = get_logger(__name__)

    try:
        pipeline = ProtectionPipeline.from_config(config)

        if args.command == "scan-text":
            return run_scan_text(pipeline, args)
        if args.command == "redact-image":
            return run_redact_image(pipeline, args, logger)
        if args.command == "swarm":
            return run_swarm(pipeline, args)
        if args.command == "profile":
            return run_profile(pipeline)
        if args.command == "ledger":
            return run_ledger(pipeline, args)

        parser.error(f"Unknown command: {args.command}")
        return 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
