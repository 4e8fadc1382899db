"""Command-line trigger for the video assembly pipeline.

Runs the same pipeline as ``POST /process-video`` without the HTTP server,
for operators repairing an event by hand (e.g. after an
``event_finalize_failed_after_publish`` alert).

Usage:
    python -m gregaplay.cli process <event_id>
    python -m gregaplay.cli status <event_id>

Exit Codes:
    0: Success
    1: Pipeline or configuration failure
    2: Invalid request (missing event, no clips, already processing)
"""

import argparse
import asyncio
import sys

from gregaplay.config import Settings, get_settings
from gregaplay.exceptions import (
    ConfigurationError,
    EventAlreadyProcessingError,
    PipelineError,
    ValidationError,
)
from gregaplay.services.clip_gateway import build_gateway
from gregaplay.services.pipeline_orchestrator import build_pipeline
from gregaplay.utils.logging import configure_logging

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2


async def _process(settings: Settings, event_id: str) -> int:
    gateway = build_gateway(settings)
    try:
        pipeline = build_pipeline(settings, gateway)
        if not await pipeline.engine.check_available():
            print(f"❌ Error: encoder not found at {settings.ffmpeg_path}", file=sys.stderr)
            return EXIT_FAILURE
        result = await pipeline.run(event_id)
    finally:
        await gateway.close()

    print(f"✅ Final video for event {result.event_id} ({result.clip_count} clips)")
    print(result.final_video_url)
    return EXIT_OK


async def _status(settings: Settings, event_id: str) -> int:
    gateway = build_gateway(settings)
    try:
        event = await gateway.get_event(event_id)
    finally:
        await gateway.close()

    print(f"{event.id}: {event.status.value}")
    if event.final_video_url:
        print(event.final_video_url)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gregaplay",
        description="Assemble an event's submitted clips into its final video",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Run the assembly pipeline for one event")
    process.add_argument("event_id", help="Event identifier")

    status = subparsers.add_parser("status", help="Show an event's status and final video URL")
    status.add_argument("event_id", help="Event identifier")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        settings = get_settings()
        if args.command == "process":
            return asyncio.run(_process(settings, args.event_id))
        return asyncio.run(_status(settings, args.event_id))
    except (ValidationError, EventAlreadyProcessingError) as e:
        print(f"❌ {e.public_detail}", file=sys.stderr)
        return EXIT_INVALID
    except PipelineError as e:
        print(f"❌ {e.public_detail} ({e.error_code})", file=sys.stderr)
        return EXIT_FAILURE
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
