"""CLI entry point: run one generation request and print its progress."""

import argparse
import asyncio
import sys
from datetime import datetime
from typing import List, Optional

from .config import load_config
from .models import GenerationMode, GenerationRequest, ReferenceAsset, RunStatus
from .service import GenerationService
from .utils.logging_utils import configure_logging
from .workflow import create_services


def _parse_reference(value: str) -> ReferenceAsset:
    """Parse ``URL=description`` (description optional)."""
    url, _, description = value.partition("=")
    if not url.strip():
        raise argparse.ArgumentTypeError(f"invalid reference {value!r}, expected URL=description")
    return ReferenceAsset(url=url.strip(), description=description.strip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Plan, generate and assemble a creative piece")
    parser.add_argument("goal", nargs="*", help="Creative goal (prompted for when omitted)")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in GenerationMode],
        default=GenerationMode.VIDEO.value,
        help="Artifact to assemble"
    )
    parser.add_argument("--style", default=None, help="Style direction")
    parser.add_argument(
        "--reference",
        action="append",
        default=[],
        type=_parse_reference,
        metavar="URL=DESC",
        help="Reference asset (repeatable)"
    )
    parser.add_argument("--quiet", action="store_true", help="Hide model thoughts and heartbeats")
    return parser


def format_event(event) -> Optional[str]:
    """One console line per event, or None to skip it."""
    kind = event.type
    if kind == "start":
        return f"▶ Run {event.run_id}"
    if kind == "phase":
        return f"\n== {event.name}" + (f" ({event.detail})" if event.detail else "")
    if kind == "thought":
        return None
    if kind == "heartbeat":
        return f"   … still planning ({event.elapsed_seconds:.0f}s, iteration {event.iteration})"
    if kind == "action":
        return f"   → {event.tool}"
    if kind == "observation":
        status = "ok" if event.result.get("success") else f"error: {event.result.get('error')}"
        return f"   ← {event.tool}: {status}"
    if kind == "unit_asset_start":
        return f"   [unit {event.unit_index}] {event.stage} attempt {event.attempt}"
    if kind == "unit_asset_progress":
        return None
    if kind == "unit_asset_complete":
        return f"   [unit {event.unit_index}] {event.stage} ✓"
    if kind == "unit_asset_error":
        retry = " (retrying)" if event.will_retry else ""
        return f"   [unit {event.unit_index}] {event.stage} ✗ {event.message}{retry}"
    if kind == "prompt_ready":
        return f"   Brief ready ({event.prompt_length} chars)"
    if kind == "complete":
        return f"\n✅ Artifact: {event.artifact_url}"
    if kind == "error":
        return f"\n❌ {event.message}"
    return None


async def main_async(argv: List[str]) -> int:
    """
    Async main function.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        config = load_config()
    except ValueError as e:
        print(f"\n❌ {e}")
        print("\nPlease ensure you have:")
        print("  1. Created a .env file")
        print("  2. Added your OPENAI_API_KEY, TAVILY_API_KEY and IMAGE_API_KEY")
        return 1

    goal = " ".join(args.goal).strip()
    if not goal:
        goal = input("Describe what you want to create: ").strip()
        if not goal:
            print("❌ No goal provided. Exiting.")
            return 1

    request = GenerationRequest(
        goal=goal,
        reference_assets=args.reference,
        style=args.style,
        mode=GenerationMode(args.mode)
    )
    service = GenerationService(create_services(config))
    run_id = service.submit(request)
    start_time = datetime.now()

    try:
        async for event in service.events(run_id):
            if args.quiet and event.type in ("thought", "heartbeat"):
                continue
            if event.type == "thought":
                print(event.text, end="", flush=True)
                continue
            line = format_event(event)
            if line is not None:
                print(line, flush=True)
        record = await service.wait(run_id)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\n\n⚠️  Interrupted, aborting run")
        service.abort(run_id)
        await service.shutdown()
        return 1

    duration = (datetime.now() - start_time).total_seconds()
    print("\n" + "=" * 60)
    print(f"Run ID: {record.run_id}")
    print(f"Status: {record.status.value}")
    print(f"Output directory: {config.output_dir}/{record.run_id}/")
    if record.artifact_url:
        print(f"Artifact: {record.artifact_url}")
    if record.succeeded_units or record.failed_units:
        print(f"Units: {len(record.succeeded_units)} succeeded, {len(record.failed_units)} failed")
        if record.failed_units:
            print(f"Failed units: {', '.join(str(i) for i in record.failed_units)}")
    if record.error:
        print(f"Error: {record.error}")
    print(f"Total time: {duration:.1f}s")
    print("=" * 60)

    return 0 if record.status == RunStatus.COMPLETED else 1


def main():
    """
    Synchronous entry point for CLI.

    Usage:
        python -m creative_orchestrator.main "A 30 second explainer on tides" --mode video
    """
    sys.exit(asyncio.run(main_async(sys.argv[1:])))


if __name__ == "__main__":
    main()
