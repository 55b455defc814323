"""Command-line interface for perftrace."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from perftrace.api.schemas.report import PerfReport
from perftrace.api.services.recording_service import RecordingService
from perftrace.api.services.trace.diagnostics import closest_spike_frame, vitals_at_time
from perftrace.core.config import ALLOWED_THROTTLE_RATES, Config, load_environment


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="perftrace",
        description="Browser performance recorder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  perftrace serve
  perftrace serve --port 9000 --reload
  perftrace record https://example.com --seconds 15
  perftrace record https://example.com --throttle 4 --output report.json
        """,
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Command to run",
        required=True,
    )

    # Serve API command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the FastAPI server",
    )
    serve_parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    serve_parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )

    # One-shot recording command
    record_parser = subparsers.add_parser(
        "record",
        help="Record a page for a fixed time and write the report",
    )
    record_parser.add_argument(
        "url",
        help="Page to record (http or https)",
    )
    record_parser.add_argument(
        "--seconds",
        type=float,
        default=10.0,
        help="Recording length in seconds (default: 10)",
    )
    record_parser.add_argument(
        "--throttle",
        type=int,
        default=1,
        choices=list(ALLOWED_THROTTLE_RATES),
        help="CPU slowdown multiplier (default: 1)",
    )
    record_parser.add_argument(
        "--output",
        help="Write the JSON report to this file instead of stdout",
    )
    record_parser.add_argument(
        "--headless",
        action="store_true",
        help="Run Chromium without a window",
    )

    return parser


def run_serve_command(args: argparse.Namespace) -> None:
    """Run the FastAPI server.

    Args:
        args: Parsed command-line arguments
    """
    import uvicorn

    print(f"\n{'='*60}")
    print("Starting PerfTrace Server")
    print(f"{'='*60}")
    print(f"Host: {args.host}")
    print(f"Port: {args.port}")
    print(f"Reload: {args.reload}")
    print(f"{'='*60}\n")
    print(f"API Documentation: http://{args.host}:{args.port}/docs")
    print(f"Health Check: http://{args.host}:{args.port}/health")
    print(f"{'='*60}\n")

    uvicorn.run(
        "perftrace.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


async def record_page(service: RecordingService, url: str, seconds: float, throttle: int) -> PerfReport:
    """Record ``url`` for ``seconds`` and return the report."""
    await service.start_session(url, throttle)
    try:
        await asyncio.sleep(seconds)
    finally:
        report = await service.stop_session()
    return report


def _fmt(value, suffix: str = "") -> str:
    return "-" if value is None else f"{value:.0f}{suffix}"


def print_summary(report: PerfReport) -> None:
    """Print the headline numbers of a report."""
    fps = report.fps_series.point_values
    vitals = report.web_vitals

    print(f"\n{'='*60}")
    print("Recording Summary")
    print(f"{'='*60}")
    print(f"Duration: {report.duration_sec:.1f}s")
    if fps:
        print(f"Average FPS: {sum(fps) / len(fps):.1f}")
    print(f"Long tasks: {report.long_tasks.count} ({report.long_tasks.total_time_ms:.0f}ms)")
    print(f"Layouts: {report.layout_metrics.layout_count}  Paints: {report.layout_metrics.paint_count}")
    print(f"Requests: {report.network_summary.requests}")
    print(f"TBT: {vitals.tbt_ms:.0f}ms  CLS: {vitals.cls if vitals.cls is not None else '-'}")
    if fps:
        worst = min(report.fps_series.points, key=lambda p: p.value)
        at = vitals_at_time(report, worst.time_sec)
        print(
            f"Lowest FPS: {worst.value:.0f} at {worst.time_sec:.1f}s "
            f"(CPU {_fmt(at['cpu_busy_ms'], 'ms')}, heap {_fmt(at['js_heap_mb'], 'MB')}, "
            f"DOM {_fmt(at['dom_nodes'])})"
        )
        frame = closest_spike_frame(report, worst.time_sec)
        if frame is not None:
            print(f"  Nearest screenshot: {frame.screenshot_time_sec:.1f}s")
    if report.suggestions:
        print("\nSuggestions:")
        for suggestion in report.suggestions:
            print(f"  [{suggestion.severity}] {suggestion.title}: {suggestion.detail}")
    print(f"{'='*60}\n")


def run_record_command(args: argparse.Namespace) -> None:
    """Record a page and write its report.

    Args:
        args: Parsed command-line arguments
    """
    config = Config.from_env()
    if args.headless:
        config.headless = True

    service = RecordingService(config)
    report = asyncio.run(record_page(service, args.url, args.seconds, args.throttle))
    payload = report.model_dump_json(by_alias=True, indent=2)

    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        print_summary(report)
        print(f"Report written to {args.output}")
    else:
        print(payload)


def main() -> None:
    """Main entry point for the CLI."""
    load_environment()
    parser = create_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command_map = {
        "serve": run_serve_command,
        "record": run_record_command,
    }

    try:
        command_func = command_map.get(args.command)
        if command_func:
            command_func(args)
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(0)
    except Exception as e:
        print(f"\nError: {str(e)}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
