"""
Command-line interface for the application.

This module provides the main entry point for the CLI.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, date, datetime, timedelta

from patio_sun import __version__
from patio_sun.config import get_settings
from patio_sun.errors import ExposureError
from patio_sun.flows.precompute import precompute_all, reap_cache
from patio_sun.service import SunExposureService
from patio_sun.solar import sun_times, to_utc
from patio_sun.store import DataStore
from patio_sun.timeline import summarize


def _timestamp(value: str) -> datetime:
    try:
        return to_utc(datetime.fromisoformat(value))
    except ValueError:
        msg = f"not an ISO timestamp: {value!r}"
        raise argparse.ArgumentTypeError(msg) from None


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        msg = f"not an ISO date: {value!r}"
        raise argparse.ArgumentTypeError(msg) from None


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="patio-sun",
        description="Sun and shadow exposure for outdoor seating",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("info", help="Show application info")

    exposure_parser = subparsers.add_parser("exposure", help="Sun exposure of a patio at one instant")
    exposure_parser.add_argument("patio_id", help="Patio id")
    exposure_parser.add_argument("--at", type=_timestamp, default=None, help="ISO timestamp (default: now, UTC)")

    for name, help_text in (("timeline", "Exposure timeline for a patio"), ("windows", "Best sun windows for a patio")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("patio_id", help="Patio id")
        sub.add_argument("--start", type=_timestamp, default=None, help="ISO start (default: now, UTC)")
        sub.add_argument("--hours", type=float, default=12.0, help="Range length in hours (default: 12)")
        if name == "timeline":
            sub.add_argument("--interval", type=int, default=None, help="Step in minutes (default: 10)")
        else:
            sub.add_argument("--max", type=int, default=3, dest="max_windows", help="Windows to show (default: 3)")

    sun_parser = subparsers.add_parser("sun", help="Sunrise, sunset and solar noon")
    sun_parser.add_argument("--date", type=_date, default=None, help="ISO date (default: today, UTC)")
    sun_parser.add_argument("--lat", type=float, default=None, help="Latitude (default: settings)")
    sun_parser.add_argument("--lon", type=float, default=None, help="Longitude (default: settings)")

    precompute_parser = subparsers.add_parser("precompute", help="Precompute exposure for upcoming days")
    precompute_parser.add_argument("--date", type=_date, default=None, help="First ISO date (default: today)")
    precompute_parser.add_argument("--days", type=int, default=None, help="Number of days (default: 3)")
    precompute_parser.add_argument("--force", action="store_true", help="Rerun dates that already completed")

    subparsers.add_parser("reap", help="Evict expired and stale cached exposure")

    return parser


def _service() -> SunExposureService:
    settings = get_settings()
    return SunExposureService.from_store(DataStore(settings.data_dir), settings.engine_config())


def _now() -> datetime:
    return datetime.now(UTC)


def cmd_info(_args: argparse.Namespace) -> int:
    """Handle the 'info' command."""
    settings = get_settings()
    print(f"Application: {settings.app_name}")
    print(f"Version: {__version__}")
    print(f"Environment: {settings.app_env}")
    print(f"Debug: {settings.debug}")
    print(f"Data dir: {settings.data_dir}")
    print(f"Reference location: ({settings.lat}, {settings.lon})")
    return 0


def cmd_exposure(args: argparse.Namespace) -> int:
    """Handle the 'exposure' command."""
    at = args.at or _now()
    try:
        result = _service().calculate_exposure(args.patio_id, at)
    except ExposureError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    solar = result.solar_position
    print(f"Patio: {result.patio_id}")
    print(f"Time: {result.timestamp.isoformat()}")
    print(f"Sun: elevation {solar.elevation_deg:.1f}, azimuth {solar.azimuth_deg:.1f}")
    print(f"Exposure: {result.exposure_percent:.0f}% ({result.state.value})")
    print(f"Confidence: {result.confidence:.0f}% ({result.confidence_breakdown.category.value})")
    print(f"  {result.confidence_breakdown.explanation}")
    if args.debug:
        for issue in result.confidence_breakdown.quality_issues:
            print(f"  - {issue}")
    return 0


def cmd_timeline(args: argparse.Namespace) -> int:
    """Handle the 'timeline' command."""
    start = args.start or _now()
    interval = timedelta(minutes=args.interval) if args.interval else None
    try:
        timeline = _service().generate_timeline(args.patio_id, start, start + timedelta(hours=args.hours), interval)
    except ExposureError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for point in timeline.points:
        print(
            f"{point.timestamp:%Y-%m-%d %H:%M}  {point.exposure_percent:5.1f}%  "
            f"{point.state.value:<8} {point.source.value}"
        )

    summary = summarize(timeline)
    print(
        f"Average {summary.average_exposure:.0f}%, sunny {summary.sunny_minutes:.0f} min, "
        f"{timeline.precomputed_points_count}/{len(timeline.points)} points from cache"
    )
    return 0


def cmd_windows(args: argparse.Namespace) -> int:
    """Handle the 'windows' command."""
    start = args.start or _now()
    try:
        windows = _service().get_best_sun_windows(
            args.patio_id, start, start + timedelta(hours=args.hours), args.max_windows
        )
    except ExposureError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not windows:
        print("No sun windows found.")
        return 0
    for window in windows:
        marker = "*" if window.is_recommended else " "
        print(f"{marker} {window.description} [priority {window.priority_score:.0f}]")
    return 0


def cmd_sun(args: argparse.Namespace) -> int:
    """Handle the 'sun' command."""
    settings = get_settings()
    day = args.date or _now().date()
    lat = settings.lat if args.lat is None else args.lat
    lon = settings.lon if args.lon is None else args.lon
    times = sun_times(day, lat, lon, config=settings.engine_config())

    print(f"Date: {day.isoformat()} at ({lat}, {lon})")
    print(f"Sunrise: {times.sunrise.isoformat() if times.sunrise else '-'}")
    print(f"Solar noon: {times.solar_noon.isoformat()} (elevation {times.max_elevation_deg:.1f})")
    print(f"Sunset: {times.sunset.isoformat() if times.sunset else '-'}")
    return 0


def cmd_precompute(args: argparse.Namespace) -> int:
    """Handle the 'precompute' command."""
    results = precompute_all(start_date=args.date, days=args.days, force=args.force)
    failed = [d for d, s in results.items() if s["status"] == "failed"]
    if failed:
        print(f"Precomputation failed for: {', '.join(failed)}", file=sys.stderr)
        return 1
    print("Done.")
    return 0


def cmd_reap(_args: argparse.Namespace) -> int:
    """Handle the 'reap' command."""
    reap_cache()
    return 0


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    commands = {
        "info": cmd_info,
        "exposure": cmd_exposure,
        "timeline": cmd_timeline,
        "windows": cmd_windows,
        "sun": cmd_sun,
        "precompute": cmd_precompute,
        "reap": cmd_reap,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
