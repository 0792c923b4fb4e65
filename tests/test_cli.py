"""
Tests for CLI functionality.

These tests verify the command-line interface logic.
"""

from __future__ import annotations

import argparse
from datetime import UTC, date, datetime
from io import StringIO
from unittest.mock import patch

import pytest

from patio_sun.cli import (
    cmd_exposure,
    cmd_info,
    cmd_precompute,
    cmd_reap,
    cmd_sun,
    cmd_timeline,
    cmd_windows,
    create_parser,
    main,
)
from patio_sun.geometry import rectangle
from patio_sun.schemas import GeoPoint, Patio
from patio_sun.service import SunExposureService
from patio_sun.venues import InMemoryGeometryStore

CENTER = GeoPoint(lon=11.9746, lat=57.7089)
NOON = datetime(2026, 6, 21, 11, 0, tzinfo=UTC)


def service() -> SunExposureService:
    return SunExposureService(InMemoryGeometryStore([Patio(id="terrace", footprint=rectangle(CENTER, 10, 10))]))


class TestCreateParser:
    """Tests for create_parser function."""

    def test_creates_parser(self) -> None:
        """Parser is created successfully."""
        parser = create_parser()
        assert isinstance(parser, argparse.ArgumentParser)
        assert parser.prog == "patio-sun"

    def test_parser_has_version(self) -> None:
        """Parser has version argument."""
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["--version"])

    def test_parser_has_debug_flag(self) -> None:
        """Parser accepts --debug flag."""
        args = create_parser().parse_args(["--debug", "info"])
        assert args.debug is True

    def test_exposure_command(self) -> None:
        """Exposure takes a patio id and an ISO timestamp."""
        args = create_parser().parse_args(["exposure", "terrace", "--at", "2026-06-21T11:00:00+00:00"])
        assert args.command == "exposure"
        assert args.patio_id == "terrace"
        assert args.at == NOON

    def test_naive_timestamp_is_utc(self) -> None:
        """Timestamps without an offset are read as UTC."""
        args = create_parser().parse_args(["exposure", "terrace", "--at", "2026-06-21T11:00"])
        assert args.at == NOON

    def test_bad_timestamp_rejected(self) -> None:
        """Unparseable timestamps exit with a usage error."""
        with patch("sys.stderr", new=StringIO()), pytest.raises(SystemExit):
            create_parser().parse_args(["exposure", "terrace", "--at", "noon"])

    def test_timeline_defaults(self) -> None:
        """Timeline defaults to 12 hours from now at the default step."""
        args = create_parser().parse_args(["timeline", "terrace"])
        assert args.start is None
        assert args.hours == 12.0
        assert args.interval is None

    def test_windows_max(self) -> None:
        """Windows accepts --max."""
        args = create_parser().parse_args(["windows", "terrace", "--max", "5"])
        assert args.max_windows == 5

    def test_precompute_command(self) -> None:
        """Precompute accepts a start date, day count and --force."""
        args = create_parser().parse_args(["precompute", "--date", "2026-06-21", "--days", "2", "--force"])
        assert args.date == date(2026, 6, 21)
        assert args.days == 2
        assert args.force is True


class TestCmdInfo:
    """Tests for cmd_info function."""

    def test_returns_zero(self) -> None:
        """Info command returns exit code 0."""
        with patch("sys.stdout", new=StringIO()):
            assert cmd_info(argparse.Namespace()) == 0

    def test_prints_app_info(self) -> None:
        """Info command prints application information."""
        with patch("sys.stdout", new=StringIO()) as mock_stdout:
            cmd_info(argparse.Namespace())
            output = mock_stdout.getvalue()
            assert "Application" in output
            assert "Reference location" in output


class TestCmdExposure:
    """Tests for cmd_exposure function."""

    def test_prints_exposure(self) -> None:
        """Exposure prints the state for a known patio."""
        args = argparse.Namespace(patio_id="terrace", at=NOON, debug=True)

        with (
            patch("patio_sun.cli._service", return_value=service()),
            patch("sys.stdout", new=StringIO()) as mock_stdout,
        ):
            assert cmd_exposure(args) == 0
            output = mock_stdout.getvalue()
            assert "Patio: terrace" in output
            assert "100% (sunny)" in output
            assert "Confidence" in output

    def test_unknown_patio_returns_one(self) -> None:
        """Unknown patio prints an error and returns 1."""
        args = argparse.Namespace(patio_id="nowhere", at=NOON, debug=False)

        with (
            patch("patio_sun.cli._service", return_value=service()),
            patch("sys.stderr", new=StringIO()) as mock_stderr,
        ):
            assert cmd_exposure(args) == 1
            assert "Patio not found: nowhere" in mock_stderr.getvalue()

    def test_defaults_to_now(self) -> None:
        """Without --at the current time is used."""
        args = argparse.Namespace(patio_id="terrace", at=None, debug=False)

        with (
            patch("patio_sun.cli._service", return_value=service()),
            patch("patio_sun.cli._now", return_value=NOON),
            patch("sys.stdout", new=StringIO()) as mock_stdout,
        ):
            cmd_exposure(args)
            assert NOON.isoformat() in mock_stdout.getvalue()


class TestCmdTimeline:
    """Tests for cmd_timeline and cmd_windows."""

    def test_timeline_prints_points(self) -> None:
        """One line per point plus a summary."""
        args = argparse.Namespace(patio_id="terrace", start=NOON, hours=1.0, interval=30)

        with (
            patch("patio_sun.cli._service", return_value=service()),
            patch("sys.stdout", new=StringIO()) as mock_stdout,
        ):
            assert cmd_timeline(args) == 0
            lines = mock_stdout.getvalue().splitlines()
            assert len(lines) == 4
            assert lines[-1].startswith("Average")

    def test_timeline_bad_range_returns_one(self) -> None:
        """Ranges over 48 hours are rejected."""
        args = argparse.Namespace(patio_id="terrace", start=NOON, hours=72.0, interval=None)

        with (
            patch("patio_sun.cli._service", return_value=service()),
            patch("sys.stderr", new=StringIO()) as mock_stderr,
        ):
            assert cmd_timeline(args) == 1
            assert "Error" in mock_stderr.getvalue()

    def test_windows(self) -> None:
        """Windows prints one line per window."""
        args = argparse.Namespace(patio_id="terrace", start=NOON, hours=2.0, max_windows=3)

        with (
            patch("patio_sun.cli._service", return_value=service()),
            patch("sys.stdout", new=StringIO()) as mock_stdout,
        ):
            assert cmd_windows(args) == 0
            lines = mock_stdout.getvalue().splitlines()
            assert len(lines) == 1
            assert "sun 11:00-13:00 UTC" in lines[0]

    def test_no_windows(self) -> None:
        """A night-time range has no windows."""
        args = argparse.Namespace(
            patio_id="terrace", start=datetime(2026, 12, 21, 20, 0, tzinfo=UTC), hours=4.0, max_windows=3
        )

        with (
            patch("patio_sun.cli._service", return_value=service()),
            patch("sys.stdout", new=StringIO()) as mock_stdout,
        ):
            assert cmd_windows(args) == 0
            assert "No sun windows found." in mock_stdout.getvalue()


class TestCmdSun:
    """Tests for cmd_sun function."""

    def test_prints_times(self) -> None:
        """Sun prints sunrise, noon and sunset."""
        args = argparse.Namespace(date=date(2026, 6, 21), lat=None, lon=None)

        with patch("sys.stdout", new=StringIO()) as mock_stdout:
            assert cmd_sun(args) == 0
            output = mock_stdout.getvalue()
            assert "Sunrise: 2026-06-21" in output
            assert "Solar noon" in output

    def test_polar_day(self) -> None:
        """No sunrise or sunset above the arctic circle at midsummer."""
        args = argparse.Namespace(date=date(2026, 6, 21), lat=69.65, lon=18.96)

        with patch("sys.stdout", new=StringIO()) as mock_stdout:
            cmd_sun(args)
            assert "Sunrise: -" in mock_stdout.getvalue()


class TestCmdPrecompute:
    """Tests for cmd_precompute and cmd_reap."""

    def test_success_returns_zero(self) -> None:
        """Completed days return exit code 0."""
        args = argparse.Namespace(date=date(2026, 6, 21), days=1, force=False)

        with (
            patch("patio_sun.cli.precompute_all") as mock_flow,
            patch("sys.stdout", new=StringIO()),
        ):
            mock_flow.return_value = {"2026-06-21": {"status": "completed"}}
            assert cmd_precompute(args) == 0
            mock_flow.assert_called_once_with(start_date=date(2026, 6, 21), days=1, force=False)

    def test_failed_day_returns_one(self) -> None:
        """A failed day returns exit code 1."""
        args = argparse.Namespace(date=None, days=None, force=True)

        with (
            patch("patio_sun.cli.precompute_all") as mock_flow,
            patch("sys.stderr", new=StringIO()) as mock_stderr,
        ):
            mock_flow.return_value = {"2026-06-21": {"status": "completed"}, "2026-06-22": {"status": "failed"}}
            assert cmd_precompute(args) == 1
            assert "2026-06-22" in mock_stderr.getvalue()

    def test_reap(self) -> None:
        """Reap runs the reap flow."""
        with patch("patio_sun.cli.reap_cache") as mock_flow:
            mock_flow.return_value = 4
            assert cmd_reap(argparse.Namespace()) == 0
            mock_flow.assert_called_once_with()


class TestMain:
    """Tests for main function."""

    def test_no_command_shows_help(self) -> None:
        """No command shows help and exits 0."""
        with patch("sys.argv", ["patio-sun"]), patch("sys.stdout", new=StringIO()):
            assert main() == 0

    def test_info_command_executes(self) -> None:
        """Info command executes successfully."""
        with (
            patch("sys.argv", ["patio-sun", "info"]),
            patch("patio_sun.cli.cmd_info") as mock_cmd,
        ):
            mock_cmd.return_value = 0
            assert main() == 0
            mock_cmd.assert_called_once()

    def test_exposure_command_executes(self) -> None:
        """Exposure command dispatches with parsed args."""
        with (
            patch("sys.argv", ["patio-sun", "exposure", "terrace"]),
            patch("patio_sun.cli.cmd_exposure") as mock_cmd,
        ):
            mock_cmd.return_value = 1
            assert main() == 1
            assert mock_cmd.call_args[0][0].patio_id == "terrace"

    def test_unknown_command_shows_help(self) -> None:
        """Unknown command shows help and returns 1."""
        with (
            patch("sys.argv", ["patio-sun", "info"]),
            patch("patio_sun.cli.create_parser") as mock_parser,
        ):
            mock_parser.return_value.parse_args.return_value = argparse.Namespace(command="unknown", debug=False)
            assert main() == 1
