"""Command-line entry for timetable_lite.

Prints one resolved week of a schedule (occurrences plus degradation detail)
as JSON.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date

from . import run_week_report
from .timetable_exceptions import TimetableError


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from exc


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for timetable_lite CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="timetable_lite",
        description="Timetable Lite - print a resolved week of a schedule as JSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m timetable_lite --schedule 1                      # This week, Monday to Friday
  python -m timetable_lite --schedule 1 --week 2024-01-10    # Week containing 2024-01-10
  python -m timetable_lite --db ~/timetable.db --schedule 1 --weekend
        """,
    )

    parser.add_argument(
        "--db",
        metavar="PATH",
        help="SQLite database file (default: timetable.db, or TIMETABLE_DATABASE_PATH env var)",
    )
    parser.add_argument("--schedule", type=int, required=True, metavar="ID", help="Schedule id")
    parser.add_argument(
        "--week",
        type=_parse_date,
        metavar="YYYY-MM-DD",
        help="Any date inside the week to show (default: today)",
    )
    parser.add_argument(
        "--weekend",
        action="store_true",
        help="Show the Sunday-to-Saturday week instead of Monday to Friday",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the timetable_lite CLI.

    Returns:
        Process exit code
    """
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        print(run_week_report(args))
    except TimetableError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
