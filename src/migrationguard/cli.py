"""CLI entry point for the migration safety analyzer."""

from __future__ import annotations

import argparse
import logging
import sys

from migrationguard.analyzer import analyze
from migrationguard.config import AnalyzerConfig
from migrationguard.engine import Engine
from migrationguard.exceptions import MigrationGuardError
from migrationguard.loader import load
from migrationguard.render import render_text

EXIT_OK = 0
EXIT_BLOCKING = 1
EXIT_ERROR = 2


def _cmd_check(args: argparse.Namespace) -> int:
    """Analyze a migrations directory or JSON batch file."""
    engine = Engine.parse(args.engine, time_zone=args.time_zone)

    env_config = AnalyzerConfig.from_env()
    config = AnalyzerConfig(
        start_after=args.start_after if args.start_after is not None else env_config.start_after,
        fail_on=args.fail_on if args.fail_on is not None else env_config.fail_on,
    )

    batch = load(args.path)
    if not batch.units:
        print(f"No migrations found in {args.path}")
        return EXIT_OK

    report = analyze(batch, engine, config)

    if args.format == "json":
        print(report.to_json(indent=2))
    else:
        print(render_text(report, verbose=args.verbose > 0), end="")

    return EXIT_BLOCKING if report.has_blocking_issues() else EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="migrationguard",
        description="Static safety analysis for schema migrations",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Show rationale for safe operations (-v) and debug logging (-vv)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    check = subparsers.add_parser("check", help="Analyze migrations")
    check.add_argument("path", help="Migrations directory or JSON batch file")
    check.add_argument(
        "--engine",
        required=True,
        help="Target engine and version (e.g. postgres:12, mysql:8.0.12, mariadb:10.3.2)",
    )
    check.add_argument("--time-zone", dest="time_zone", default="UTC", help="Session time zone (default: UTC)")
    check.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    check.add_argument("--start-after", dest="start_after", default=None, help="Skip reporting migrations up to and including this name, in batch order")
    check.add_argument(
        "--fail-on",
        dest="fail_on",
        choices=["unsafe", "conditionally_safe", "safe"],
        default=None,
        help="Lowest status that fails the check (default: unsafe)",
    )
    check.set_defaults(func=_cmd_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_ERROR

    level = logging.DEBUG if args.verbose > 1 else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        return args.func(args)
    except MigrationGuardError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
