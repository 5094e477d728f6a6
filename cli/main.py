"""MiliCron CLI -- the `milicron` command.

Usage:
    milicron check <expr> [--at ISO]   Does the expression match now (or --at)?
    milicron parse <expr> [--at ISO]   Show each field's acceptance set
    milicron jobs                      List configured jobs
    milicron start                     Run the daemon
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone
from pathlib import Path


def _parse_instant(value: str | None) -> datetime:
    """Parse --at as ISO 8601; naive values are taken as UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    instant = datetime.fromisoformat(value)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


def _format_values(values: frozenset[int]) -> str:
    """Render a set compactly, collapsing consecutive runs: 0-9,91-109."""
    if not values:
        return "(empty)"
    ordered = sorted(values)
    runs: list[str] = []
    start = prev = ordered[0]
    for value in ordered[1:]:
        if value == prev + 1:
            prev = value
            continue
        runs.append(str(start) if start == prev else f"{start}-{prev}")
        start = prev = value
    runs.append(str(start) if start == prev else f"{start}-{prev}")
    return ",".join(runs)


def cmd_check(args: argparse.Namespace) -> None:
    """Exit 0 if the expression matches, 1 otherwise."""
    from scheduler.cron import matches

    try:
        instant = _parse_instant(args.at)
    except ValueError as e:
        print(f"  Invalid --at value: {e}")
        sys.exit(2)

    if matches(args.expression, instant):
        print(f"match ({instant.isoformat()})")
        sys.exit(0)
    print(f"no match ({instant.isoformat()})")
    sys.exit(1)


def cmd_parse(args: argparse.Namespace) -> None:
    from scheduler.cron import FIELD_NAMES, parse

    try:
        parsed = parse(args.expression, _parse_instant(args.at))
    except ValueError as e:
        print(f"  {e}")
        sys.exit(2)

    if parsed.kind == "absolute":
        print(f"  absolute instant: {parsed.at.isoformat()} (+/-9ms)")
        return

    width = max(len(name) for name in FIELD_NAMES)
    for name in FIELD_NAMES:
        print(f"  {name:<{width}}  {_format_values(getattr(parsed, name))}")

    if not parsed.is_satisfiable:
        print(f"\n  Warning: never matches, empty field(s): {', '.join(parsed.empty_fields())}")


def cmd_jobs(args: argparse.Namespace) -> None:
    from core.config import load_config
    from scheduler.cron import CronExpressionError, parse

    config = load_config()
    if not config.scheduler.jobs:
        print("  No jobs configured.")
        return

    for job in config.scheduler.jobs:
        try:
            parsed = parse(job.expression)
            state = "ok" if parsed.kind == "absolute" or parsed.is_satisfiable else "never fires"
        except CronExpressionError:
            state = "invalid"
        flags = []
        if not job.enabled:
            flags.append("disabled")
        if job.once:
            flags.append("once")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"  {job.name:<20} {job.expression:<28} {state}{suffix}")


def cmd_start(args: argparse.Namespace) -> None:
    """Start the daemon in the foreground."""
    from main import run, setup_logging

    setup_logging("INFO")
    try:
        asyncio.run(run(config_path=args.config, env_path=args.env))
    except KeyboardInterrupt:
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milicron",
        description="MiliCron -- cron with millisecond resolution",
    )
    parser.add_argument("--home", type=str, default=None, help="MiliCron home directory")

    sub = parser.add_subparsers(dest="command")

    for name, help_text in (
        ("check", "Check whether an expression matches now (or --at)"),
        ("parse", "Show the acceptance set of every field"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("expression", type=str, help="Cron expression, @alias or unix seconds")
        cmd.add_argument("--at", type=str, default=None, help="ISO 8601 instant (default: now, UTC)")

    sub.add_parser("jobs", help="List configured jobs")

    start_parser = sub.add_parser("start", help="Run the daemon")
    start_parser.add_argument("--config", "-c", type=str, default=None, help="Path to config.yaml")
    start_parser.add_argument("--env", type=str, default=None, help="Path to .env file")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.home:
        os.environ["MILICRON_HOME"] = str(Path(args.home).expanduser())

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    commands = {
        "check": cmd_check,
        "parse": cmd_parse,
        "jobs": cmd_jobs,
        "start": cmd_start,
    }

    handler = commands.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
