"""MiliCron entrypoint -- loads config, registers configured jobs and runs the loop.

Usage:
    python main.py
    python main.py --config /path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from zoneinfo import ZoneInfo

from core.config import JobConfig, load_config
from core.duration import parse_duration
from scheduler.cron import CronExpressionError, parse
from scheduler.runner import MiliCron

logger = logging.getLogger("milicron")


def setup_logging(level: str) -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MiliCron millisecond cron daemon")
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to config.yaml (default: ~/.milicron/config.yaml)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file (default: ~/.milicron/.env)",
    )
    return parser.parse_args()


def make_command_callback(job_config: JobConfig, pending: set[asyncio.Task]):
    """Build a callback that spawns the job's shell command without waiting on it."""

    async def _reap(process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        if returncode != 0:
            logger.warning("Job %s exited with status %d", job_config.name, returncode)
        else:
            logger.debug("Job %s finished", job_config.name)

    async def callback() -> None:
        logger.info("Firing job: %s", job_config.name)
        process = await asyncio.create_subprocess_shell(job_config.command)
        task = asyncio.create_task(_reap(process))
        pending.add(task)
        task.add_done_callback(pending.discard)

    return callback


def register_jobs(cron: MiliCron, jobs: list[JobConfig], pending: set[asyncio.Task]) -> int:
    """Register the enabled configured jobs. Returns how many were registered."""
    registered = 0
    for job_config in jobs:
        if not job_config.enabled:
            logger.info("Skipping disabled job: %s", job_config.name)
            continue

        try:
            parsed = parse(job_config.expression)
        except CronExpressionError as e:
            logger.warning("Job %s has an unrecognizable expression: %s", job_config.name, e)
        else:
            if parsed.kind == "crontab" and not parsed.is_satisfiable:
                logger.warning(
                    "Job %s will never fire, empty field(s): %s",
                    job_config.name,
                    ", ".join(parsed.empty_fields()),
                )

        callback = make_command_callback(job_config, pending)
        if job_config.once:
            cron.once(job_config.expression, callback)
        else:
            cron.on(job_config.expression, callback)
        registered += 1
    return registered


async def run(config_path: str | None = None, env_path: str | None = None) -> None:
    """Load configuration, register jobs and run until interrupted."""
    config = load_config(config_path=config_path, env_path=env_path)
    logging.getLogger().setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    logger.info("Configuration loaded from %s", config.home_path)

    tick_interval = parse_duration(config.scheduler.tick_interval).total_seconds()
    cron = MiliCron(tick_interval=tick_interval, tz=ZoneInfo(config.scheduler.timezone))

    pending: set[asyncio.Task] = set()
    count = register_jobs(cron, config.scheduler.jobs, pending)
    logger.info("Registered %d job(s)", count)

    await cron.start()

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        logger.info("Shutting down...")
        await cron.stop()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Shutdown complete")


def main() -> None:
    args = parse_args()
    setup_logging("INFO")
    try:
        asyncio.run(run(config_path=args.config, env_path=args.env))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
