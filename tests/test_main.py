"""Tests for daemon wiring: configured jobs become scheduler jobs."""

import asyncio
import logging
import sys

from core.config import JobConfig
from main import make_command_callback, register_jobs
from scheduler.runner import MiliCron


def job_config(**overrides) -> JobConfig:
    values = {"name": "job", "expression": "* * * * * * *", "command": "true"}
    values.update(overrides)
    return JobConfig(**values)


class TestRegisterJobs:
    """register_jobs() maps JobConfig entries onto MiliCron registrations."""

    def test_registers_enabled_jobs(self):
        cron = MiliCron()
        count = register_jobs(
            cron,
            [
                job_config(name="a"),
                job_config(name="b", enabled=False),
                job_config(name="c", expression="@daily", once=True),
            ],
            set(),
        )

        assert count == 2
        assert cron.expressions() == ["* * * * * * *", "@daily"]
        assert cron.jobs("@daily")[0].once is True
        assert cron.jobs("* * * * * * *")[0].once is False

    def test_warns_about_unsatisfiable_expression(self, caplog):
        cron = MiliCron()
        with caplog.at_level(logging.WARNING, logger="milicron"):
            register_jobs(cron, [job_config(name="broken", expression="*/0 * * * * * *")], set())

        assert "never fire" in caplog.text
        assert "millisecond" in caplog.text

    def test_warns_about_unrecognizable_expression(self, caplog):
        cron = MiliCron()
        with caplog.at_level(logging.WARNING, logger="milicron"):
            register_jobs(cron, [job_config(name="garbage", expression="nonsense")], set())

        assert "unrecognizable" in caplog.text
        # still registered; it simply never matches
        assert len(cron.jobs()) == 1


class TestCommandCallback:
    """The callback spawns the configured shell command."""

    async def test_runs_command(self, tmp_path):
        marker = tmp_path / "fired"
        command = f'"{sys.executable}" -c "open(r\'{marker}\', \'w\').close()"'
        pending: set[asyncio.Task] = set()
        callback = make_command_callback(job_config(command=command), pending)

        await callback()
        await asyncio.gather(*pending)

        assert marker.exists()
        assert pending == set()
