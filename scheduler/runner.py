"""MiliCron runner -- asyncio polling loop that fires callbacks on matching expressions.

Every `tick_interval` seconds (10ms by default):
1. Snapshots "now" once, in the configured zone
2. Evaluates each distinct registered expression against that snapshot
3. Drops fire-once jobs that matched from the registry
4. Invokes the callbacks of every matching job, outside the registry lock

A slow tick delays the next one; missed instants are not caught up.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable

from core.models.jobs import Job
from scheduler.cron import ParsedExpression, matches, parse

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 0.01


class MiliCron:
    """Cron daemon with a resolution of up to 10ms.

    Usage:
        cron = MiliCron()
        cron.on("*/500 * * * * * *", my_callback)  # twice a second
        await cron.start()
        ...
        await cron.stop()

    Callbacks take no arguments and may be plain functions or coroutine
    functions. Registration is thread-safe and may happen from inside a
    callback.
    """

    def __init__(
        self,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._tick_interval = tick_interval
        self._tz = tz
        self._jobs: dict[str, list[Job]] = {}
        self._lock = threading.Lock()
        self._running = False
        self._wakeup: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None

    # -- lifecycle --

    async def start(self) -> None:
        """Start the polling loop. The first tick runs immediately."""
        if self._running:
            logger.warning("MiliCron already running")
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("MiliCron started (tick every %.3fs)", self._tick_interval)

    async def stop(self) -> None:
        """Stop the polling loop.

        No tick starts after this is called. A tick already dispatching
        callbacks is allowed to finish.
        """
        if not self._running:
            return
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()

        task, self._task = self._task, None
        # stop() may be called from a callback, i.e. from inside the loop task
        if task is not None and task is not asyncio.current_task():
            await task
        logger.info("MiliCron stopped")

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    # -- registration --

    def on(self, expression: str, callback: Callable[..., Any]) -> Job:
        """Run `callback` every time `expression` matches."""
        return self._register(Job(expression=expression, callback=callback))

    def once(self, expression: str, callback: Callable[..., Any]) -> Job:
        """Run `callback` the next time `expression` matches, then forget it."""
        return self._register(Job(expression=expression, callback=callback, once=True))

    def off(self, expression: str, callback: Callable[..., Any]) -> bool:
        """Remove the most recent registration of `callback` for `expression`.

        Returns True if a job was removed.
        """
        with self._lock:
            jobs = self._jobs.get(expression, [])
            for index in range(len(jobs) - 1, -1, -1):
                if jobs[index].callback == callback:
                    removed = jobs.pop(index)
                    break
            else:
                return False
            if not jobs:
                del self._jobs[expression]
        logger.debug("Removed job %s for '%s'", removed.id, expression)
        return True

    def remove(self, job: Job) -> bool:
        """Remove a specific job by id. Returns True if it was registered."""
        with self._lock:
            jobs = self._jobs.get(job.expression, [])
            remaining = [j for j in jobs if j.id != job.id]
            if len(remaining) == len(jobs):
                return False
            if remaining:
                self._jobs[job.expression] = remaining
            else:
                del self._jobs[job.expression]
        logger.debug("Removed job %s for '%s'", job.id, job.expression)
        return True

    def clear(self, expression: str | None = None) -> int:
        """Remove all jobs, or only those registered for `expression`.

        Returns the number of jobs removed.
        """
        with self._lock:
            if expression is None:
                removed = sum(len(jobs) for jobs in self._jobs.values())
                self._jobs.clear()
            else:
                removed = len(self._jobs.pop(expression, []))
        if removed:
            logger.info("Cleared %d job(s)%s", removed, f" for '{expression}'" if expression else "")
        return removed

    def jobs(self, expression: str | None = None) -> list[Job]:
        """List registered jobs in registration order, optionally for one expression."""
        with self._lock:
            if expression is not None:
                return list(self._jobs.get(expression, []))
            return [job for jobs in self._jobs.values() for job in jobs]

    def expressions(self) -> list[str]:
        """Distinct expressions that currently have at least one job."""
        with self._lock:
            return list(self._jobs)

    # -- matching --

    def matches(self, expression: str, instant: datetime) -> bool:
        return matches(expression, instant)

    def parse(self, expression: str, reference: datetime | None = None) -> ParsedExpression:
        return parse(expression, reference)

    # -- internals --

    def _register(self, job: Job) -> Job:
        with self._lock:
            self._jobs.setdefault(job.expression, []).append(job)
        logger.info(
            "Registered %sjob %s for '%s'",
            "one-shot " if job.once else "",
            job.id,
            job.expression,
        )
        return job

    async def _loop(self) -> None:
        """Main polling loop. Exits once stopped or superseded by a restart."""
        while self._is_current_loop():
            try:
                await self._tick()
            except Exception:
                logger.exception("Error in MiliCron tick")
            if not self._is_current_loop():
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._tick_interval)
            except asyncio.TimeoutError:
                pass

    def _is_current_loop(self) -> bool:
        return self._running and self._task is asyncio.current_task()

    async def _tick(self) -> None:
        """Evaluate every expression against one snapshot of now and fire matches."""
        now = datetime.now(self._tz)
        self._tick_count += 1
        self._last_tick = now

        with self._lock:
            snapshot = {expression: list(jobs) for expression, jobs in self._jobs.items()}

        due: list[Job] = []
        for expression, jobs in snapshot.items():
            if matches(expression, now):
                due.extend(jobs)

        if not due:
            return

        if any(job.once for job in due):
            due = self._claim_once_jobs(due)

        logger.debug("Tick %d at %s: firing %d job(s)", self._tick_count, now.isoformat(), len(due))
        for job in due:
            await self._invoke(job)

    def _claim_once_jobs(self, due: list[Job]) -> list[Job]:
        """Unregister the fire-once jobs in `due`.

        A fire-once job removed since the snapshot was taken is dropped
        from the result so it can't fire after being unregistered.
        """
        claimed: list[Job] = []
        with self._lock:
            for job in due:
                if not job.once:
                    claimed.append(job)
                    continue
                jobs = self._jobs.get(job.expression, [])
                remaining = [j for j in jobs if j.id != job.id]
                if len(remaining) == len(jobs):
                    continue
                if remaining:
                    self._jobs[job.expression] = remaining
                else:
                    del self._jobs[job.expression]
                claimed.append(job)
        return claimed

    async def _invoke(self, job: Job) -> None:
        """Invoke a job's callback, catching and logging any exceptions."""
        try:
            result = job.callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Error in job %s for '%s'", job.id, job.expression)
