"""Cron-style trigger that fires the generation callback on a schedule."""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from croniter import croniter

logger = logging.getLogger(__name__)

ScheduleCallback = Callable[[], Union[Awaitable[Any], Any]]


class InvalidScheduleError(ValueError):
    """Raised for schedule strings that are not valid five-field cron expressions."""


def validate_schedule(schedule: str) -> str:
    """Return the normalized schedule or raise InvalidScheduleError."""
    normalized = " ".join((schedule or "").split())
    if len(normalized.split(" ")) != 5 or not croniter.is_valid(normalized):
        raise InvalidScheduleError(f"Invalid cron schedule: {schedule!r}")
    return normalized


class CronScheduleTrigger:
    """Call ``callback`` every time the cron schedule fires."""

    def __init__(
        self,
        schedule: str,
        callback: ScheduleCallback,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.schedule = validate_schedule(schedule)
        self.callback = callback
        self._clock = clock
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_fire_time(self, after: Optional[datetime] = None) -> datetime:
        """Return the next time the schedule fires after ``after`` (default: now)."""
        return croniter(self.schedule, after or self._clock()).get_next(datetime)

    def start(self) -> None:
        """Arm the trigger on the running event loop."""
        self.stop()
        logger.info("Initializing scheduler with: %s", self.schedule)
        self._task = asyncio.get_running_loop().create_task(self._loop())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Scheduler stopped")

    def reschedule(self, schedule: str) -> None:
        """Swap to a new schedule; an invalid one leaves the current trigger armed."""
        normalized = validate_schedule(schedule)
        was_running = self.is_running
        self.stop()
        self.schedule = normalized
        if was_running:
            self.start()

    async def fire(self) -> None:
        """Invoke the callback once, logging instead of raising on failure."""
        logger.info("Scheduled affirmation generation triggered")
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            logger.exception("Error in scheduled generation")

    async def _loop(self) -> None:
        while True:
            now = self._clock()
            delay = max(0.0, (self.next_fire_time(now) - now).total_seconds())
            await asyncio.sleep(delay)
            await self.fire()
