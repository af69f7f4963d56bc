"""Cron ticker: fires an async callback on a crontab schedule, skipping ticks while busy."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.triggers.cron import CronTrigger

from pixelwatch.errors import ScheduleError

logger = logging.getLogger(__name__)


def parse_schedule(expression: str, timezone=None) -> CronTrigger:
    """Parse a 5-field crontab expression; raises ScheduleError when invalid."""
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except (ValueError, TypeError) as e:
        raise ScheduleError(f"Invalid schedule expression '{expression}': {e}") from e


class CronTicker:
    """Recurring trigger with an owned cancellation token.

    The crontab expression only determines fire times; waiting and
    cancellation are handled here with an ``asyncio.Event``. Ticks that
    arrive while a previous callback is still running are dropped.
    """

    def __init__(
        self,
        expression: str,
        callback: Callable[[], Awaitable[object]],
        on_error: Optional[Callable[[Exception], None]] = None,
        timezone=None,
    ):
        self.expression = expression
        self.callback = callback
        self.on_error = on_error
        self.timezone = timezone
        self.skipped_ticks = 0
        self._trigger: Optional[CronTrigger] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    def next_fire_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        trigger = self._trigger or parse_schedule(self.expression, self.timezone)
        now = now or datetime.now(trigger.timezone)
        return trigger.get_next_fire_time(None, now)

    def start(self) -> None:
        """Validate the expression and arm the ticker. No-op when already running."""
        if self.is_running:
            return
        self._trigger = parse_schedule(self.expression, self.timezone)
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run())
        logger.info("Scheduler armed with '%s'", self.expression)

    def stop(self) -> None:
        """Cancel future ticks. An in-flight callback is left to finish."""
        if not self.is_running:
            return
        self._stop_event.set()
        logger.info("Scheduler stopped")

    async def wait_idle(self) -> None:
        """Wait for the in-flight callback (if any) and a stopped loop to finish."""
        pending = [t for t in (self._loop_task, self._current) if t is not None]
        if self._loop_task is not None and not self._stop_event.is_set():
            pending.remove(self._loop_task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self) -> None:
        previous: Optional[datetime] = None
        while not self._stop_event.is_set():
            now = datetime.now(self._trigger.timezone)
            fire_at = self._trigger.get_next_fire_time(previous, now)
            if fire_at is None:
                logger.info("Schedule '%s' has no further fire times", self.expression)
                return
            delay = max((fire_at - now).total_seconds(), 0.0)
            logger.debug("Next check at %s (in %.0fs)", fire_at.isoformat(), delay)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                pass
            previous = fire_at
            self.fire()

    def fire(self) -> Optional[asyncio.Task]:
        """Handle one tick. Returns the started task, or None if the tick was dropped."""
        if self.busy:
            self.skipped_ticks += 1
            logger.warning("Previous check still running; skipping tick")
            return None
        self._current = asyncio.create_task(self._invoke())
        return self._current

    async def _invoke(self) -> None:
        try:
            await self.callback()
        except Exception as e:
            logger.error("Error in scheduled check: %s", e, exc_info=True)
            if self.on_error is not None:
                self.on_error(e)
