"""Runs the maintenance sweep once a day at a fixed local time."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from vigil.config import DEFAULT_TIMEZONE
from vigil.maintenance.sweeper import MaintenanceSweeper, SweepSummary
from vigil.utils.clock import Clock, to_local, utc_now

logger = logging.getLogger(__name__)


def next_run_after(
    moment: datetime, hour: int = 2, minute: int = 0, tz_name: str = DEFAULT_TIMEZONE
) -> datetime:
    """The first local ``hour:minute`` strictly after *moment*."""
    local = to_local(moment, tz_name)
    tz = ZoneInfo(tz_name)
    candidate = datetime.combine(local.date(), time(hour, minute), tzinfo=tz)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), time(hour, minute), tzinfo=tz)
    return candidate


class MaintenanceScheduler:
    """Background thread that triggers :meth:`MaintenanceSweeper.run_all` daily.

    :meth:`stop` wakes the thread and also cancels a sweep in progress
    between pages.
    """

    def __init__(
        self,
        sweeper: MaintenanceSweeper,
        hour: int = 2,
        minute: int = 0,
        tz_name: str = DEFAULT_TIMEZONE,
        clock: Clock = utc_now,
    ) -> None:
        self._sweeper = sweeper
        self._hour = hour
        self._minute = minute
        self._tz_name = tz_name
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_summary: Optional[SweepSummary] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_run(self) -> datetime:
        return next_run_after(self._clock(), self._hour, self._minute, self._tz_name)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="VigilMaintenance")
        self._thread.start()
        logger.info("Maintenance scheduled daily at %02d:%02d %s", self._hour, self._minute, self._tz_name)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> SweepSummary:
        """Run the sweep now on the calling thread."""
        self.last_summary = self._sweeper.run_all(cancel=self._stop)
        return self.last_summary

    def _run(self) -> None:
        while not self._stop.is_set():
            delay = (self.next_run() - self._clock()).total_seconds()
            if self._stop.wait(max(0.0, delay)):
                break
            try:
                self.run_once()
            except Exception:
                logger.exception("Daily security maintenance failed")
