"""Annual trigger: January 1st at 02:00 in the configured timezone"""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo
from donation_engine.constants import (
    ANNUAL_RUN_DAY,
    ANNUAL_RUN_HOUR,
    ANNUAL_RUN_MONTH,
    DEFAULT_SCHEDULE_TIMEZONE,
)
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)


def next_run_time(now: datetime, tz_name: str = DEFAULT_SCHEDULE_TIMEZONE) -> datetime:
    """
    Next January 1st 02:00 local time strictly after now.

    Args:
        now: Current time (aware; naive is taken as UTC)
        tz_name: IANA timezone of the trigger

    Returns:
        Aware datetime in the trigger timezone
    """
    tz = ZoneInfo(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(tz)

    candidate = datetime(local_now.year, ANNUAL_RUN_MONTH, ANNUAL_RUN_DAY, ANNUAL_RUN_HOUR, tzinfo=tz)
    if candidate <= local_now:
        candidate = candidate.replace(year=local_now.year + 1)
    return candidate


class AnnualScheduler:
    """
    Fires a callback once a year and re-arms itself.

    The callback normally is AnnualReconciliationJob.run_annual_reconciliation,
    which picks the previous calendar year itself.
    """

    def __init__(self, callback: Callable[[], object], tz_name: str = DEFAULT_SCHEDULE_TIMEZONE,
                 clock: Optional[Callable[[], datetime]] = None):
        self.callback = callback
        self.tz_name = tz_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._stopped.is_set()

    def start(self) -> datetime:
        """Arm the timer and return the next fire time"""
        self._stopped.clear()
        return self._arm()

    def stop(self) -> None:
        self._stopped.set()
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None
        logger.info("Annual scheduler stopped")

    def _arm(self, after: Optional[datetime] = None) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        fire_at = next_run_time(max(now, after) if after else now, self.tz_name)
        delay = max((fire_at - now).total_seconds(), 0)

        with self._lock:
            self._timer = threading.Timer(delay, self._fire, args=(fire_at,))
            self._timer.daemon = True
            self._timer.start()

        logger.info("Annual reconciliation scheduled", fire_at=fire_at.isoformat(), timezone=self.tz_name)
        return fire_at

    def _fire(self, fired_for: datetime) -> None:
        if self._stopped.is_set():
            return

        logger.info("Annual reconciliation trigger fired")
        try:
            self.callback()
        except Exception as e:
            logger.error("Scheduled reconciliation failed", error=str(e), error_type=type(e).__name__)
        finally:
            if not self._stopped.is_set():
                self._arm(after=fired_for)
