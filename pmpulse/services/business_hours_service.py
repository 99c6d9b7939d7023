import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from pmpulse.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class BusinessHoursService:
    """
    Incremental sync cadence: frequent during business hours, sparse otherwise.

    The scheduler ticks every minute; a tick syncs when the local minute falls on the
    current interval boundary.
    """

    def __init__(self, settings: Settings = None, clock: Optional[Callable[[ZoneInfo], datetime]] = None):
        self.settings = settings or default_settings
        self.tz = ZoneInfo(self.settings.BUSINESS_HOURS_TIMEZONE)
        self._clock = clock or (lambda tz: datetime.now(tz))

    def now(self) -> datetime:
        return self._clock(self.tz).astimezone(self.tz)

    def is_business_hours(self, now: Optional[datetime] = None) -> bool:
        if not self.settings.BUSINESS_HOURS_ENABLED:
            return True
        now = (now or self.now()).astimezone(self.tz)
        if self.settings.BUSINESS_HOURS_WEEKDAYS_ONLY and now.weekday() >= 5:
            return False
        return self.settings.BUSINESS_HOURS_START <= now.hour < self.settings.BUSINESS_HOURS_END

    def get_sync_interval(self, now: Optional[datetime] = None) -> int:
        if not self.settings.BUSINESS_HOURS_ENABLED:
            return self.settings.INCREMENTAL_SYNC_INTERVAL
        if self.is_business_hours(now):
            return self.settings.BUSINESS_HOURS_INTERVAL
        return self.settings.OFF_HOURS_INTERVAL

    def should_sync_now(self, now: Optional[datetime] = None) -> bool:
        now = (now or self.now()).astimezone(self.tz)
        interval = self.get_sync_interval(now)
        if interval >= 60:
            # Hourly (or sparser) cadence aligns to the top of the hour
            return now.minute == 0 and now.hour % (interval // 60) == 0
        return now.minute % interval == 0

    def get_next_sync_time(self, now: Optional[datetime] = None) -> datetime:
        now = (now or self.now()).astimezone(self.tz).replace(second=0, microsecond=0)
        candidate = now
        # Walk forward minute by minute; the interval may change at a business-hours boundary
        for _ in range(60 * 24 * 3):
            if self.should_sync_now(candidate):
                return candidate
            candidate += timedelta(minutes=1)
        return candidate

    def get_sync_mode_description(self, now: Optional[datetime] = None) -> str:
        if not self.settings.BUSINESS_HOURS_ENABLED:
            return f"Fixed interval: every {self.settings.INCREMENTAL_SYNC_INTERVAL} minutes"
        if self.is_business_hours(now):
            return (
                f"Business hours mode: every {self.settings.BUSINESS_HOURS_INTERVAL} minutes "
                f"({self.settings.BUSINESS_HOURS_TIMEZONE} {self.settings.BUSINESS_HOURS_START}:00-"
                f"{self.settings.BUSINESS_HOURS_END}:00)"
            )
        return f"Off-hours mode: every {self.settings.OFF_HOURS_INTERVAL} minutes"

    def get_configuration(self, now: Optional[datetime] = None) -> Dict:
        now = now or self.now()
        return {
            "enabled": self.settings.BUSINESS_HOURS_ENABLED,
            "timezone": self.settings.BUSINESS_HOURS_TIMEZONE,
            "business_hours": f"{self.settings.BUSINESS_HOURS_START}:00 - {self.settings.BUSINESS_HOURS_END}:00",
            "weekdays_only": self.settings.BUSINESS_HOURS_WEEKDAYS_ONLY,
            "business_hours_interval": self.settings.BUSINESS_HOURS_INTERVAL,
            "off_hours_interval": self.settings.OFF_HOURS_INTERVAL,
            "current_mode": "business_hours" if self.is_business_hours(now) else "off_hours",
            "current_interval": self.get_sync_interval(now),
            "description": self.get_sync_mode_description(now),
            "next_sync": self.get_next_sync_time(now).isoformat(),
            "full_sync_time": self.settings.FULL_SYNC_TIME,
        }
