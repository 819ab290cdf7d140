"""Half-open calendar-day window used for the "today" counters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class TodayWindow:
    """Calendar day `[start, end)` expressed in UTC."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime | None) -> bool:
        if moment is None:
            return False
        return self.start <= moment < self.end

    @classmethod
    def for_moment(cls, moment: datetime, *, timezone_name: str) -> TodayWindow:
        """Return the local calendar day containing `moment` in `timezone_name`."""

        timezone = ZoneInfo(timezone_name)
        local_day = moment.astimezone(timezone).date()
        local_start = datetime.combine(local_day, time.min, tzinfo=timezone)
        local_end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=timezone)
        return cls(start=local_start.astimezone(UTC), end=local_end.astimezone(UTC))
