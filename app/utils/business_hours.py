"""
Local business-hours window used to gate client-facing follow-ups.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class BusinessHours:
    """Opening window: [start_hour, end_hour) local time on the given weekdays."""
    timezone: str = "Europe/Paris"
    start_hour: int = 9
    end_hour: int = 17
    weekdays: FrozenSet[int] = field(default_factory=lambda: frozenset({0, 1, 2, 3, 4}))

    def __post_init__(self):
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError("Business hours must satisfy 0 <= start < end <= 24")

    def local_time(self, moment: datetime) -> datetime:
        """Convert a timestamp to the business timezone (naive values are taken as local)."""
        tz = ZoneInfo(self.timezone)
        if moment.tzinfo is None:
            return moment.replace(tzinfo=tz)
        return moment.astimezone(tz)

    def is_open(self, moment: datetime) -> bool:
        local = self.local_time(moment)
        if local.weekday() not in self.weekdays:
            return False
        return self.start_hour <= local.hour < self.end_hour
