"""
Clock abstraction injected into drivers so "today" and "now" are never read directly.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Source of the current date and time."""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware timestamp."""

    def today(self) -> date:
        """Current local calendar date."""
        return self.now().date()


class SystemClock(Clock):
    """Wall clock in the business timezone."""

    def __init__(self, timezone: str = "Europe/Paris"):
        self.tz = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz)
