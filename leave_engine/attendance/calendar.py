"""Working-day calendar: weekends plus mandatory public holidays.

``HolidayCalendar`` is a plain value object so the splitter and impact code
can be tested without a database; ``HolidayCalendar.load`` builds one from
the ``public_holidays`` table for a date window.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Iterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.models import PublicHoliday
from leave_engine.common.constants import WEEKEND_DAYS


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every calendar date from *start* to *end* inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class HolidayCalendar:
    """Answers working-day questions for a fixed set of holidays."""

    def __init__(self, holidays: Iterable[date] = ()) -> None:
        self.holidays: frozenset[date] = frozenset(holidays)

    @classmethod
    async def load(cls, db: AsyncSession, start: date, end: date) -> "HolidayCalendar":
        """Load mandatory holidays falling between *start* and *end*."""
        result = await db.execute(
            select(PublicHoliday.holiday_date).where(
                PublicHoliday.holiday_date >= start,
                PublicHoliday.holiday_date <= end,
                PublicHoliday.is_mandatory.is_(True),
            )
        )
        return cls(result.scalars().all())

    @staticmethod
    def is_weekend(day: date) -> bool:
        return day.weekday() in WEEKEND_DAYS

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays

    def is_working_day(self, day: date) -> bool:
        return not self.is_weekend(day) and not self.is_holiday(day)

    def working_days(self, start: date, end: date) -> list[date]:
        return [d for d in iter_dates(start, end) if self.is_working_day(d)]

    def count_working_days(self, start: date, end: date) -> int:
        return len(self.working_days(start, end))

    def nth_working_day(self, start: date, n: int) -> date:
        """The *n*-th working day on or after *start* (1-based).

        Walks forward day by day, so a range crossing a weekend or holiday
        pushes the result past it.
        """
        if n < 1:
            raise ValueError("n must be >= 1")
        seen = 0
        current = start
        while True:
            if self.is_working_day(current):
                seen += 1
                if seen == n:
                    return current
            current += timedelta(days=1)
