import calendar
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def month_period(year: int, month: int) -> Period:
    return Period(
        f"{year:04d}-{month:02d}", month_start(year, month), month_end(year, month)
    )


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def resolve_month(
    month: Optional[int],
    year: Optional[int],
    *,
    today: Optional[date] = None,
) -> tuple[int, int]:
    """Fill in a missing month or year from the current local date."""
    today = today or local_today()
    return (
        month if month is not None else today.month,
        year if year is not None else today.year,
    )
