"""
Calendar-date helpers for lawn mowing sessions.

Every session occupies a three day window around its primary date, and every
date crossing a boundary is a plain YYYY-MM-DD string. All arithmetic here is
done on ``datetime.date`` values so adding or subtracting a day can never drift
across a timezone or daylight-saving change.
"""
import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

DATE_FORMAT = "%Y-%m-%d"
GRID_WEEKS = 6
GRID_CELLS = GRID_WEEKS * 7

ARRIVAL_DAYS = ("before", "primary", "after")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DateLike = Union[str, date]


class InvalidDateError(ValueError):
    """Raised when a value is not a canonical YYYY-MM-DD calendar date."""


def parse_date_string(value: DateLike) -> date:
    """Parse a YYYY-MM-DD string into a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise InvalidDateError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError as exc:
        raise InvalidDateError(f"Invalid date: {value!r}") from exc


def format_date(value: DateLike) -> str:
    """Return the canonical YYYY-MM-DD form of a date."""
    return parse_date_string(value).isoformat()


def is_valid_date_string(value) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parse_date_string(value)
    except InvalidDateError:
        return False
    return True


# ==========================
# SESSION WINDOW
# ==========================

@dataclass(frozen=True)
class SessionWindow:
    """The three consecutive days a session may be mowed on."""

    before: str
    primary: str
    after: str

    def dates(self) -> Tuple[str, str, str]:
        return (self.before, self.primary, self.after)

    def as_dates(self) -> Tuple[date, date, date]:
        return tuple(parse_date_string(d) for d in self.dates())

    def contains(self, date_str: str) -> bool:
        return date_str in self.dates()

    def position_of(self, date_str: str) -> Optional[str]:
        """Return 'start', 'primary' or 'end' for a date inside the window."""
        if date_str == self.before:
            return "start"
        if date_str == self.primary:
            return "primary"
        if date_str == self.after:
            return "end"
        return None

    def date_for(self, arrival_day: str) -> str:
        """Map an arrival day (before/primary/after) onto a concrete date."""
        try:
            return self.dates()[ARRIVAL_DAYS.index(arrival_day)]
        except ValueError:
            raise ValueError(f"Unknown arrival day: {arrival_day!r}") from None

    def to_dict(self) -> dict:
        return {"before": self.before, "primary": self.primary, "after": self.after}


def session_window(primary: DateLike) -> SessionWindow:
    """Build the window (primary - 1 day, primary, primary + 1 day)."""
    primary_date = parse_date_string(primary)
    one_day = timedelta(days=1)
    try:
        before, after = primary_date - one_day, primary_date + one_day
    except OverflowError:
        raise InvalidDateError(f"No session window fits around {primary_date.isoformat()}") from None
    return SessionWindow(
        before=format_date(before),
        primary=format_date(primary_date),
        after=format_date(after),
    )


# ==========================
# MONTH GRID
# ==========================

@dataclass(frozen=True)
class DayCell:
    date: str
    day: int
    is_current_month: bool

    def to_dict(self) -> dict:
        return {"date": self.date, "day": self.day, "isCurrentMonth": self.is_current_month}


def _check_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")


def days_in_month(year: int, month: int) -> int:
    _check_month(month)
    return calendar.monthrange(year, month)[1]


def calendar_days(year: int, month: int) -> List[DayCell]:
    """Return the 6x7 Sunday-first grid for a month.

    Leading and trailing cells belong to the neighbouring months and carry
    their own day-of-month numbers. The grid always has exactly 42 cells,
    padding short months with extra trailing weeks.
    """
    _check_month(month)
    cal = calendar.Calendar(firstweekday=6)  # Sunday start
    try:
        weeks = cal.monthdatescalendar(year, month)
        while len(weeks) < GRID_WEEKS:
            last = weeks[-1][-1]
            weeks.append([last + timedelta(days=i) for i in range(1, 8)])
    except (OverflowError, ValueError):
        # The grid spills past date.min or date.max
        raise InvalidDateError(f"No calendar grid for {year:04d}-{month:02d}") from None

    return [
        DayCell(date=format_date(d), day=d.day, is_current_month=d.month == month)
        for week in weeks
        for d in week
    ]


def adjacent_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    """Step ``delta`` months from (year, month), rolling the year over."""
    _check_month(month)
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


# ==========================
# DISPLAY / TODAY
# ==========================

def format_long(value: DateLike) -> str:
    """e.g. 'Saturday, November 8, 2025'"""
    d = parse_date_string(value)
    return f"{d.strftime('%A, %B')} {d.day}, {d.year}"


def format_short(value: DateLike) -> str:
    """e.g. 'Sat, Nov 8'"""
    d = parse_date_string(value)
    return f"{d.strftime('%a, %b')} {d.day}"


def format_short_with_year(value: DateLike) -> str:
    d = parse_date_string(value)
    return f"{format_short(d)}, {d.year}"


def format_range(start: DateLike, end: DateLike) -> str:
    """e.g. 'Fri, Nov 7 - Sun, Nov 9, 2025'"""
    return f"{format_short(start)} - {format_short_with_year(end)}"


def local_today(tz_name: str = "Pacific/Auckland") -> date:
    """Today's calendar date in the roster's home timezone (not UTC)."""
    return datetime.now(ZoneInfo(tz_name)).date()


def is_past_date(value: DateLike, today: date) -> bool:
    return parse_date_string(value) < today


def is_today(value: DateLike, today: date) -> bool:
    return parse_date_string(value) == today
