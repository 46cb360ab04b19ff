"""
Period Calculator

Pure functions for canonical reporting periods:
  - month: "YYYY-MM", first to last calendar day
  - week:  "YYYY-Www", ISO-8601 (Monday start, week 1 holds the first Thursday)
  - day:   "YYYY-MM-DD"

Every "now" is converted to the reporting timezone before its date is
taken, so a UTC timestamp late on Sunday and the same instant seen in
Warsaw never disagree about which week is current.
"""
import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Union

import pytz
from dateutil.relativedelta import relativedelta

from agency_reports.config import get_settings

SCOPES = ("month", "week", "day")

SUMMARY_TYPES = {
    "month": "monthly",
    "week": "weekly",
    "day": "daily",
}

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_DAY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


@dataclass(frozen=True)
class PeriodInfo:
    """A canonical reporting period"""
    scope: str
    period_id: str
    start_date: date
    end_date: date

    @property
    def summary_type(self) -> str:
        return SUMMARY_TYPES[self.scope]

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


def _check_scope(scope: str) -> None:
    if scope not in SCOPES:
        raise ValueError(f"Unknown period scope '{scope}', expected one of {SCOPES}")


def _timezone(tz_name: Optional[str]):
    return pytz.timezone(tz_name or get_settings().reporting_timezone)


def to_reporting_date(now: Union[datetime, date, None] = None, tz_name: Optional[str] = None) -> date:
    """
    Calendar date of an instant in the reporting timezone.

    Naive datetimes are UTC. Plain dates are already reporting dates.
    """
    if now is None:
        now = datetime.utcnow()
    if not isinstance(now, datetime):
        return now
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(_timezone(tz_name)).date()


def period_for_date(scope: str, day: date) -> PeriodInfo:
    """Period of the given scope that contains a reporting date."""
    _check_scope(scope)

    if scope == "month":
        last_day = calendar.monthrange(day.year, day.month)[1]
        return PeriodInfo(
            scope="month",
            period_id=f"{day.year:04d}-{day.month:02d}",
            start_date=date(day.year, day.month, 1),
            end_date=date(day.year, day.month, last_day),
        )

    if scope == "week":
        iso_year, iso_week, iso_weekday = day.isocalendar()
        monday = day - timedelta(days=iso_weekday - 1)
        return PeriodInfo(
            scope="week",
            period_id=f"{iso_year:04d}-W{iso_week:02d}",
            start_date=monday,
            end_date=monday + timedelta(days=6),
        )

    return PeriodInfo(scope="day", period_id=day.isoformat(), start_date=day, end_date=day)


def current_period(scope: str, now: Union[datetime, date, None] = None, tz_name: Optional[str] = None) -> PeriodInfo:
    """The period of the given scope containing `now`."""
    return period_for_date(scope, to_reporting_date(now, tz_name))


def is_current(period_id: str, scope: str, now: Union[datetime, date, None] = None, tz_name: Optional[str] = None) -> bool:
    """True if period_id is the canonical current period for the scope."""
    return current_period(scope, now, tz_name).period_id == period_id


def parse_period_id(period_id: str) -> PeriodInfo:
    """
    Rebuild a PeriodInfo from its identifier.

    Raises:
        ValueError: if the identifier matches no known format
    """
    match = _WEEK_RE.match(period_id)
    if match:
        year, week = int(match.group(1)), int(match.group(2))
        monday = date.fromisocalendar(year, week, 1)
        return period_for_date("week", monday)

    match = _MONTH_RE.match(period_id)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        return period_for_date("month", date(year, month, 1))

    match = _DAY_RE.match(period_id)
    if match:
        return period_for_date("day", date.fromisoformat(period_id))

    raise ValueError(f"Invalid period ID format: {period_id}")


def shift_period(period: PeriodInfo, steps: int) -> PeriodInfo:
    """Move a period by `steps` periods (negative goes back in time)."""
    if period.scope == "month":
        return period_for_date("month", period.start_date + relativedelta(months=steps))
    if period.scope == "week":
        return period_for_date("week", period.start_date + timedelta(weeks=steps))
    return period_for_date("day", period.start_date + timedelta(days=steps))


def previous_periods(
    scope: str,
    now: Union[datetime, date, None] = None,
    count: int = 1,
    offset: int = 1,
    tz_name: Optional[str] = None
) -> List[PeriodInfo]:
    """
    The `count` periods starting `offset` periods before the current one.

    offset=1 starts at the most recently completed period. Most recent first.
    """
    current = current_period(scope, now, tz_name)
    return [shift_period(current, -(offset + i)) for i in range(max(count, 0))]


def summary_type_for(scope: str) -> str:
    _check_scope(scope)
    return SUMMARY_TYPES[scope]
