"""
Competition schedule builder.

Boundaries are local midnights in COMPETITION_TIMEZONE, counted in days from
the 1st of the month, and stored as UTC:

    submission_start  day 1
    submission_end    day SUBMISSION_PHASE_DAYS
    judging_start     day SUBMISSION_PHASE_DAYS + 1
    judging_end       day SUBMISSION_PHASE_DAYS + JUDGING_PHASE_DAYS
    results_date      judging_end day + RESULTS_PHASE_DAYS

Days past the end of a short month roll into the next month.
"""

import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from writeclub.core.config import settings
from writeclub.core.errors import ValidationError
from writeclub.models.competition import CompetitionSchedule


def competition_zone(tz: Optional[str] = None) -> ZoneInfo:
    name = tz or settings.COMPETITION_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown competition timezone: {name}", code="invalid_timezone") from e


def _check_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Month must be 1-12 (got {month})", code="invalid_month")
    if not 1970 <= year <= 9998:
        raise ValidationError(f"Year out of range: {year}", code="invalid_year")


def month_name(month: int) -> str:
    return calendar.month_name[month]


def local_day(year: int, month: int, day: int, zone: ZoneInfo) -> datetime:
    """00:00 local time on the given day of the month (day may exceed month length)."""
    first = datetime(year, month, 1, tzinfo=zone)
    return (first + timedelta(days=day - 1)).astimezone(timezone.utc)


def build_schedule(year: int, month: int, *, tz: Optional[str] = None) -> CompetitionSchedule:
    _check_month(year, month)
    zone = competition_zone(tz)

    submission_days = settings.SUBMISSION_PHASE_DAYS
    judging_last_day = submission_days + settings.JUDGING_PHASE_DAYS
    results_day = judging_last_day + settings.RESULTS_PHASE_DAYS

    return CompetitionSchedule(
        submission_start=local_day(year, month, 1, zone),
        submission_end=local_day(year, month, submission_days, zone),
        judging_start=local_day(year, month, submission_days + 1, zone),
        judging_end=local_day(year, month, judging_last_day, zone),
        results_date=local_day(year, month, results_day, zone),
    )
