"""
Delay calculations, weekend handling and business-hours windows.

All engine timestamps are naive UTC datetimes (as stored in the database).
Weekend and business-hours checks are made in the configured business
timezone and converted back to naive UTC.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta

import pytz

from .definitions import Step, StepConditions

logger = logging.getLogger(__name__)

SATURDAY = 5


@dataclass(frozen=True)
class BusinessHours:
    start_hour: int = 9
    end_hour: int = 18
    timezone: str = 'UTC'

    def get_timezone(self):
        """Get the business timezone, falling back to UTC."""
        try:
            return pytz.timezone(self.timezone)
        except pytz.exceptions.UnknownTimeZoneError:
            logger.warning(f"Unknown business timezone '{self.timezone}', using UTC")
            return pytz.UTC


def utcnow() -> datetime:
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def as_naive_utc(moment: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC already."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(pytz.UTC).replace(tzinfo=None)


def _to_local(moment: datetime, tz) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=pytz.UTC)
    return moment.astimezone(tz)


def _to_utc(local_moment: datetime) -> datetime:
    return local_moment.astimezone(pytz.UTC).replace(tzinfo=None)


def _localize(tz, day, time_of_day: time) -> datetime:
    return tz.localize(datetime.combine(day, time_of_day))


def is_weekend(moment: datetime, hours: BusinessHours) -> bool:
    """Check if a UTC moment falls on a Saturday or Sunday in the business timezone."""
    return _to_local(moment, hours.get_timezone()).weekday() >= SATURDAY


def shift_weekend(moment: datetime, hours: BusinessHours) -> datetime:
    """Move a weekend moment to the following Monday at the same local time-of-day."""
    tz = hours.get_timezone()
    local = _to_local(moment, tz)
    if local.weekday() < SATURDAY:
        return moment

    days_to_monday = 7 - local.weekday()
    monday = local.date() + timedelta(days=days_to_monday)
    return _to_utc(_localize(tz, monday, local.time().replace(tzinfo=None)))


def is_business_hours(moment: datetime, hours: BusinessHours) -> bool:
    """Check if a UTC moment is inside the Monday-Friday business window."""
    local = _to_local(moment, hours.get_timezone())
    if local.weekday() >= SATURDAY:
        return False
    return time(hours.start_hour) <= local.time() < time(hours.end_hour)


def next_business_start(moment: datetime, hours: BusinessHours) -> datetime:
    """Return the moment itself when inside business hours, otherwise the next window start."""
    if is_business_hours(moment, hours):
        return moment

    tz = hours.get_timezone()
    local = _to_local(moment, tz)
    day = local.date()
    if local.weekday() >= SATURDAY or local.time() >= time(hours.end_hour):
        day += timedelta(days=1)

    while day.weekday() >= SATURDAY:
        day += timedelta(days=1)

    return _to_utc(_localize(tz, day, time(hours.start_hour)))


def apply_schedule_rules(moment: datetime, conditions: StepConditions, hours: BusinessHours) -> datetime:
    """Push a due moment forward according to a step's weekend and business-hours rules."""
    adjusted = moment
    if conditions.skip_weekends:
        adjusted = shift_weekend(adjusted, hours)
    if conditions.only_business_hours:
        adjusted = next_business_start(adjusted, hours)
    return adjusted


def compute_due_at(base: datetime, step: Step, hours: BusinessHours) -> datetime:
    """Due time for a step whose delay starts counting at ``base``."""
    return apply_schedule_rules(base + step.delay, step.conditions, hours)
