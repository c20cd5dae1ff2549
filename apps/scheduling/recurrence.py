"""
Expansion of a recurring booking request into concrete occurrence dates.

Occurrence i is always computed from the first date (start + i * step), never
by chaining from the previous occurrence, so monthly series keep their
day-of-month: a series started on the 31st lands on the last day of shorter
months and returns to the 31st afterwards.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Tuple, Union

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db import models
from rest_framework.exceptions import ValidationError


class RecurrenceType(models.TextChoices):
    NONE = "none", "No recurrence"
    DAILY = "daily", "Daily"
    WEEKLY = "weekly", "Weekly"
    MONTHLY = "monthly", "Monthly"


@dataclass(frozen=True)
class RecurrenceRule:
    type: str
    interval: int = 1
    count: Optional[int] = None
    end_date: Optional[Union[date, datetime]] = None


@dataclass(frozen=True)
class Occurrence:
    date: datetime
    index: int
    is_last: bool = False


@dataclass(frozen=True)
class RecurrenceSeries:
    group_id: Optional[str]
    occurrences: Tuple[Occurrence, ...]

    def __iter__(self):
        return iter(self.occurrences)

    def __len__(self):
        return len(self.occurrences)

    @property
    def dates(self):
        return [o.date for o in self.occurrences]


def new_group_id() -> str:
    return f"rec_{uuid.uuid4().hex}"


def default_max_occurrences() -> int:
    return settings.SCHEDULING["MAX_RECURRENCE_OCCURRENCES"]


def shift(start: datetime, rule: RecurrenceRule, steps: int) -> datetime:
    """Date of occurrence number `steps` of the series starting at `start`."""
    n = steps * rule.interval
    if rule.type == RecurrenceType.DAILY:
        return start + timedelta(days=n)
    if rule.type == RecurrenceType.WEEKLY:
        return start + timedelta(weeks=n)
    if rule.type == RecurrenceType.MONTHLY:
        return start + relativedelta(months=n)
    raise ValidationError({"recurrence": f"Unsupported recurrence type: {rule.type}"})


def _within(moment: datetime, end: Union[date, datetime]) -> bool:
    # datetime subclasses date, so test it first
    if isinstance(end, datetime):
        return moment <= end
    return moment.date() <= end


def validate_rule(start: datetime, rule: RecurrenceRule, max_occurrences: int) -> None:
    if rule.type not in RecurrenceType.values:
        raise ValidationError({"recurrence": f"Unsupported recurrence type: {rule.type}"})
    if rule.type == RecurrenceType.NONE:
        return

    errors = {}
    if rule.interval is None or rule.interval < 1:
        errors["interval"] = "Recurrence interval must be a positive integer"
    if rule.count is None and rule.end_date is None:
        errors["recurrence"] = "A recurring series needs a count or an end date"
    if rule.count is not None:
        if rule.count < 1:
            errors["count"] = "Recurrence count must be at least 1"
        elif rule.count > max_occurrences:
            errors["count"] = f"A series cannot have more than {max_occurrences} occurrences"
    if rule.end_date is not None and not _within(start, rule.end_date):
        errors["end_date"] = "Recurrence end date is before the first occurrence"
    if errors:
        raise ValidationError(errors)


def generate_occurrences(
    start: datetime,
    rule: RecurrenceRule,
    max_occurrences: Optional[int] = None,
) -> RecurrenceSeries:
    """
    Expand `rule` from `start` into an ordered series of occurrences.

    The series is bounded by `rule.count`, by `rule.end_date` (inclusive), or by
    whichever is reached first when both are given. An unbounded rule is
    rejected, as is an end-date-bounded rule that would produce more than
    `max_occurrences` rows. A NONE rule yields the start date alone and no
    group id.
    """
    if max_occurrences is None:
        max_occurrences = default_max_occurrences()
    validate_rule(start, rule, max_occurrences)

    if rule.type == RecurrenceType.NONE:
        return RecurrenceSeries(group_id=None, occurrences=(Occurrence(start, 0, True),))

    limit = rule.count if rule.count is not None else max_occurrences
    dates = []
    for index in range(limit):
        moment = shift(start, rule, index)
        if rule.end_date is not None and not _within(moment, rule.end_date):
            break
        dates.append(moment)
    else:
        if rule.count is None and _within(shift(start, rule, limit), rule.end_date):
            raise ValidationError(
                {"end_date": f"A series cannot have more than {max_occurrences} occurrences"}
            )

    last = len(dates) - 1
    occurrences = tuple(Occurrence(d, i, i == last) for i, d in enumerate(dates))
    return RecurrenceSeries(group_id=new_group_id(), occurrences=occurrences)
