"""Recurrence date calculation.

Pure functions over a ``RecurrenceSpec``; no database access. Days of the
week use Python's convention (0 = Monday ... 6 = Sunday).
"""

import calendar
from datetime import date, datetime, timedelta

from taskboard.models.enums import RecurrenceFrequency
from taskboard.schemas.recurrence import RecurrenceSpec

WEEKDAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _add_months(current: date, months: int, day: int) -> date:
    index = current.month - 1 + months
    return _clamp_day(current.year + index // 12, index % 12 + 1, day)


def step(current: date, spec: RecurrenceSpec) -> date:
    """Advance one period from ``current``."""
    interval = spec.interval
    frequency = spec.frequency

    if frequency in (RecurrenceFrequency.DAILY, RecurrenceFrequency.CUSTOM):
        return current + timedelta(days=interval)

    if frequency == RecurrenceFrequency.WEEKLY:
        if not spec.days_of_week:
            return current + timedelta(days=7 * interval)
        weekday = current.weekday()
        later = [day for day in spec.days_of_week if day > weekday]
        if later:
            return current + timedelta(days=later[0] - weekday)
        first = spec.days_of_week[0]
        return current + timedelta(days=7 - weekday + first + (interval - 1) * 7)

    if frequency == RecurrenceFrequency.BIWEEKLY:
        return current + timedelta(days=14 * interval)

    # Month-based frequencies keep their day anchored so a clamped
    # February date returns to the 31st in March
    anchor = spec.day_of_month or spec.start_date.day

    if frequency == RecurrenceFrequency.MONTHLY:
        return _add_months(current, interval, anchor)

    if frequency == RecurrenceFrequency.QUARTERLY:
        return _add_months(current, 3 * interval, anchor)

    if frequency == RecurrenceFrequency.YEARLY:
        month = spec.month_of_year or current.month
        return _clamp_day(current.year + interval, month, anchor)

    raise ValueError(f"Unsupported frequency: {frequency}")


def next_after(now: date | datetime, spec: RecurrenceSpec) -> date | None:
    """
    Next occurrence strictly after ``now``.

    Returns the start date when it is still in the future; otherwise steps
    from the start date until past ``now``.

    Returns:
        The occurrence date, or None when ``end_date`` or ``max_occurrences``
        ends the series
    """
    if spec.exhausted:
        return None

    reference = _as_date(now)
    current = spec.start_date
    while current <= reference:
        current = step(current, spec)
        if spec.end_date is not None and current > spec.end_date:
            return None

    if spec.end_date is not None and current > spec.end_date:
        return None
    return current


def upcoming_occurrences(
    spec: RecurrenceSpec,
    count: int = 5,
    after: date | datetime | None = None,
) -> list[date]:
    """Preview the next ``count`` occurrences, honoring stop conditions."""
    occurrences: list[date] = []
    remaining = None
    if spec.max_occurrences is not None:
        remaining = spec.max_occurrences - spec.occurrences_created
    current = next_after(after if after is not None else date.today(), spec)

    while current is not None and len(occurrences) < count:
        if remaining is not None and len(occurrences) >= remaining:
            break
        occurrences.append(current)
        current = step(current, spec)
        if spec.end_date is not None and current > spec.end_date:
            break

    return occurrences


def describe(spec: RecurrenceSpec) -> str:
    """Human-readable summary, e.g. ``Every 2 weeks on Mon, Wed``."""
    interval = spec.interval
    frequency = spec.frequency

    if frequency == RecurrenceFrequency.DAILY:
        text = "Daily" if interval == 1 else f"Every {interval} days"
    elif frequency == RecurrenceFrequency.WEEKLY:
        text = "Weekly" if interval == 1 else f"Every {interval} weeks"
        if spec.days_of_week:
            text += " on " + ", ".join(WEEKDAY_NAMES[day] for day in spec.days_of_week)
    elif frequency == RecurrenceFrequency.BIWEEKLY:
        text = "Every 2 weeks" if interval == 1 else f"Every {2 * interval} weeks"
    elif frequency == RecurrenceFrequency.MONTHLY:
        text = "Monthly" if interval == 1 else f"Every {interval} months"
        if spec.day_of_month:
            text += f" on day {spec.day_of_month}"
    elif frequency == RecurrenceFrequency.QUARTERLY:
        text = "Quarterly" if interval == 1 else f"Every {interval} quarters"
    elif frequency == RecurrenceFrequency.YEARLY:
        text = "Yearly" if interval == 1 else f"Every {interval} years"
        if spec.month_of_year:
            text += f" in {calendar.month_name[spec.month_of_year]}"
    else:
        text = f"Every {interval} days"

    if spec.end_date is not None:
        text += f" until {spec.end_date.isoformat()}"
    elif spec.max_occurrences is not None:
        text += f", {spec.max_occurrences} times"
    return text
