"""Next-occurrence calculation for recurrence rules.

Everything here is pure: results depend only on the rule and the date passed
in, never on the current time.
"""
import calendar
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from .recurrence import DailyRule, MonthlyRule, RecurrenceRule, WeeklyRule, YearlyRule, weekday_index
from .utils import as_date


def _next_listed_weekday(from_date: date, days_of_week: tuple[int, ...], interval: int) -> date:
    current = weekday_index(from_date)
    for d in days_of_week:
        if d > current:
            return from_date + timedelta(days=d - current)
    # wrap: to the end of this week, then skip interval-1 whole weeks, then to
    # the first listed day of that week
    days_to_week_end = 6 - current
    skip = days_to_week_end + 1 + (interval - 1) * 7 + days_of_week[0]
    return from_date + timedelta(days=skip)


def _clamp_day(d: date, day: int) -> date:
    last = calendar.monthrange(d.year, d.month)[1]
    return d.replace(day=min(day, last))


def _step(rule: RecurrenceRule, start: date) -> date:
    if isinstance(rule, DailyRule):
        return start + timedelta(days=rule.interval)
    if isinstance(rule, WeeklyRule):
        if rule.days_of_week:
            return _next_listed_weekday(start, rule.days_of_week, rule.interval)
        return start + timedelta(weeks=rule.interval)
    if isinstance(rule, MonthlyRule):
        # relativedelta clamps to the last day of short months
        nxt = start + relativedelta(months=rule.interval)
        return _clamp_day(nxt, rule.day_of_month or start.day)
    return start + relativedelta(years=rule.interval)


def next_occurrence(rule: RecurrenceRule, from_date: date | datetime) -> date | None:
    """Return the first occurrence of rule strictly after from_date.

    Returns None once the computed date falls after the rule's end_date; an
    occurrence landing exactly on end_date is still returned. Also None when
    the interval steps past the last representable date.
    """
    start = as_date(from_date)
    if not isinstance(rule, (DailyRule, WeeklyRule, MonthlyRule, YearlyRule)):
        raise TypeError(f'not a recurrence rule: {rule!r}')
    try:
        nxt = _step(rule, start)
    except (OverflowError, ValueError):
        # past date.max (year 9999); there is no representable next date
        return None

    if rule.end_date is not None and nxt > rule.end_date:
        return None
    return nxt


def upcoming_occurrences(rule: RecurrenceRule, from_date: date | datetime, limit: int) -> list[date]:
    """Return up to limit successive occurrences after from_date."""
    out: list[date] = []
    current = as_date(from_date)
    while len(out) < limit:
        nxt = next_occurrence(rule, current)
        if nxt is None:
            break
        out.append(nxt)
        current = nxt
    return out
