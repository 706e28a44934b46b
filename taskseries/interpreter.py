"""Natural-language interpretation of due dates and recurrence phrases.

``interpret(text, today)`` first tries a fixed list of recurrence phrases
('every monday', 'every 2 weeks', 'weekdays', ...) against the whole input.
When none matches, the text is handed to a forward-biased date parser
(dateparser by default) so inputs like 'next friday' or '3 Nov' still yield
a plain date. The reference date is always passed in; nothing here reads the
clock.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
import re
from typing import Callable, Optional

import dateparser
import dateparser.search

from . import config
from .recurrence import (
    DailyRule,
    MonthlyRule,
    RecurrenceRule,
    WEEKDAY_ABBRS,
    WEEKDAY_NAMES,
    WeeklyRule,
    YearlyRule,
    weekday_index,
)

logger = logging.getLogger(__name__)

# Accepted weekday spellings -> Sunday-based index
DAY_MAP = {
    'sun': 0, 'sunday': 0,
    'mon': 1, 'monday': 1,
    'tue': 2, 'tues': 2, 'tuesday': 2,
    'wed': 3, 'weds': 3, 'wednesday': 3,
    'thu': 4, 'thur': 4, 'thurs': 4, 'thursday': 4,
    'fri': 5, 'friday': 5,
    'sat': 6, 'saturday': 6,
}

WORKWEEK = (1, 2, 3, 4, 5)

# Common English number-words that the fallback parser may read as a month
# or day on their own (e.g. 'eight' -> August).
NUMBER_WORDS = {
    'zero', 'one', 'two', 'three', 'four', 'five', 'six', 'seven', 'eight', 'nine', 'ten', 'eleven', 'twelve'
}

# separators allowed between weekday names in 'every mon, wed & fri'
_DAY_LIST_SPLIT = re.compile(r'[\s,&/+]+')

_EVERY_DAY = re.compile(r'every day|daily')
_EVERY_N_DAYS = re.compile(r'every (\d+) days?')
_EVERY_WEEK = re.compile(r'every week|weekly')
_EVERY_N_WEEKS = re.compile(r'every (\d+) weeks?')
_EVERY_DAYS_LIST = re.compile(r'every (.+)')
_EVERY_MONTH = re.compile(r'every month|monthly')
_EVERY_N_MONTHS = re.compile(r'every (\d+) months?')
_EVERY_YEAR = re.compile(r'every year|yearly|annually')
_EVERY_WEEKDAY = re.compile(r'every weekday|weekdays')
_EVERY_OTHER = re.compile(r'every other (day|week|month|year)')


@dataclass(frozen=True)
class Interpretation:
    """Result of interpreting free text.

    Both date and recurrence are None when nothing was recognised; callers
    treat that as 'no preview', not as an error.
    """
    date: Optional[date] = None
    recurrence: Optional[RecurrenceRule] = None
    label: str = ''

    @property
    def matched(self) -> bool:
        return self.date is not None or self.recurrence is not None


NO_MATCH = Interpretation()

FallbackParser = Callable[[str, date], Optional[date]]


def _plural(n: int, unit: str) -> str:
    return f'every {unit}' if n == 1 else f'every {n} {unit}s'


def phrase_label(rule: RecurrenceRule, named_days: bool = True) -> str:
    """Build the confirmation label shown for an interpreted recurrence.

    named_days controls whether a weekly rule is described by its weekdays
    ('Repeats every Mon, Wed') or by its cadence ('Repeats every 2 weeks').
    """
    if isinstance(rule, DailyRule):
        return 'Repeats ' + _plural(rule.interval, 'day')
    if isinstance(rule, WeeklyRule):
        if not named_days or not rule.days_of_week:
            return 'Repeats ' + _plural(rule.interval, 'week')
        if rule.days_of_week == WORKWEEK and rule.interval == 1:
            return 'Repeats every weekday (Mon-Fri)'
        if len(rule.days_of_week) == 1:
            days = WEEKDAY_NAMES[rule.days_of_week[0]]
        else:
            days = ', '.join(WEEKDAY_ABBRS[d] for d in rule.days_of_week)
        if rule.interval == 1:
            return f'Repeats every {days}'
        return f'Repeats every {rule.interval} weeks on {days}'
    if isinstance(rule, MonthlyRule):
        label = 'Repeats ' + _plural(rule.interval, 'month')
        if rule.day_of_month:
            label += f' on day {rule.day_of_month}'
        return label
    return 'Repeats ' + _plural(rule.interval, 'year')


def _days_until(today: date, target_day: int) -> int:
    """Days from today to the next target weekday, 1..7 (never 0)."""
    return (target_day - weekday_index(today) + 7) % 7 or 7


def _parse_day_list(text: str) -> Optional[list[int]]:
    """Map 'mon, wed and fri' to weekday indices.

    Returns None if any token is not a weekday name or a weekday is named
    more than once.
    """
    tokens = [t for t in _DAY_LIST_SPLIT.split(text) if t and t != 'and']
    if not tokens:
        return None
    days = []
    for t in tokens:
        d = DAY_MAP.get(t)
        if d is None:
            return None
        days.append(d)
    if len(set(days)) != len(days):
        logger.debug('rejecting weekday list with repeated day: %r', text)
        return None
    return days


def _count(m: Optional[re.Match]) -> int:
    """Return the repeat count captured by m, or 0 when there is no usable match."""
    return int(m.group(1)) if m else 0


def parse_recurrence(text: str, today: date) -> Optional[Interpretation]:
    """Match text against the recurrence phrases, highest priority first.

    Returns None when the text is not a recurrence phrase.
    """
    p = re.sub(r'\s+', ' ', (text or '').strip().lower())
    if not p:
        return None
    today_idx = weekday_index(today)

    if _EVERY_DAY.fullmatch(p):
        rule = DailyRule(interval=1)
        return Interpretation(today, rule, phrase_label(rule))

    n = _count(_EVERY_N_DAYS.fullmatch(p))
    if n >= 1:
        rule = DailyRule(interval=n)
        return Interpretation(today, rule, phrase_label(rule))

    if _EVERY_WEEK.fullmatch(p):
        rule = WeeklyRule(interval=1, days_of_week=[today_idx])
        return Interpretation(today, rule, phrase_label(rule, named_days=False))

    n = _count(_EVERY_N_WEEKS.fullmatch(p))
    if n >= 1:
        rule = WeeklyRule(interval=n, days_of_week=[today_idx])
        return Interpretation(today, rule, phrase_label(rule, named_days=False))

    m = _EVERY_DAYS_LIST.fullmatch(p)
    if m:
        days = _parse_day_list(m.group(1))
        if days and len(days) == 1:
            rule = WeeklyRule(interval=1, days_of_week=days)
            anchor = today + timedelta(days=_days_until(today, days[0]))
            return Interpretation(anchor, rule, phrase_label(rule))
        if days:
            rule = WeeklyRule(interval=1, days_of_week=days)
            ordered = rule.days_of_week
            target = next((d for d in ordered if d > today_idx), ordered[0])
            anchor = today + timedelta(days=_days_until(today, target))
            return Interpretation(anchor, rule, phrase_label(rule))

    if _EVERY_MONTH.fullmatch(p):
        rule = MonthlyRule(interval=1, day_of_month=today.day)
        return Interpretation(today, rule, phrase_label(rule))

    n = _count(_EVERY_N_MONTHS.fullmatch(p))
    if n >= 1:
        rule = MonthlyRule(interval=n, day_of_month=today.day)
        return Interpretation(today, rule, phrase_label(rule))

    if _EVERY_YEAR.fullmatch(p):
        rule = YearlyRule(interval=1)
        return Interpretation(today, rule, phrase_label(rule))

    if _EVERY_WEEKDAY.fullmatch(p):
        rule = WeeklyRule(interval=1, days_of_week=WORKWEEK)
        anchor = today if today_idx in WORKWEEK else today + timedelta(days=_days_until(today, 1))
        return Interpretation(anchor, rule, phrase_label(rule))

    m = _EVERY_OTHER.fullmatch(p)
    if m:
        unit = m.group(1)
        if unit == 'day':
            rule = DailyRule(interval=2)
        elif unit == 'week':
            rule = WeeklyRule(interval=2, days_of_week=[today_idx])
            return Interpretation(today, rule, phrase_label(rule, named_days=False))
        elif unit == 'month':
            rule = MonthlyRule(interval=2, day_of_month=today.day)
        else:
            rule = YearlyRule(interval=2)
        return Interpretation(today, rule, phrase_label(rule))

    return None


def natural_date_fallback(text: str, today: date) -> Optional[date]:
    """Resolve a free-form date phrase relative to today, preferring the future.

    Uses dateparser with RELATIVE_BASE pinned to today so results are
    deterministic. Bare numbers and number-words are ignored since they are
    read as months or days on their own.
    """
    token = (text or '').strip().lower()
    if not token:
        return None
    if token in NUMBER_WORDS or re.fullmatch(r'\d{1,2}', token):
        return None
    # ISO dates are unambiguous; keep DATE_ORDER from reordering them
    if re.fullmatch(r'\d{4}-\d{2}-\d{2}', token):
        try:
            return date.fromisoformat(token)
        except ValueError:
            return None
    settings = {
        'PREFER_DATES_FROM': 'future',
        'RELATIVE_BASE': datetime.combine(today, time()),
        'DATE_ORDER': config.DATE_ORDER,
    }
    dt = dateparser.parse(token, languages=['en'], settings=settings)
    if dt is not None:
        return dt.date()
    # whole-string parsing misses phrases like 'next friday'; search for an
    # embedded date instead
    results = dateparser.search.search_dates(token, settings=settings, languages=['en'])
    for matched, dt in results or ():
        m = matched.strip().lower()
        if m in NUMBER_WORDS or re.fullmatch(r'\d{1,2}', m):
            continue
        return dt.date()
    return None


def _date_label(d: date) -> str:
    return f'Due {d:%A}, {d:%b} {d.day}, {d.year}'


def interpret(text: str, today: date, fallback: Optional[FallbackParser] = None) -> Interpretation:
    """Interpret free text as a recurrence, a plain date, or nothing.

    fallback replaces the default natural-date parser; it receives the text
    and today and returns a date or None.
    """
    if not text or not text.strip():
        return NO_MATCH
    found = parse_recurrence(text, today)
    if found is not None:
        return found

    if fallback is None:
        if not config.ENABLE_NATURAL_DATE_FALLBACK:
            return NO_MATCH
        fallback = natural_date_fallback
    try:
        d = fallback(text, today)
    except Exception:
        logger.exception('natural date fallback failed for %r', text)
        return NO_MATCH
    if d is None:
        logger.debug('no date or recurrence found in %r', text)
        return NO_MATCH
    if isinstance(d, datetime):
        d = d.date()
    return Interpretation(d, None, _date_label(d))
