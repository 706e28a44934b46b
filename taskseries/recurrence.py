"""Recurrence rule value types.

A rule is one of four frozen pydantic models discriminated by ``frequency``.
Each variant only carries the fields that mean something for it: weekdays
exist only on :class:`WeeklyRule` and a day-of-month only on
:class:`MonthlyRule`. Weekday indices run 0=Sunday .. 6=Saturday.

Loose input (request bodies, database rows) goes through
:func:`rule_from_dict` or :func:`rule_from_columns`, which raise
:class:`InvalidRuleError` instead of silently dropping fields that do not
belong to the chosen frequency.
"""
from datetime import date
import json
import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

FREQUENCIES = ('daily', 'weekly', 'monthly', 'yearly')

WEEKDAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')
WEEKDAY_ABBRS = ('Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat')
# RFC 5545 BYDAY codes indexed the same way as WEEKDAY_NAMES
RRULE_DAY_CODES = ('SU', 'MO', 'TU', 'WE', 'TH', 'FR', 'SA')

_UNIT_BY_FREQUENCY = {'daily': 'day', 'weekly': 'week', 'monthly': 'month', 'yearly': 'year'}


class InvalidRuleError(ValueError):
    """Raised when a recurrence rule is built from inconsistent input."""


def weekday_index(d: date) -> int:
    """Return the Sunday-based weekday index (0=Sunday .. 6=Saturday) of d."""
    return (d.weekday() + 1) % 7


class _RuleBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid', alias_generator=to_camel, populate_by_name=True)

    interval: int = Field(default=1, ge=1)
    end_date: Optional[date] = None


class DailyRule(_RuleBase):
    frequency: Literal['daily'] = 'daily'


class WeeklyRule(_RuleBase):
    frequency: Literal['weekly'] = 'weekly'
    days_of_week: tuple[int, ...] = ()

    @field_validator('days_of_week', mode='before')
    @classmethod
    def _normalize_days(cls, v):
        if v is None:
            return ()
        days = []
        for d in v:
            if isinstance(d, bool) or not isinstance(d, int):
                raise ValueError(f'weekday index must be an integer, got {d!r}')
            if not 0 <= d <= 6:
                raise ValueError(f'weekday index out of range 0-6: {d}')
            days.append(d)
        return tuple(sorted(set(days)))


class MonthlyRule(_RuleBase):
    frequency: Literal['monthly'] = 'monthly'
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)


class YearlyRule(_RuleBase):
    frequency: Literal['yearly'] = 'yearly'


RecurrenceRule = Annotated[
    Union[DailyRule, WeeklyRule, MonthlyRule, YearlyRule],
    Field(discriminator='frequency'),
]

_rule_adapter: TypeAdapter = TypeAdapter(RecurrenceRule)


def rule_from_dict(data: dict[str, Any]) -> RecurrenceRule:
    """Validate a loose mapping into a concrete rule variant.

    Accepts snake_case or camelCase keys and a case-insensitive frequency.
    Keys set to None are treated as absent, so a weekly rule may arrive with
    ``dayOfMonth: null``; a non-null value for a field the frequency does not
    carry is rejected.
    """
    if not isinstance(data, dict):
        raise InvalidRuleError('recurrence must be an object')
    cleaned = {k: v for k, v in data.items() if v is not None}
    freq = cleaned.get('frequency')
    if not isinstance(freq, str) or freq.strip().lower() not in FREQUENCIES:
        raise InvalidRuleError(f'unknown recurrence frequency: {freq!r}')
    cleaned['frequency'] = freq.strip().lower()
    try:
        return _rule_adapter.validate_python(cleaned)
    except ValidationError as e:
        raise InvalidRuleError(_summarize_validation_error(e)) from e


def rule_to_dict(rule: RecurrenceRule) -> dict[str, Any]:
    """Serialize a rule to a JSON-friendly camelCase dict."""
    return rule.model_dump(mode='json', by_alias=True)


def _summarize_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = '.'.join(str(p) for p in err.get('loc', ()) if p not in FREQUENCIES)
        parts.append(f"{loc or 'recurrence'}: {err.get('msg')}")
    return '; '.join(parts)


# --- database column mapping ---

def rule_to_columns(rule: Optional[RecurrenceRule]) -> dict[str, Any]:
    """Flatten a rule into the task table's recurrence columns.

    None clears every column.
    """
    if rule is None:
        return {
            'recurrence_frequency': None,
            'recurrence_interval': None,
            'recurrence_end_date': None,
            'recurrence_days_of_week': None,
            'recurrence_day_of_month': None,
        }
    days = getattr(rule, 'days_of_week', None)
    return {
        'recurrence_frequency': rule.frequency,
        'recurrence_interval': rule.interval,
        'recurrence_end_date': rule.end_date,
        'recurrence_days_of_week': json.dumps(list(days)) if days else None,
        'recurrence_day_of_month': getattr(rule, 'day_of_month', None),
    }


def rule_from_columns(row: Any) -> Optional[RecurrenceRule]:
    """Rebuild a rule from a row (mapping or attribute object) of recurrence columns.

    Returns None when the row has no frequency.
    """
    def _get(name):
        if isinstance(row, dict):
            return row.get(name)
        return getattr(row, name, None)

    freq = _get('recurrence_frequency')
    if not freq:
        return None
    data: dict[str, Any] = {
        'frequency': freq,
        'interval': _get('recurrence_interval') or 1,
        'end_date': _get('recurrence_end_date'),
    }
    raw_days = _get('recurrence_days_of_week')
    if raw_days:
        if isinstance(raw_days, str):
            try:
                raw_days = json.loads(raw_days)
            except ValueError as e:
                raise InvalidRuleError(f'malformed recurrence_days_of_week: {raw_days!r}') from e
        data['days_of_week'] = raw_days
    dom = _get('recurrence_day_of_month')
    if dom is not None:
        data['day_of_month'] = dom
    return rule_from_dict(data)


# --- descriptions and exports ---

def describe_rule(rule: RecurrenceRule) -> str:
    """Return a human description such as 'Repeats every 2 weeks on Mon, Wed'."""
    unit = _UNIT_BY_FREQUENCY[rule.frequency]
    if rule.interval == 1:
        text = f'Repeats {rule.frequency}'
    else:
        text = f'Repeats every {rule.interval} {unit}s'
    if isinstance(rule, WeeklyRule) and rule.days_of_week:
        text += ' on ' + ', '.join(WEEKDAY_ABBRS[d] for d in rule.days_of_week)
    if isinstance(rule, MonthlyRule) and rule.day_of_month:
        text += f' on day {rule.day_of_month}'
    if rule.end_date:
        text += f' until {rule.end_date.isoformat()}'
    return text


def rule_to_rrule_string(rule: RecurrenceRule) -> str:
    """Export a rule to an RFC5545 RRULE body (no leading 'RRULE:').

    Example: WeeklyRule(interval=2, days_of_week=(1, 3)) -> 'FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE'
    """
    parts = [f'FREQ={rule.frequency.upper()}']
    if rule.interval != 1:
        parts.append(f'INTERVAL={rule.interval}')
    if isinstance(rule, MonthlyRule) and rule.day_of_month:
        parts.append(f'BYMONTHDAY={rule.day_of_month}')
    if isinstance(rule, WeeklyRule) and rule.days_of_week:
        parts.append('BYDAY=' + ','.join(RRULE_DAY_CODES[d] for d in rule.days_of_week))
    if rule.end_date:
        parts.append('UNTIL=' + rule.end_date.strftime('%Y%m%d'))
    return ';'.join(parts)
