from datetime import date, datetime, timezone
import logging
import re
import zoneinfo

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def today_in_timezone(tz_name: str | None) -> date:
    """Return the current calendar date in the named IANA timezone.

    Unknown or empty zone names fall back to UTC.
    """
    if not tz_name:
        return now_utc().date()
    try:
        tz = zoneinfo.ZoneInfo(tz_name)
    except zoneinfo.ZoneInfoNotFoundError:
        logger.warning("unknown timezone %s; using UTC for today", tz_name)
        return now_utc().date()
    return now_utc().astimezone(tz).date()


def as_date(value: date | datetime) -> date:
    """Reduce a datetime to its calendar date; pass dates through."""
    if isinstance(value, datetime):
        return value.date()
    return value


# '#' is optional on input; the body is a letter followed by letters or digits
_TAG_RE = re.compile(r'#?([A-Za-z][A-Za-z0-9]*)')


def normalize_tag(tag: str) -> str:
    """Return tag in its stored form, '#' plus the lowercased body."""
    m = _TAG_RE.fullmatch((tag or '').strip())
    if m is None:
        raise ValueError(f"invalid tag {tag!r}: must be a letter followed by letters or digits")
    return '#' + m.group(1).lower()


def normalize_tags(tags) -> list[str]:
    """Normalize an iterable of tags, dropping duplicates but keeping order."""
    seen: set[str] = set()
    out: list[str] = []
    for t in tags or ():
        n = normalize_tag(t)
        if n not in seen:
            seen.add(n)
            out.append(n)
    return out
