"""Simple runtime configuration for the task series service.

Control flags are read from environment variables to allow toggling in
development or production without code changes.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


# Default timezone name (IANA) used to decide what "today" is when a request
# does not carry an explicit reference date. Parsing and occurrence
# calculation never read the clock themselves; only the HTTP layer does.
DEFAULT_TIMEZONE = os.getenv('DEFAULT_TIMEZONE', 'UTC')

# Date ordering preference for numeric dates handed to the natural-date
# parser: 'DMY' (day-month-year) or 'MDY' (month-day-year).
DATE_ORDER = os.getenv('DATE_ORDER', 'DMY').upper()

# Status assigned to freshly materialized series instances.
INITIAL_TASK_STATUS = os.getenv('INITIAL_TASK_STATUS', 'todo')

# Status written when a task is marked complete.
COMPLETED_TASK_STATUS = os.getenv('COMPLETED_TASK_STATUS', 'done')

# When false, text that is not a recurrence phrase is not handed to the
# generic natural-date parser; only recurrence phrases are recognised.
# Set ENABLE_NATURAL_DATE_FALLBACK=0 to disable.
ENABLE_NATURAL_DATE_FALLBACK = _trueish(os.getenv('ENABLE_NATURAL_DATE_FALLBACK', '1'))

# Upper bound on how many upcoming dates the preview endpoint will compute.
try:
    MAX_PREVIEW_OCCURRENCES = int(os.getenv('MAX_PREVIEW_OCCURRENCES', '10'))
except ValueError:
    MAX_PREVIEW_OCCURRENCES = 10

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Bind address used by `taskseries-serve`.
HOST = os.getenv('HOST', '127.0.0.1')
try:
    PORT = int(os.getenv('PORT', '8000'))
except ValueError:
    PORT = 8000


# Optional local overrides: define variables in taskseries/local_config.py to
# extend or override the defaults above without changing versioned config.
# Keep taskseries/local_config.py out of version control.
try:
    from .local_config import *  # type: ignore  # noqa: F401,F403
except ImportError:
    # No local overrides present; proceed with defaults.
    pass
