"""Alias tables for cron expressions.

Two kinds of aliases exist:

    "@daily"        -> whole-expression shortcut, replaced by a 7-field expression
    "MON-FRI", "JAN" -> 3-letter names inside the month / day_of_week fields

All tables are read-only and built once at import time.
"""

from __future__ import annotations

import re
from types import MappingProxyType

EXPRESSION_ALIASES = MappingProxyType({
    "@yearly": "0 0 0 0 1 1 *",
    "@monthly": "0 0 0 0 1 * *",
    "@weekly": "0 0 0 0 * * 0",
    "@daily": "0 0 0 0 * * *",
    "@hourly": "0 0 0 * * * *",
})

MONTH_NAMES = MappingProxyType({
    "JAN": 1,
    "FEB": 2,
    "MAR": 3,
    "APR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AUG": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DEC": 12,
})

DAY_OF_WEEK_NAMES = MappingProxyType({
    "SUN": 0,
    "MON": 1,
    "TUE": 2,
    "WED": 3,
    "THU": 4,
    "FRI": 5,
    "SAT": 6,
})

# Fields that accept names, keyed by field name
NAMED_FIELDS = MappingProxyType({
    "month": MONTH_NAMES,
    "day_of_week": DAY_OF_WEEK_NAMES,
})

# Replacement for a name that isn't in the table; never valid in any field
UNKNOWN_NAME = "X"

_NAME_RE = re.compile(r"[a-z]{3}", re.IGNORECASE)


def resolve_expression_alias(expression: str) -> str | None:
    """Return the 7-field expression for an @alias, or None if it isn't one."""
    return EXPRESSION_ALIASES.get(expression.strip())


def substitute_names(field: str, value: str) -> str:
    """Replace 3-letter month/weekday names in a field with their numbers.

    Fields without a name table are returned unchanged. Names missing from
    the table become UNKNOWN_NAME so the field can never validate.
    """
    names = NAMED_FIELDS.get(field)
    if names is None:
        return value

    def replacer(match: re.Match) -> str:
        number = names.get(match.group(0).upper())
        if number is None:
            return UNKNOWN_NAME
        return str(number)

    return _NAME_RE.sub(replacer, value)
