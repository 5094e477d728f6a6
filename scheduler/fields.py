"""Per-field constraints and the acceptance-set builder.

A cron field like "1-10/3,20" is turned into the set of integers it
accepts: {1, 4, 7, 10, 20}. Supported atoms (comma separated):

    n        single value
    a-b      inclusive range, empty if a > b
    a-b/s    stepped range
    a/s      stepped from a up to the field maximum
    *  ?     the full field range
    d#w      day_of_week only: day number of the w-th weekday d this month
    dL       day_of_week only: day number of the last weekday d this month
    L        day_of_month only: last day of this month

Malformed input never raises. A bad atom contributes nothing, and a field
with invalid characters yields an empty set (the expression never matches).
"""

from __future__ import annotations

import calendar
import re
from datetime import datetime
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from scheduler.aliases import UNKNOWN_NAME, substitute_names

# Every accepted millisecond also accepts its neighbours up to this distance
MILLISECOND_TOLERANCE = 9


class FieldConstraint(BaseModel):
    """Bounds and allowed syntax for one cron field."""

    model_config = ConfigDict(frozen=True)

    minimum: int
    maximum: int
    extra_symbols: frozenset[str] = Field(default_factory=frozenset)
    valid_chars: re.Pattern


_NUMERIC_CHARS = re.compile(r"[,*0-9/-]+")

CONSTRAINTS = MappingProxyType({
    "millisecond": FieldConstraint(minimum=0, maximum=999, valid_chars=_NUMERIC_CHARS),
    "second": FieldConstraint(minimum=0, maximum=59, valid_chars=_NUMERIC_CHARS),
    "minute": FieldConstraint(minimum=0, maximum=59, valid_chars=_NUMERIC_CHARS),
    "hour": FieldConstraint(minimum=0, maximum=23, valid_chars=_NUMERIC_CHARS),
    "day_of_month": FieldConstraint(
        minimum=1,
        maximum=31,
        extra_symbols=frozenset({"L", "?"}),
        valid_chars=re.compile(r"[?,*0-9L/-]+"),
    ),
    "month": FieldConstraint(minimum=1, maximum=12, valid_chars=_NUMERIC_CHARS),
    "day_of_week": FieldConstraint(
        minimum=0,
        maximum=7,
        extra_symbols=frozenset({"L", "#", "?"}),
        valid_chars=re.compile(r"[?,*0-9L#/-]+"),
    ),
})


def build_field_values(
    field: str,
    raw: str,
    constraint: FieldConstraint,
    reference: datetime,
) -> frozenset[int]:
    """Parse one field's text into the set of values it accepts.

    Args:
        field: Field name, one of the CONSTRAINTS keys.
        raw: The field's text from the expression.
        constraint: Bounds and allowed characters for the field.
        reference: Instant whose year/month anchors the '#' and 'L' atoms.

    Returns:
        The acceptance set. Empty when the text is invalid for the field.
    """
    value = substitute_names(field, raw)
    if value == UNKNOWN_NAME or not constraint.valid_chars.fullmatch(value):
        return frozenset()

    full_range = f"{constraint.minimum}-{constraint.maximum}"
    if "*" in value:
        value = value.replace("*", full_range)
    elif "?" in value and "?" in constraint.extra_symbols:
        value = value.replace("?", full_range)

    values: set[int] = set()
    for atom in value.split(","):
        values.update(_parse_atom(field, atom, constraint, reference))

    if field == "millisecond":
        for anchor in list(values):
            low = max(constraint.minimum, anchor - MILLISECOND_TOLERANCE)
            high = min(constraint.maximum, anchor + MILLISECOND_TOLERANCE)
            values.update(range(low, high + 1))

    if field == "day_of_week":
        if 7 in values:
            values.add(0)
        if 0 in values:
            values.add(7)

    return frozenset(values)


def _parse_atom(
    field: str,
    atom: str,
    constraint: FieldConstraint,
    reference: datetime,
) -> set[int]:
    """Expand a single comma-separated atom. Malformed atoms yield an empty set."""
    try:
        if "-" in atom:
            return _bounded(_parse_range(atom), constraint)
        if "/" in atom:
            start, step = _split(atom, "/")
            if step <= 0 or start > constraint.maximum:
                return set()
            return _bounded(range(start, constraint.maximum + 1, step), constraint)
        if "#" in atom:
            if "#" not in constraint.extra_symbols:
                return set()
            weekday, nth = _split(atom, "#")
            day = _nth_weekday_of_month(weekday, nth, constraint, reference)
            return set() if day is None else {day}
        if "L" in atom:
            if "L" not in constraint.extra_symbols:
                return set()
            day = _last_day_atom(field, atom, constraint, reference)
            return set() if day is None else {day}
        return _bounded([int(atom)], constraint)
    except ValueError:
        return set()


def _parse_range(atom: str) -> range:
    """Expand 'a-b' or 'a-b/s'. Raises ValueError when malformed."""
    step = 1
    if "/" in atom:
        bounds, step_text = atom.split("/", 1)
        if "/" in step_text:
            raise ValueError(f"Too many steps in {atom!r}")
        step = int(step_text)
    else:
        bounds = atom

    start, end = _split(bounds, "-")
    if step <= 0 or start > end:
        return range(0)
    return range(start, end + 1, step)


def _split(text: str, separator: str) -> tuple[int, int]:
    """Split 'x<sep>y' into two integers. Raises ValueError otherwise."""
    parts = text.split(separator)
    if len(parts) != 2:
        raise ValueError(f"Expected exactly one {separator!r} in {text!r}")
    return int(parts[0]), int(parts[1])


def _bounded(values, constraint: FieldConstraint) -> set[int]:
    return {v for v in values if constraint.minimum <= v <= constraint.maximum}


def _iso_weekday(weekday: int) -> int:
    """Cron weekday (0 or 7 = Sunday) -> ISO weekday (Monday=1, Sunday=7)."""
    return 7 if weekday in (0, 7) else weekday


def _nth_weekday_of_month(
    weekday: int,
    nth: int,
    constraint: FieldConstraint,
    reference: datetime,
) -> int | None:
    """Day of month of the nth `weekday` in the reference month, if it exists."""
    if not constraint.minimum <= weekday <= constraint.maximum or nth < 1:
        return None

    first_weekday, days_in_month = calendar.monthrange(reference.year, reference.month)
    # calendar.monthrange gives Monday=0
    offset = (_iso_weekday(weekday) - (first_weekday + 1)) % 7
    day = 1 + offset + 7 * (nth - 1)
    if day > days_in_month:
        return None
    return day


def _last_day_atom(
    field: str,
    atom: str,
    constraint: FieldConstraint,
    reference: datetime,
) -> int | None:
    """Resolve 'L' (day_of_month) or 'dL' (day_of_week) to a day of month."""
    first_weekday, days_in_month = calendar.monthrange(reference.year, reference.month)

    if field == "day_of_month":
        return days_in_month if atom == "L" else None

    if field == "day_of_week" and atom.endswith("L") and atom.count("L") == 1:
        weekday = int(atom[:-1])
        if not constraint.minimum <= weekday <= constraint.maximum:
            return None
        last_weekday = (first_weekday + days_in_month - 1) % 7 + 1
        return days_in_month - (last_weekday - _iso_weekday(weekday)) % 7

    return None
