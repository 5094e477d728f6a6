"""Cron expression parser and matcher with millisecond resolution.

Supports 7-field expressions, with missing leading fields defaulting to 0:

    [millisecond] [second] minute hour day_of_month month day_of_week

Examples:
    "*/100 * * * * * *"   -> every 100ms (each anchor accepts +/-9ms)
    "0 30 * * * * *"      -> at second 30 of every minute
    "0 9 * * MON-FRI"     -> weekdays at 9am (ms and second default to 0)
    "0 0 0 0 * * 0#2"     -> midnight on the day number of the 2nd Sunday
    "@daily"              -> same as "0 0 0 0 * * *"
    "1609459200"          -> once, at that unix timestamp (+/-9ms)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from scheduler.aliases import resolve_expression_alias
from scheduler.fields import CONSTRAINTS, build_field_values

logger = logging.getLogger(__name__)

FIELD_NAMES = (
    "millisecond",
    "second",
    "minute",
    "hour",
    "day_of_month",
    "month",
    "day_of_week",
)

ABSOLUTE_TOLERANCE = timedelta(milliseconds=9)

_UNIX_SECONDS_RE = re.compile(r"-?[0-9]+")


class CronExpressionError(ValueError):
    """The expression can't be recognized as a crontab, alias or timestamp."""


class InvalidInstantError(ValueError):
    """A reference instant was supplied but isn't a usable datetime."""


class CronTab(BaseModel):
    """A parsed recurring expression: one acceptance set per field."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["crontab"] = "crontab"
    millisecond: frozenset[int]
    second: frozenset[int]
    minute: frozenset[int]
    hour: frozenset[int]
    day_of_month: frozenset[int]
    month: frozenset[int]
    day_of_week: frozenset[int]

    def empty_fields(self) -> list[str]:
        """Names of fields that accept nothing (the expression can never match)."""
        return [name for name in FIELD_NAMES if not getattr(self, name)]

    @property
    def is_satisfiable(self) -> bool:
        return not self.empty_fields()


class AbsoluteInstant(BaseModel):
    """A parsed single-token expression: one point in time."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["absolute"] = "absolute"
    at: datetime


ParsedExpression = Annotated[Union[CronTab, AbsoluteInstant], Field(discriminator="kind")]


def parse(expression: str, reference: datetime | None = None) -> ParsedExpression:
    """Parse an expression into a CronTab or an AbsoluteInstant.

    Args:
        expression: Crontab (5-7 fields), @alias, or unix seconds.
        reference: Instant anchoring month-relative atoms ('#', 'L').
            Defaults to the current UTC time.

    Raises:
        CronExpressionError: The expression is empty, has more than 7
            fields, or is a single token that isn't a unix timestamp.
        InvalidInstantError: `reference` was given but isn't a datetime.
    """
    if reference is None:
        reference = datetime.now(timezone.utc)
    elif not isinstance(reference, datetime):
        raise InvalidInstantError(f"Invalid reference instant: {reference!r}")

    if not isinstance(expression, str):
        raise CronExpressionError(f"Cron expression must be a string: {expression!r}")

    alias = resolve_expression_alias(expression)
    if alias is not None:
        return parse(alias, reference)

    tokens = expression.split()
    if not tokens:
        raise CronExpressionError("Empty cron expression")

    if len(tokens) == 1:
        return AbsoluteInstant(at=_from_unix_seconds(tokens[0]))

    if len(tokens) > len(FIELD_NAMES):
        raise CronExpressionError(
            f"Invalid cron expression (at most {len(FIELD_NAMES)} fields): {expression!r}"
        )

    # Missing leading fields mean "exactly 0", not "any"
    tokens = ["0"] * (len(FIELD_NAMES) - len(tokens)) + tokens

    return CronTab(**{
        name: build_field_values(name, token, CONSTRAINTS[name], reference)
        for name, token in zip(FIELD_NAMES, tokens)
    })


def matches(expression: str, instant: datetime) -> bool:
    """Check if an instant matches an expression.

    Never raises: unrecognizable expressions and invalid instants are
    simply non-matching.
    """
    if not isinstance(instant, datetime):
        return False

    try:
        parsed = parse(expression, instant)
    except CronExpressionError as exc:
        logger.debug("Unrecognizable cron expression %r: %s", expression, exc)
        return False

    if parsed.kind == "absolute":
        # Naive instants are read as UTC
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return abs(instant - parsed.at) <= ABSOLUTE_TOLERANCE

    return (
        instant.microsecond // 1000 in parsed.millisecond
        and instant.second in parsed.second
        and instant.minute in parsed.minute
        and instant.hour in parsed.hour
        and instant.day in parsed.day_of_month
        and instant.month in parsed.month
        and instant.isoweekday() in parsed.day_of_week
    )


def _from_unix_seconds(token: str) -> datetime:
    if not _UNIX_SECONDS_RE.fullmatch(token):
        raise CronExpressionError(f"Not a cron expression or unix timestamp: {token!r}")
    try:
        return datetime.fromtimestamp(int(token), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise CronExpressionError(f"Unix timestamp out of range: {token!r}") from exc
