"""Tests for expression parsing and instant matching."""

from datetime import datetime, timedelta, timezone

import pytest

from scheduler.cron import (
    FIELD_NAMES,
    AbsoluteInstant,
    CronExpressionError,
    CronTab,
    InvalidInstantError,
    matches,
    parse,
)
from scheduler.fields import CONSTRAINTS


def at(year=2021, month=1, day=1, hour=0, minute=0, second=0, ms=0) -> datetime:
    return datetime(year, month, day, hour, minute, second, ms * 1000, tzinfo=timezone.utc)


# 2021-01-01 was a Friday, 2021-01-03 a Sunday
NEW_YEAR = at()
SUNDAY = at(day=3)
ONE_ONE_ONE = at(hour=1, minute=1, second=1, ms=1)
TIMESTAMP = str(int(NEW_YEAR.timestamp()))


class TestMatching:
    """Expression vs. instant matching, including malformed input."""

    @pytest.mark.parametrize(
        "expression,instant,expected",
        [
            ("* * * * * * *", ONE_ONE_ONE, True),
            ("*    *    *    *    *    *    *", ONE_ONE_ONE, True),
            ("*\t*\t*\t*    *    *    *", ONE_ONE_ONE, True),
            ("1200 * * * * * *", ONE_ONE_ONE, False),
            ("-10 * * * * * *", ONE_ONE_ONE, False),
            ("- * * * * * *", ONE_ONE_ONE, False),
            ("* * * * * * 8", ONE_ONE_ONE, False),
            ("* * * * * * 1,2,3,5", ONE_ONE_ONE, True),
            # missing leading fields are exactly 0 (ms widened to 0-9)
            ("* * * * * *", ONE_ONE_ONE, True),
            ("* * * * *", ONE_ONE_ONE, False),
            ("* * * * *", at(hour=1, minute=1, second=0, ms=1), True),
            ("* * * * * * * * * *", ONE_ONE_ONE, False),
            # 10ms resolution
            ("*/2 * * * * * *", at(hour=1, minute=1, ms=1), True),
            ("*/100 * * * * * *", at(hour=1, minute=1, ms=10), False),
            ("*/100 * * * * * *", at(hour=1, minute=1, ms=101), True),
            # invalid characters and steps
            ("! * * * * * *", ONE_ONE_ONE, False),
            ("0,1-A * * * * * *", ONE_ONE_ONE, False),
            ("*/0 * * * * * *", ONE_ONE_ONE, False),
            ("*/-100 * * * * * *", ONE_ONE_ONE, False),
            ("*/10/10 * * * * * *", ONE_ONE_ONE, False),
        ],
    )
    def test_crontab(self, expression, instant, expected):
        assert matches(expression, instant) is expected

    @pytest.mark.parametrize(
        "expression,instant,expected",
        [
            ("@yearly", NEW_YEAR, True),
            ("@yearly", at(ms=10), False),
            ("@monthly", NEW_YEAR, True),
            ("@monthly", at(ms=10), False),
            ("@weekly", SUNDAY, True),
            ("@weekly", at(day=3, ms=10), False),
            ("@daily", SUNDAY, True),
            ("@daily", at(day=3, ms=10), False),
            ("@hourly", SUNDAY, True),
            ("@hourly", at(day=3, hour=1), True),
            ("@hourly", at(day=3, ms=10), False),
            ("@hourly", at(day=3, hour=1, ms=10), False),
        ],
    )
    def test_aliases(self, expression, instant, expected):
        assert matches(expression, instant) is expected

    @pytest.mark.parametrize(
        "instant,expected",
        [
            (NEW_YEAR, True),
            (at(ms=5), True),
            (at(ms=9), True),
            (at(ms=10), False),
            (NEW_YEAR - timedelta(milliseconds=9), True),
            (NEW_YEAR - timedelta(milliseconds=10), False),
            (at(year=2022), False),
        ],
    )
    def test_unix_timestamp(self, instant, expected):
        """A bare timestamp matches within +/-9ms of that instant."""
        assert matches(TIMESTAMP, instant) is expected

    def test_unix_timestamp_naive_instant_is_utc(self):
        assert matches(TIMESTAMP, datetime(2021, 1, 1, 0, 0, 0, 4000)) is True

    @pytest.mark.parametrize(
        "expression",
        ["", "   ", "abc", "@never", "* * * * * * * *", "99999999999999999999"],
    )
    def test_unrecognizable_never_raises(self, expression):
        assert matches(expression, ONE_ONE_ONE) is False

    @pytest.mark.parametrize("instant", [None, "2021-01-01T00:00:00Z", 1609459200])
    def test_invalid_instant(self, instant):
        """Anything but a datetime is a non-match."""
        assert matches("* * * * * * *", instant) is False

    @pytest.mark.parametrize("expression", ["* * * * * * 0", "* * * * * * 7", "* * * * * * SUN"])
    def test_sunday_either_convention(self, expression):
        assert matches(expression, SUNDAY) is True

    def test_weekday_names(self):
        assert matches("0 0 0 * * * MON-FRI", NEW_YEAR) is True
        assert matches("0 0 0 * * * SAT,SUN", NEW_YEAR) is False

    def test_month_names(self):
        assert matches("0 0 0 0 1 JAN *", NEW_YEAR) is True
        assert matches("0 0 0 0 1 FEB *", NEW_YEAR) is False

    def test_last_day_of_month(self):
        assert matches("0 0 0 0 L * *", at(day=31)) is True
        assert matches("0 0 0 0 L * *", at(day=30)) is False

    def test_other_timezone_uses_wall_clock(self):
        """Fields are compared against the instant's own wall-clock values."""
        tz = timezone(timedelta(hours=-5))
        instant = datetime(2021, 1, 1, 9, 0, 0, tzinfo=tz)
        assert matches("0 0 0 9 * * *", instant) is True


class TestRoundTrip:
    """A fully numeric expression matches its own instant and nothing nearby."""

    EXPRESSION = "500 30 15 10 20 6 0"
    # 2021-06-20 was a Sunday
    INSTANT = at(month=6, day=20, hour=10, minute=15, second=30, ms=500)

    def test_exact_instant(self):
        assert matches(self.EXPRESSION, self.INSTANT) is True

    @pytest.mark.parametrize("ms", [-9, 9])
    def test_within_tolerance(self, ms):
        assert matches(self.EXPRESSION, self.INSTANT + timedelta(milliseconds=ms)) is True

    @pytest.mark.parametrize(
        "shift",
        [
            timedelta(milliseconds=10),
            timedelta(milliseconds=-10),
            timedelta(seconds=1),
            timedelta(minutes=1),
            timedelta(hours=1),
            timedelta(days=1),
            timedelta(days=7),
            timedelta(days=-1),
        ],
    )
    def test_shifted(self, shift):
        assert matches(self.EXPRESSION, self.INSTANT + shift) is False

    def test_other_month(self):
        assert matches(self.EXPRESSION, self.INSTANT.replace(month=7)) is False


class TestParse:
    """The parse() result variants and its errors."""

    def test_all_wildcards_are_full_ranges(self):
        parsed = parse("* * * * * * *", ONE_ONE_ONE)
        assert parsed.kind == "crontab"
        for name in FIELD_NAMES:
            constraint = CONSTRAINTS[name]
            assert getattr(parsed, name) == frozenset(
                range(constraint.minimum, constraint.maximum + 1)
            )

    def test_pads_missing_fields_with_zero(self):
        parsed = parse("* * * * *", ONE_ONE_ONE)
        assert isinstance(parsed, CronTab)
        assert parsed.millisecond == frozenset(range(0, 10))
        assert parsed.second == {0}
        assert parsed.minute == frozenset(range(60))

    def test_alias_same_as_expansion(self):
        assert parse("@daily", ONE_ONE_ONE) == parse("0 0 0 0 * * *", ONE_ONE_ONE)

    def test_alias_surrounding_whitespace(self):
        assert parse("  @hourly ", ONE_ONE_ONE) == parse("0 0 0 * * * *", ONE_ONE_ONE)

    def test_unix_timestamp(self):
        parsed = parse(TIMESTAMP)
        assert isinstance(parsed, AbsoluteInstant)
        assert parsed.kind == "absolute"
        assert parsed.at == NEW_YEAR

    def test_defaults_reference_to_now(self):
        parsed = parse("* * * * * * *")
        assert parsed.is_satisfiable

    def test_reference_anchors_month(self):
        """Month-relative atoms are resolved in the reference instant's month."""
        february = at(month=2, day=10)
        assert parse("0 0 0 0 L * *", february).day_of_month == {28}

    @pytest.mark.parametrize("expression", ["", "  \t ", "* * * * * * * *", "abc", "12ab", "@unknown"])
    def test_unrecognizable(self, expression):
        with pytest.raises(CronExpressionError):
            parse(expression, ONE_ONE_ONE)

    def test_timestamp_out_of_range(self):
        with pytest.raises(CronExpressionError):
            parse("9" * 30, ONE_ONE_ONE)

    @pytest.mark.parametrize("token", ["-62135596800", "253402300799"])
    def test_timestamp_at_datetime_limits_never_raises(self, token):
        """Timestamps at the edges of the datetime range are plain non-matches."""
        assert matches(token, ONE_ONE_ONE) is False

    def test_not_a_string(self):
        with pytest.raises(CronExpressionError):
            parse(None, ONE_ONE_ONE)

    @pytest.mark.parametrize("reference", ["2021-01-01", 0, object()])
    def test_invalid_reference(self, reference):
        with pytest.raises(InvalidInstantError):
            parse("* * * * * * *", reference)

    def test_errors_are_value_errors(self):
        assert issubclass(CronExpressionError, ValueError)
        assert issubclass(InvalidInstantError, ValueError)

    def test_empty_fields_reported(self):
        parsed = parse("*/0 * * * * * 8", ONE_ONE_ONE)
        assert parsed.empty_fields() == ["millisecond", "day_of_week"]
        assert parsed.is_satisfiable is False

    def test_empty_field_never_matches(self):
        """An expression with an empty field doesn't match any instant."""
        expression = "0-10/0 * * * * * *"
        for instant in (NEW_YEAR, ONE_ONE_ONE, SUNDAY, at(ms=5)):
            assert matches(expression, instant) is False

    def test_result_is_frozen(self):
        parsed = parse("* * * * * * *", ONE_ONE_ONE)
        with pytest.raises(Exception):
            parsed.second = frozenset()
