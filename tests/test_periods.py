"""
Tests for period resolution.

All dates are resolved against a fixed "today" so results don't depend on
when the suite runs.
"""

from datetime import date

import pytest

from expense_bot.queries import (
    parse_month,
    parse_month_range,
    period_range,
    resolve_summary_period,
)


WEDNESDAY = date(2025, 8, 20)


class TestNamedPeriods:
    """Tests for day, yesterday, week and month."""

    @pytest.mark.parametrize("name", ["day", "today", " TODAY "])
    def test_day(self, name):
        """Test that day and today are the same single-day range."""
        period = period_range(name, WEDNESDAY)

        assert (period.start, period.end) == (WEDNESDAY, WEDNESDAY)

    def test_yesterday(self):
        """Test yesterday's single-day range."""
        period = period_range("yesterday", WEDNESDAY)

        assert period.start == period.end == date(2025, 8, 19)

    def test_week_starts_on_sunday(self):
        """Test that the week runs from the last Sunday through today."""
        period = period_range("week", WEDNESDAY)

        assert period.start == date(2025, 8, 17)
        assert period.end == WEDNESDAY
        assert period.label == "This Week"

    def test_week_on_sunday_is_one_day(self):
        """Test that on a Sunday the week is just that day."""
        sunday = date(2025, 8, 17)

        period = period_range("week", sunday)

        assert period.start == period.end == sunday

    def test_week_on_saturday(self):
        """Test the longest possible week so far."""
        period = period_range("week", date(2025, 8, 23))

        assert period.start == date(2025, 8, 17)

    def test_month(self):
        """Test month-to-date."""
        period = period_range("month", WEDNESDAY)

        assert period.start == date(2025, 8, 1)
        assert period.end == WEDNESDAY

    def test_unknown_name(self):
        """Test that unknown names resolve to nothing."""
        assert period_range("fortnight", WEDNESDAY) is None


class TestMonthRanges:
    """Tests for month range parsing."""

    @pytest.mark.parametrize("text,expected", [
        ("jan", 1), ("January", 1), ("sept", 9), ("12", 12), (" 3 ", 3),
        ("13", None), ("0", None), ("smarch", None), ("", None),
    ])
    def test_parse_month(self, text, expected):
        """Test names, abbreviations and numbers."""
        assert parse_month(text) == expected

    def test_named_range(self):
        """Test jan-mar spans whole months of the current year."""
        period = parse_month_range("jan-mar", WEDNESDAY)

        assert period.start == date(2025, 1, 1)
        assert period.end == date(2025, 3, 31)
        assert period.label == "January - March 2025"

    def test_numeric_range(self):
        """Test 1-6 as month numbers."""
        period = parse_month_range("1-6", WEDNESDAY)

        assert (period.start, period.end) == (date(2025, 1, 1), date(2025, 6, 30))

    def test_february_end_in_leap_year(self):
        """Test that the range ends on the real last day of the month."""
        period = parse_month_range("feb", date(2024, 5, 1))

        assert period.end == date(2024, 2, 29)
        assert period.label == "February 2024"

    @pytest.mark.parametrize("text", ["mar-jan", "12-1", "jan-", "jan-feb-mar", "foo-bar"])
    def test_invalid_ranges(self, text):
        """Test reversed, incomplete and unknown ranges."""
        assert parse_month_range(text, WEDNESDAY) is None


class TestSummaryPeriod:
    """Tests for /summary argument resolution."""

    def test_named_period_first(self):
        """Test that named periods win over month parsing."""
        assert resolve_summary_period("week", WEDNESDAY).label == "This Week"

    def test_falls_back_to_months(self):
        """Test month ranges when the word is not a named period."""
        assert resolve_summary_period("aug", WEDNESDAY).label == "August 2025"

    def test_nothing_matches(self):
        """Test that garbage resolves to None."""
        assert resolve_summary_period("last quarter", WEDNESDAY) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
