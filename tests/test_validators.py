"""
Tests for guided dialog step validators.
"""

from datetime import date
from decimal import Decimal

import pytest

from expense_bot.conversation import InvalidStepInput
from expense_bot.conversation.validators import (
    non_empty,
    selection,
    validate_amount,
    validate_date,
)


class TestDateValidator:
    """Tests for YYYY-MM-DD parsing."""

    def test_valid_date(self):
        """Test a well-formed real date."""
        assert validate_date("2025-01-15", {}) == date(2025, 1, 15)

    def test_surrounding_whitespace_is_ignored(self):
        """Test that leading and trailing spaces are stripped."""
        assert validate_date("  2025-08-24 ", {}) == date(2025, 8, 24)

    @pytest.mark.parametrize("text", ["2025-1-15", "15-01-2025", "2025/01/15", "yesterday", ""])
    def test_rejects_wrong_format(self, text):
        """Test that only zero-padded YYYY-MM-DD is accepted."""
        with pytest.raises(InvalidStepInput, match="YYYY-MM-DD"):
            validate_date(text, {})

    def test_rejects_impossible_date(self):
        """Test that a well-formed but non-existent day is rejected."""
        with pytest.raises(InvalidStepInput):
            validate_date("2025-02-30", {})


class TestAmountValidator:
    """Tests for money amounts."""

    def test_rounds_to_cents(self):
        """Test that amounts are stored with two decimals."""
        assert validate_amount("25.999", {}) == Decimal("26.00")
        assert validate_amount("100", {}) == Decimal("100.00")

    def test_thousands_separator(self):
        """Test that commas are accepted as thousands separators."""
        assert validate_amount("1,250.50", {}) == Decimal("1250.50")

    @pytest.mark.parametrize("text", ["0", "-5", "abc", "", "999999", "1e10", "NaN", "0.001", "999998.999", "999998.995"])
    def test_rejects_invalid_amounts(self, text):
        """Test non-positive, non-numeric and out-of-range amounts."""
        with pytest.raises(InvalidStepInput):
            validate_amount(text, {})

    def test_just_below_maximum(self):
        """Test the largest accepted amount."""
        assert validate_amount("999998.99", {}) == Decimal("999998.99")


class TestTextValidators:
    """Tests for non-empty text and option selection."""

    def test_non_empty_strips(self):
        """Test that text is trimmed."""
        assert non_empty("Store name")("  Walmart ", {}) == "Walmart"

    def test_non_empty_rejects_blank(self):
        """Test that blank input is refused with the field label."""
        with pytest.raises(InvalidStepInput, match="Store name cannot be empty"):
            non_empty("Store name")("   ", {})

    def test_non_empty_max_length(self):
        """Test the length bound."""
        validate = non_empty("Currency", max_length=20)
        assert validate("x" * 20, {}) == "x" * 20
        with pytest.raises(InvalidStepInput, match="too long"):
            validate("x" * 21, {})

    def test_selection_is_one_based(self):
        """Test that '1' picks the first option."""
        fields = {"options": ["a", "b", "c"]}
        assert selection("options")("1", fields) == "a"
        assert selection("options")(" 3 ", fields) == "c"

    @pytest.mark.parametrize("text", ["0", "4", "two", "", "-1"])
    def test_selection_out_of_range(self, text):
        """Test that anything outside 1..n is refused."""
        with pytest.raises(InvalidStepInput, match="from 1 to 3"):
            selection("options")(text, {"options": ["a", "b", "c"]})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
