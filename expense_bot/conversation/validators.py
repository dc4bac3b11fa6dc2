"""
Step Validators

Each guided-dialog step validates its raw text with one of these.
A validator takes (text, collected_fields) and returns the parsed value,
or raises InvalidStepInput with a reason that is shown to the user above
the step's prompt.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from expense_bot.models.finance import MAX_AMOUNT, quantize_amount


Validator = Callable[[str, dict[str, Any]], Any]


class InvalidStepInput(ValueError):
    """User input for a step did not validate."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def validate_date(text: str, fields: dict[str, Any]) -> date:
    """Strict YYYY-MM-DD that names a real calendar day."""
    value = text.strip()
    # strptime alone accepts "2025-1-5"
    if len(value) != 10 or value[4] != "-" or value[7] != "-":
        raise InvalidStepInput("❌ Invalid date format. Please use YYYY-MM-DD format.")
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise InvalidStepInput("❌ Invalid date. Please enter a real calendar date (YYYY-MM-DD).")


def validate_amount(text: str, fields: dict[str, Any]) -> Decimal:
    """Positive number below the maximum, rounded to cents."""
    value = text.strip().replace(",", "")
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise InvalidStepInput("❌ Invalid amount. Please enter a positive number.")
    if not amount.is_finite() or amount <= 0 or amount >= MAX_AMOUNT:
        raise InvalidStepInput("❌ Invalid amount. Please enter a positive number.")
    amount = quantize_amount(amount)
    # Rounding can reach the bound: 999998.999 -> 999999.00
    if amount <= 0 or amount >= MAX_AMOUNT:
        raise InvalidStepInput("❌ Invalid amount. Please enter a positive number.")
    return amount


def non_empty(label: str, max_length: int = 255) -> Validator:
    """Trimmed text of 1..max_length characters."""
    def validate(text: str, fields: dict[str, Any]) -> str:
        value = text.strip()
        if not value:
            raise InvalidStepInput(f"❌ {label} cannot be empty.")
        if len(value) > max_length:
            raise InvalidStepInput(f"❌ {label} is too long (max {max_length} characters).")
        return value
    return validate


def selection(options_field: str) -> Validator:
    """1-based index into the option list memoized under `options_field`."""
    def validate(text: str, fields: dict[str, Any]) -> Any:
        options = fields.get(options_field) or []
        try:
            index = int(text.strip())
        except ValueError:
            index = 0
        if index < 1 or index > len(options):
            raise InvalidStepInput(
                f"❌ Invalid selection. Please choose a number from 1 to {len(options)}."
            )
        return options[index - 1]
    return validate
