"""
Period Resolution

Converts period words ("today", "week", "jan-mar", "1-6") into inclusive
date ranges.

This is DETERMINISTIC - no LLM involvement. `today` is always passed in so
results can be tested against a fixed calendar.

Weeks start on Sunday. Month ranges always refer to the current year, and
a range whose start month is after its end month is rejected.
"""

import calendar
from datetime import date, timedelta
from typing import Optional

from expense_bot.models.finance import DateRange


MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}


def parse_month(text: str) -> Optional[int]:
    """Month number 1-12 from a name, an abbreviation or a number."""
    value = text.strip().lower()
    if value in MONTHS:
        return MONTHS[value]
    if value.isdigit():
        number = int(value)
        if 1 <= number <= 12:
            return number
    return None


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def parse_month_range(text: str, today: Optional[date] = None) -> Optional[DateRange]:
    """
    Resolve "jan-aug", "january-march", "1-6" or a single month.

    Returns:
        DateRange in the current year, or None when the text is not a
        valid month or month range
    """
    today = today or date.today()
    value = text.strip().lower()
    if not value:
        return None

    parts = value.split("-")
    if len(parts) == 1:
        start_month = end_month = parse_month(parts[0])
    elif len(parts) == 2:
        start_month = parse_month(parts[0])
        end_month = parse_month(parts[1])
    else:
        return None

    if start_month is None or end_month is None or start_month > end_month:
        return None

    start_name = calendar.month_name[start_month]
    end_name = calendar.month_name[end_month]
    if start_month == end_month:
        label = f"{start_name} {today.year}"
    else:
        label = f"{start_name} - {end_name} {today.year}"

    return DateRange(
        start=date(today.year, start_month, 1),
        end=month_end(today.year, end_month),
        label=label,
    )


def period_range(name: str, today: Optional[date] = None) -> Optional[DateRange]:
    """
    Resolve a named period.

    Supported: day/today, yesterday, week (Sunday to today), month
    (first of the month to today). Returns None for anything else.
    """
    today = today or date.today()
    key = name.strip().lower()

    if key in ("day", "today"):
        return DateRange(start=today, end=today, label="Today")

    if key == "yesterday":
        yesterday = today - timedelta(days=1)
        return DateRange(start=yesterday, end=yesterday, label="Yesterday")

    if key == "week":
        # date.weekday() is Monday=0; shift so Sunday starts the week
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return DateRange(start=start, end=today, label="This Week")

    if key == "month":
        return DateRange(start=today.replace(day=1), end=today, label="This Month")

    return None


def resolve_summary_period(text: str, today: Optional[date] = None) -> Optional[DateRange]:
    """Named period first, then month range; None means show usage."""
    return period_range(text, today) or parse_month_range(text, today)
