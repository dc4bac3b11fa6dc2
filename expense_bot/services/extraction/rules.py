"""
Receipt Normalisation Rules

Deterministic fixes applied to whatever the vision model returns:
date sanity checks and the overall receipt category.

DESIGN DECISION: We use simple keyword matching rather than asking the
model a second time because:
1. More transparent to the user
2. Easier to debug
3. No extra latency or cost per receipt
"""

from collections import Counter
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


# Item categories the extraction prompt allows
RECEIPT_CATEGORIES = [
    "groceries",
    "dining",
    "gas",
    "pharmacy",
    "retail",
    "services",
    "entertainment",
    "other",
]

MAX_RECEIPT_AGE = timedelta(days=730)

# Checked in order; first match wins
STORE_KEYWORDS: list[tuple[str, list[str]]] = [
    ("dining", [
        "restaurant", "cafe", "food", "mcd", "kfc", "pizza",
        "bistro", "diner", "burger", "starbucks",
    ]),
    ("groceries", [
        "grocery", "mart", "supermarket", "tesco", "giant",
        "aeon", "lotus", "costco", "kroger",
    ]),
    ("gas", [
        "petrol", "shell", "petronas", "gas", "caltex", "fuel",
    ]),
    ("pharmacy", [
        "pharmacy", "guardian", "watsons", "drugstore", "cvs",
    ]),
    ("entertainment", [
        "cinema", "movie", "gsc", "tgv", "entertainment", "arcade",
        "bowling", "karaoke", "ktv", "theme park", "zoo", "museum",
    ]),
]


def safe_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Safely convert a value to Decimal."""
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        return default


def safe_date(value: Any) -> Optional[date]:
    """Safely convert a value to date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        for fmt in ["%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d"]:
            try:
                return datetime.strptime(value.strip(), fmt).date()
            except ValueError:
                continue
    return None


def fix_receipt_date(value: Any, today: Optional[date] = None) -> date:
    """
    Return a usable purchase date.

    Falls back to today when the date is missing, unparseable, in the
    future, or more than two years old.
    """
    today = today or date.today()
    parsed = safe_date(value)
    if parsed is None:
        return today
    if parsed > today or parsed < today - MAX_RECEIPT_AGE:
        return today
    return parsed


def categorize_receipt(store_name: str, item_categories: list[str]) -> str:
    """
    Decide the overall category of a receipt.

    Uses the most common item category (unknown item categories count as
    "other"); a receipt without items is categorised by its store name.
    """
    normalised = [
        c.lower() if c and c.lower() in RECEIPT_CATEGORIES else "other"
        for c in item_categories
    ]
    if normalised:
        # Counter keeps first-seen order for ties
        return Counter(normalised).most_common(1)[0][0]

    store_lower = (store_name or "").lower()
    for category, keywords in STORE_KEYWORDS:
        if any(kw in store_lower for kw in keywords):
            return category

    return "other"
