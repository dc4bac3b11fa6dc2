"""Receipt extraction services."""

from expense_bot.services.extraction.interface import ReceiptExtractorInterface
from expense_bot.services.extraction.gemini_service import GeminiReceiptExtractor
from expense_bot.services.extraction.rules import (
    RECEIPT_CATEGORIES,
    categorize_receipt,
    fix_receipt_date,
)

__all__ = [
    "GeminiReceiptExtractor",
    "ReceiptExtractorInterface",
    "RECEIPT_CATEGORIES",
    "categorize_receipt",
    "fix_receipt_date",
]
