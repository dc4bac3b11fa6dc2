"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the durable backend; the in-memory store serves tests and
local development.
"""

from expense_bot.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    FinanceStoreInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from expense_bot.services.storage.memory import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    InMemoryFinanceStore,
    default_categories,
)
from expense_bot.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "FinanceStoreInterface",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "DEFAULT_EXPENSE_CATEGORIES",
    "DEFAULT_INCOME_CATEGORIES",
    "InMemoryFinanceStore",
    "default_categories",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsFinanceStore",
]
