"""Services package."""

from expense_bot.services.errors import (
    CollaboratorError,
    ErrorKind,
    ExtractionError,
    PersistenceError,
    with_timeout,
)
from expense_bot.services.extraction import (
    GeminiReceiptExtractor,
    ReceiptExtractorInterface,
)
from expense_bot.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    FinanceStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStore,
    InMemoryFinanceStore,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # Errors
    "CollaboratorError",
    "ErrorKind",
    "ExtractionError",
    "PersistenceError",
    "with_timeout",
    # Extraction services
    "GeminiReceiptExtractor",
    "ReceiptExtractorInterface",
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "FinanceStoreInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsFinanceStore",
    "InMemoryFinanceStore",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
]
