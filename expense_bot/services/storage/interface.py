"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the conversation engine decoupled from storage implementation

The interface is intentionally narrow: only the operations guided dialogs
and summary commands need. Every method is scoped to one user; no call
can read or write another tenant's data.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from expense_bot.models.audit import AuditEvent
from expense_bot.models.finance import (
    Category,
    Project,
    ProjectStatus,
    Transaction,
    TransactionRecord,
    TransactionType,
)
from expense_bot.services.errors import ErrorKind, PersistenceError


class FinanceStoreInterface(ABC):
    """
    Abstract interface for projects, categories and transactions.

    Any storage implementation (Google Sheets, in-memory, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def list_projects(
        self,
        user_id: str,
        status: Optional[ProjectStatus] = None,
    ) -> list[Project]:
        """
        List a user's projects ordered by name.

        Args:
            user_id: Owner of the projects
            status: Only return projects in this status (all if None)

        Returns:
            Matching projects, ordered by name

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    async def list_open_projects(self, user_id: str) -> list[Project]:
        """List the projects a transaction can currently be assigned to."""
        return await self.list_projects(user_id, ProjectStatus.OPEN)

    @abstractmethod
    async def create_project(
        self,
        user_id: str,
        name: str,
        currency: str,
    ) -> Project:
        """
        Create a new open project.

        Args:
            user_id: Owner of the project
            name: Project name (1-255 chars)
            currency: Currency label (1-20 chars)

        Returns:
            The created project

        Raises:
            DuplicateError: If the user already has a project with this name
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def set_project_status(
        self,
        user_id: str,
        project_id: UUID,
        status: ProjectStatus,
    ) -> None:
        """
        Open or close a project.

        Raises:
            NotFoundError: If the project doesn't exist for this user
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_categories(
        self,
        user_id: str,
        category_type: TransactionType,
    ) -> list[Category]:
        """
        List a user's categories of one type, in display order.

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def persist_transaction(
        self,
        user_id: str,
        project_id: Optional[UUID],
        record: TransactionRecord,
    ) -> UUID:
        """
        Store one expense or income entry.

        CRITICAL: Implementations must not retry this call internally.
        A dialog commits at most once; a blind retry after an ambiguous
        failure could record the same expense twice.

        Args:
            user_id: Owner of the transaction
            project_id: Project to assign, or None for a general transaction
            record: The validated transaction payload

        Returns:
            The new transaction's ID

        Raises:
            NotFoundError: If project_id doesn't exist for this user
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """
        List a user's transactions, filtered by an inclusive date range.

        Returns:
            Matching transactions ordered by transaction date
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass


class StorageError(PersistenceError):
    """Base exception for storage operations."""

    def __init__(self, message: str = "", kind: ErrorKind = ErrorKind.UNAVAILABLE):
        super().__init__(kind, message)


class NotFoundError(StorageError):
    """Entity not found in storage."""

    def __init__(self, message: str = ""):
        super().__init__(message, ErrorKind.NOT_FOUND)


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""

    def __init__(self, message: str = ""):
        super().__init__(message, ErrorKind.REJECTED)


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
