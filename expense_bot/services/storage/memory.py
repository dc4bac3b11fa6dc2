"""
In-Memory Finance Store

Keeps projects, categories and transactions in process memory.
Used for tests and local development (STORAGE_BACKEND=memory).
Nothing survives a restart.
"""

import asyncio
from datetime import date
from typing import Optional
from uuid import UUID

from expense_bot.models.finance import (
    Category,
    Project,
    ProjectStatus,
    Transaction,
    TransactionRecord,
    TransactionType,
)
from expense_bot.services.storage.interface import (
    DuplicateError,
    FinanceStoreInterface,
    NotFoundError,
)


# (name, emoji) in display order
DEFAULT_EXPENSE_CATEGORIES = [
    ("groceries", "🛒"),
    ("dining", "🍽️"),
    ("gas", "⛽"),
    ("pharmacy", "💊"),
    ("retail", "🛍️"),
    ("services", "🔧"),
    ("entertainment", "🎬"),
    ("other", "📦"),
]

DEFAULT_INCOME_CATEGORIES = [
    ("Salary", "💼"),
    ("Freelance", "💻"),
    ("Investment Returns", "📈"),
    ("Cash Rebate", "💵"),
    ("Side Income", "🪙"),
    ("Other Income", "💰"),
]


def default_categories(category_type: TransactionType) -> list[Category]:
    """Build the categories every new user starts with."""
    source = (
        DEFAULT_EXPENSE_CATEGORIES
        if category_type == TransactionType.EXPENSE
        else DEFAULT_INCOME_CATEGORIES
    )
    return [
        Category(
            id=f"{category_type.value}-{index}",
            name=name,
            type=category_type,
            emoji=emoji,
        )
        for index, (name, emoji) in enumerate(source, start=1)
    ]


class InMemoryFinanceStore(FinanceStoreInterface):
    """
    Dict-backed implementation of the finance store.

    Every user lazily receives the default category set on first access.
    """

    def __init__(self):
        self._projects: dict[str, dict[UUID, Project]] = {}
        self._categories: dict[str, list[Category]] = {}
        self._transactions: dict[str, list[Transaction]] = {}
        self._lock = asyncio.Lock()

    async def list_projects(
        self,
        user_id: str,
        status: Optional[ProjectStatus] = None,
    ) -> list[Project]:
        projects = self._projects.get(user_id, {}).values()
        if status is not None:
            projects = [p for p in projects if p.status == status]
        return sorted(projects, key=lambda p: p.name.lower())

    async def create_project(
        self,
        user_id: str,
        name: str,
        currency: str,
    ) -> Project:
        async with self._lock:
            user_projects = self._projects.setdefault(user_id, {})
            if any(p.name.lower() == name.strip().lower() for p in user_projects.values()):
                raise DuplicateError(f"Project already exists: {name}")
            project = Project(user_id=user_id, name=name, currency=currency)
            user_projects[project.id] = project
            return project

    async def set_project_status(
        self,
        user_id: str,
        project_id: UUID,
        status: ProjectStatus,
    ) -> None:
        async with self._lock:
            project = self._projects.get(user_id, {}).get(project_id)
            if project is None:
                raise NotFoundError(f"Project not found: {project_id}")
            self._projects[user_id][project_id] = project.model_copy(
                update={"status": status}
            )

    async def list_categories(
        self,
        user_id: str,
        category_type: TransactionType,
    ) -> list[Category]:
        categories = self._categories.get(user_id)
        if categories is None:
            categories = (
                default_categories(TransactionType.EXPENSE)
                + default_categories(TransactionType.INCOME)
            )
            self._categories[user_id] = categories
        return [c for c in categories if c.type == category_type]

    async def persist_transaction(
        self,
        user_id: str,
        project_id: Optional[UUID],
        record: TransactionRecord,
    ) -> UUID:
        async with self._lock:
            if project_id is not None and project_id not in self._projects.get(user_id, {}):
                raise NotFoundError(f"Project not found: {project_id}")
            transaction = Transaction(
                user_id=user_id,
                project_id=project_id,
                record=record,
            )
            self._transactions.setdefault(user_id, []).append(transaction)
            return transaction.id

    async def list_transactions(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        results = []
        for transaction in self._transactions.get(user_id, []):
            day = transaction.record.transaction_date
            if date_from and day < date_from:
                continue
            if date_to and day > date_to:
                continue
            if transaction_type and transaction.record.type != transaction_type:
                continue
            results.append(transaction)
        return sorted(results, key=lambda t: t.record.transaction_date)
