"""
Summary Builder

Executes the read-only summary commands (/today, /week, /summary, /stats,
/list) against the finance store.

CRITICAL: All numbers in a reply are computed here, from stored
transactions. Nothing is estimated or generated.

Aggregation is done in Decimal and grouped deterministically:
categories and stores by descending total, then by name.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from expense_bot.messages import money
from expense_bot.models.finance import (
    DateRange,
    Project,
    ProjectStatus,
    Transaction,
    TransactionType,
)
from expense_bot.services.errors import PersistenceError, with_timeout
from expense_bot.services.storage import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    FinanceStoreInterface,
)


logger = structlog.get_logger(__name__)

TOP_STORES = 5
TOP_CATEGORIES = 3

CATEGORY_EMOJI = {
    name.lower(): emoji
    for name, emoji in DEFAULT_EXPENSE_CATEGORIES + DEFAULT_INCOME_CATEGORIES
}


# =============================================================================
# RESULT MODELS
# =============================================================================

class CategoryTotal(BaseModel):
    """Sum of one category within a period."""

    category: str
    amount: Decimal
    count: int = 0
    percentage: int = Field(
        default=0,
        description="Share of the period total, rounded to a whole percent"
    )


class StoreTotal(BaseModel):
    """Sum spent at one store within a period."""

    store_name: str
    amount: Decimal
    count: int = 0


class ProjectTotal(BaseModel):
    """Expense total of one project; project_id None means general."""

    project_id: Optional[UUID] = None
    name: str
    currency: str
    amount: Decimal
    count: int = 0


class PeriodSummary(BaseModel):
    """Aggregated view of one user's transactions over a date range."""

    period: DateRange
    total_expenses: Decimal = Decimal("0")
    total_income: Decimal = Decimal("0")
    expense_count: int = 0
    income_count: int = 0
    expense_breakdown: list[CategoryTotal] = Field(default_factory=list)
    income_breakdown: list[CategoryTotal] = Field(default_factory=list)
    top_stores: list[StoreTotal] = Field(default_factory=list)
    by_project: list[ProjectTotal] = Field(default_factory=list)

    @property
    def net_balance(self) -> Decimal:
        return self.total_income - self.total_expenses

    @property
    def transaction_count(self) -> int:
        return self.expense_count + self.income_count

    @property
    def top_category(self) -> Optional[CategoryTotal]:
        return self.expense_breakdown[0] if self.expense_breakdown else None


# =============================================================================
# BUILDER
# =============================================================================

class SummaryBuilder:
    """
    Builds PeriodSummary objects from the finance store.

    Every store call is bounded by `timeout`; failures surface as
    PersistenceError so the router answers them like any other
    collaborator error.
    """

    def __init__(
        self,
        finance_store: FinanceStoreInterface,
        timeout: float = 30.0,
        default_currency: str = "$",
    ):
        self._finance = finance_store
        self._timeout = timeout
        self._default_currency = default_currency

    async def summarize(self, user_id: str, period: DateRange) -> PeriodSummary:
        """Aggregate a user's expenses and income over `period`."""
        transactions = await with_timeout(
            self._finance.list_transactions(user_id, period.start, period.end),
            self._timeout,
            PersistenceError,
        )
        transactions = [t for t in transactions if period.contains(t.record.transaction_date)]

        projects: dict[UUID, Project] = {}
        if any(t.project_id for t in transactions):
            listed = await with_timeout(
                self._finance.list_projects(user_id),
                self._timeout,
                PersistenceError,
            )
            projects = {p.id: p for p in listed}

        summary = self.aggregate(transactions, period, projects, self._default_currency)
        logger.info(
            "summary_built",
            user_id=user_id,
            period=period.label,
            transactions=summary.transaction_count,
        )
        return summary

    async def list_projects(self, user_id: str) -> list[Project]:
        return await with_timeout(
            self._finance.list_projects(user_id),
            self._timeout,
            PersistenceError,
        )

    @staticmethod
    def aggregate(
        transactions: list[Transaction],
        period: DateRange,
        projects: Optional[dict[UUID, Project]] = None,
        default_currency: str = "$",
    ) -> PeriodSummary:
        """Pure aggregation over already-fetched transactions."""
        projects = projects or {}
        expenses = [t for t in transactions if t.record.type == TransactionType.EXPENSE]
        income = [t for t in transactions if t.record.type == TransactionType.INCOME]

        total_expenses = sum((t.record.amount for t in expenses), Decimal("0"))
        total_income = sum((t.record.amount for t in income), Decimal("0"))

        return PeriodSummary(
            period=period,
            total_expenses=total_expenses,
            total_income=total_income,
            expense_count=len(expenses),
            income_count=len(income),
            expense_breakdown=_group_by_category(expenses, total_expenses),
            income_breakdown=_group_by_category(income, total_income),
            top_stores=_top_stores(expenses),
            by_project=_group_by_project(expenses, projects, default_currency),
        )


def _group_by_category(transactions: list[Transaction], total: Decimal) -> list[CategoryTotal]:
    amounts: dict[str, Decimal] = defaultdict(Decimal)
    counts: dict[str, int] = defaultdict(int)
    for t in transactions:
        amounts[t.record.category] += t.record.amount
        counts[t.record.category] += 1

    result = [
        CategoryTotal(
            category=name,
            amount=amount,
            count=counts[name],
            percentage=int((amount * 100 / total).quantize(Decimal("1"))) if total else 0,
        )
        for name, amount in amounts.items()
    ]
    result.sort(key=lambda c: (-c.amount, c.category.lower()))
    return result


def _top_stores(transactions: list[Transaction], limit: int = TOP_STORES) -> list[StoreTotal]:
    amounts: dict[str, Decimal] = defaultdict(Decimal)
    counts: dict[str, int] = defaultdict(int)
    names: dict[str, str] = {}
    for t in transactions:
        key = t.record.description.strip().lower()
        names.setdefault(key, t.record.description.strip())
        amounts[key] += t.record.amount
        counts[key] += 1

    result = [
        StoreTotal(store_name=names[key], amount=amount, count=counts[key])
        for key, amount in amounts.items()
    ]
    result.sort(key=lambda s: (-s.amount, s.store_name.lower()))
    return result[:limit]


def _group_by_project(
    transactions: list[Transaction],
    projects: dict[UUID, Project],
    default_currency: str,
) -> list[ProjectTotal]:
    amounts: dict[Optional[UUID], Decimal] = defaultdict(Decimal)
    counts: dict[Optional[UUID], int] = defaultdict(int)
    for t in transactions:
        # A project deleted after the fact counts as general
        key = t.project_id if t.project_id in projects else None
        amounts[key] += t.record.amount
        counts[key] += 1

    result = []
    for key, amount in amounts.items():
        if key is None:
            name, currency = "General expenses", default_currency
        else:
            name, currency = projects[key].name, projects[key].currency
        result.append(ProjectTotal(
            project_id=key,
            name=name,
            currency=currency,
            amount=amount,
            count=counts[key],
        ))
    # General first, then projects by name
    result.sort(key=lambda p: (p.project_id is not None, p.name.lower()))
    return result


# =============================================================================
# FORMATTERS
# =============================================================================

def _category_label(name: str) -> str:
    emoji = CATEGORY_EMOJI.get(name.lower(), "📦")
    return f"{emoji} {name[:1].upper()}{name[1:]}"


def format_expense_report(summary: PeriodSummary, title: str, currency: str = "$") -> str:
    """Quick expense total for /today, /yesterday, /week and /month."""
    if summary.expense_count == 0:
        return f"📊 *{title}*\n\n💰 Total: {money(Decimal('0'), currency)}\n📋 No expenses recorded"

    lines = [
        f"📊 *{title}*",
        "",
        f"💰 Total: {money(summary.total_expenses, currency)}",
        f"📋 Transactions: {summary.expense_count}",
    ]

    if summary.expense_breakdown:
        lines += ["", "🏷️ *By Category:*"]
        lines += [
            f"{_category_label(c.category)}: {money(c.amount, currency)} ({c.percentage}%)"
            for c in summary.expense_breakdown
        ]

    if len(summary.by_project) > 1 or any(p.project_id for p in summary.by_project):
        lines += ["", "📁 *By Project:*"]
        lines += [
            f"• {p.name}: {money(p.amount, p.currency)} ({p.count})"
            for p in summary.by_project
        ]

    if summary.top_stores:
        lines += ["", "🏪 *Top Stores:*"]
        lines += [
            f"{index}. {s.store_name}: {money(s.amount, currency)} ({s.count}x)"
            for index, s in enumerate(summary.top_stores, start=1)
        ]

    return "\n".join(lines)


def format_financial_summary(summary: PeriodSummary, currency: str = "$") -> str:
    """Income versus expenses for /summary."""
    label = summary.period.label
    if summary.transaction_count == 0:
        return f"📊 No transactions found for {label}."

    def breakdown(items: list[CategoryTotal], sign: str) -> str:
        if not items:
            return "None"
        return ", ".join(f"{c.category} ({sign}{money(c.amount, currency)})" for c in items)

    net = summary.net_balance
    net_emoji, net_label, net_sign = ("💚", "Net Gain", "+") if net >= 0 else ("❤️", "Net Loss", "-")

    return (
        f"📊 *{label} Financial Summary*\n\n"
        f"💰 *Income: +{money(summary.total_income, currency)}*\n"
        f"📈 Transactions: {summary.income_count}\n"
        f"📋 Categories: {breakdown(summary.income_breakdown, '+')}\n\n"
        f"💸 *Expenses: -{money(summary.total_expenses, currency)}*\n"
        f"📉 Transactions: {summary.expense_count}\n"
        f"📋 Categories: {breakdown(summary.expense_breakdown, '-')}\n\n"
        f"{net_emoji} *{net_label}: {net_sign}{money(abs(net), currency)}*\n\n"
        "💡 Use `/summary week` or `/summary month` for different periods."
    )


def format_monthly_stats(summary: PeriodSummary, currency: str = "$") -> str:
    """Monthly overview for /stats."""
    if summary.expense_count == 0:
        return f"📊 *Monthly Overview*\n💰 Total: {money(Decimal('0'), currency)}\n📋 No expenses this month"

    lines = [
        "📊 *Monthly Overview*",
        f"💰 Total: {money(summary.total_expenses, currency)}",
        f"📋 Transactions: {summary.expense_count}",
    ]
    top = summary.top_category
    if top is not None:
        lines.append(f"🏆 Top Category: {_category_label(top.category)} ({money(top.amount, currency)})")

    if len(summary.expense_breakdown) > 1:
        lines += ["", "📈 *Categories:*"]
        lines += [
            f"{_category_label(c.category)}: {money(c.amount, currency)} ({c.percentage}%)"
            for c in summary.expense_breakdown[:TOP_CATEGORIES]
        ]
    return "\n".join(lines)


def format_project_lines(projects: list[Project]) -> tuple[list[str], list[str]]:
    """Split projects into (open, closed) display lines for /list."""
    open_lines, closed_lines = [], []
    for p in projects:
        line = f"*{p.name}* ({p.currency}) - created {p.created_at.date().isoformat()}"
        if p.status == ProjectStatus.OPEN:
            open_lines.append(line)
        else:
            closed_lines.append(line)
    return open_lines, closed_lines
