"""
Tests for summary aggregation and formatting.
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_bot.models.finance import (
    DateRange,
    Project,
    Transaction,
    TransactionRecord,
    TransactionType,
)
from expense_bot.queries import (
    SummaryBuilder,
    format_expense_report,
    format_financial_summary,
    format_monthly_stats,
    format_project_lines,
)
from expense_bot.services.errors import ErrorKind, PersistenceError
from expense_bot.services.storage import InMemoryFinanceStore


AUGUST = DateRange(start=date(2025, 8, 1), end=date(2025, 8, 31), label="August 2025")


def expense(description: str, category: str, amount: str, project_id=None, day: int = 10) -> Transaction:
    return Transaction(
        user_id="u1",
        project_id=project_id,
        record=TransactionRecord(
            type=TransactionType.EXPENSE,
            transaction_date=date(2025, 8, day),
            description=description,
            category=category,
            amount=Decimal(amount),
        ),
    )


def income(description: str, category: str, amount: str) -> Transaction:
    return Transaction(
        user_id="u1",
        record=TransactionRecord(
            type=TransactionType.INCOME,
            transaction_date=date(2025, 8, 1),
            description=description,
            category=category,
            amount=Decimal(amount),
        ),
    )


class TestAggregate:
    """Tests for the pure aggregation step."""

    def test_totals_are_exact(self):
        """Test Decimal totals with no float drift."""
        transactions = [expense("A", "dining", "0.10") for _ in range(3)]

        summary = SummaryBuilder.aggregate(transactions, AUGUST)

        assert summary.total_expenses == Decimal("0.30")
        assert summary.expense_count == 3

    def test_category_breakdown_sorted_with_percentages(self):
        """Test categories by descending total with rounded shares."""
        summary = SummaryBuilder.aggregate([
            expense("Tesco", "groceries", "30"),
            expense("KFC", "dining", "60"),
            expense("Shell", "gas", "10"),
        ], AUGUST)

        assert [(c.category, c.percentage) for c in summary.expense_breakdown] == [
            ("dining", 60), ("groceries", 30), ("gas", 10),
        ]
        assert summary.top_category.category == "dining"

    def test_top_stores_grouped_case_insensitively(self):
        """Test that store spellings are merged and capped at five."""
        transactions = [
            expense("Walmart", "groceries", "10"),
            expense("walmart ", "groceries", "15"),
        ] + [expense(f"Shop {i}", "retail", str(i)) for i in range(1, 7)]

        summary = SummaryBuilder.aggregate(transactions, AUGUST)

        assert len(summary.top_stores) == 5
        assert summary.top_stores[0].store_name == "Walmart"
        assert summary.top_stores[0].amount == Decimal("25.00")
        assert summary.top_stores[0].count == 2

    def test_projects_after_general(self):
        """Test that general expenses come first, then projects."""
        trip = Project(user_id="u1", name="Trip", currency="JPY")
        summary = SummaryBuilder.aggregate(
            [expense("Lawson", "dining", "12", trip.id), expense("Tesco", "groceries", "5")],
            AUGUST,
            {trip.id: trip},
        )

        assert [(p.name, p.currency) for p in summary.by_project] == [
            ("General expenses", "$"), ("Trip", "JPY"),
        ]

    def test_unknown_project_counts_as_general(self):
        """Test that a transaction for a missing project is general."""
        summary = SummaryBuilder.aggregate([expense("X", "other", "5", uuid4())], AUGUST, {})

        assert summary.by_project[0].project_id is None

    def test_net_balance(self):
        """Test income minus expenses."""
        summary = SummaryBuilder.aggregate(
            [income("Pay", "Salary", "100"), expense("Tesco", "groceries", "140")],
            AUGUST,
        )

        assert summary.net_balance == Decimal("-40.00")
        assert summary.transaction_count == 2


class TestSummaryBuilder:
    """Tests for reading through the finance store."""

    @pytest.mark.asyncio
    async def test_only_period_transactions(self):
        """Test that transactions outside the range are excluded."""
        store = InMemoryFinanceStore()
        for day in (date(2025, 7, 31), date(2025, 8, 1), date(2025, 8, 31), date(2025, 9, 1)):
            await store.persist_transaction("u1", None, TransactionRecord(
                type=TransactionType.EXPENSE,
                transaction_date=day,
                description="Tesco",
                category="groceries",
                amount=Decimal("1"),
            ))

        summary = await SummaryBuilder(store).summarize("u1", AUGUST)

        assert summary.expense_count == 2

    @pytest.mark.asyncio
    async def test_users_are_isolated(self):
        """Test that one user's summary never includes another's data."""
        store = InMemoryFinanceStore()
        await store.persist_transaction("u2", None, TransactionRecord(
            type=TransactionType.EXPENSE,
            transaction_date=date(2025, 8, 5),
            description="Tesco",
            category="groceries",
            amount=Decimal("9"),
        ))

        summary = await SummaryBuilder(store).summarize("u1", AUGUST)

        assert summary.transaction_count == 0

    @pytest.mark.asyncio
    async def test_store_timeout(self, finance_store):
        """Test that a slow store surfaces as a PersistenceError."""
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        finance_store.list_transactions = slow

        with pytest.raises(PersistenceError) as exc_info:
            await SummaryBuilder(finance_store, timeout=0.01).summarize("u1", AUGUST)

        assert exc_info.value.kind == ErrorKind.TIMEOUT


class TestFormatting:
    """Tests for reply text."""

    def test_empty_expense_report(self):
        """Test the no-expenses message."""
        summary = SummaryBuilder.aggregate([], AUGUST)

        text = format_expense_report(summary, "Today's Expenses")

        assert "Today's Expenses" in text
        assert "$0.00" in text
        assert "No expenses recorded" in text

    def test_expense_report_sections(self):
        """Test category and store sections."""
        summary = SummaryBuilder.aggregate([
            expense("Tesco", "groceries", "30"),
            expense("KFC", "dining", "10"),
        ], AUGUST)

        text = format_expense_report(summary, "This Week's Expenses")

        assert "💰 Total: $40.00" in text
        assert "🛒 Groceries: $30.00 (75%)" in text
        assert "1. Tesco: $30.00 (1x)" in text
        assert "By Project" not in text

    def test_financial_summary_loss(self):
        """Test the net loss line."""
        summary = SummaryBuilder.aggregate(
            [income("Pay", "Salary", "100"), expense("Tesco", "groceries", "140")],
            AUGUST,
        )

        text = format_financial_summary(summary, "RM")

        assert "August 2025 Financial Summary" in text
        assert "Income: +RM100.00" in text
        assert "Net Loss: -RM40.00" in text

    def test_financial_summary_empty(self):
        """Test the no-transactions message."""
        text = format_financial_summary(SummaryBuilder.aggregate([], AUGUST))

        assert text == "📊 No transactions found for August 2025."

    def test_monthly_stats_top_three(self):
        """Test the overview lists at most three categories."""
        summary = SummaryBuilder.aggregate([
            expense("A", "groceries", "40"),
            expense("B", "dining", "30"),
            expense("C", "gas", "20"),
            expense("D", "pharmacy", "10"),
        ], AUGUST)

        text = format_monthly_stats(summary)

        assert "🏆 Top Category: 🛒 Groceries ($40.00)" in text
        assert "Pharmacy" not in text

    def test_project_lines(self):
        """Test that projects are split by status."""
        open_project = Project(user_id="u1", name="Trip", currency="JPY")
        closed_project = Project(user_id="u1", name="Old", currency="$", status="closed")

        open_lines, closed_lines = format_project_lines([open_project, closed_project])

        assert len(open_lines) == 1 and "*Trip* (JPY)" in open_lines[0]
        assert len(closed_lines) == 1 and "*Old*" in closed_lines[0]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
