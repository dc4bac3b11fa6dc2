"""
Stateless Command Handlers

Each handler takes (user_id, args) and returns the reply text. Commands
that start a guided dialog delegate to the ConversationEngine; summary
commands read through the SummaryBuilder. None of them keeps state
between calls.
"""

from datetime import date
from typing import Awaitable, Callable, Optional

from expense_bot import messages
from expense_bot.conversation import ConversationEngine
from expense_bot.queries import (
    SummaryBuilder,
    format_expense_report,
    format_financial_summary,
    format_monthly_stats,
    format_project_lines,
    period_range,
    resolve_summary_period,
)


CommandHandler = Callable[[str, list[str]], Awaitable[str]]


class CommandHandlers:
    """The command table used by the router when no dialog is active."""

    def __init__(
        self,
        engine: ConversationEngine,
        summaries: SummaryBuilder,
        default_currency: str = "$",
        today: Callable[[], date] = date.today,
    ):
        self._engine = engine
        self._summaries = summaries
        self._currency = default_currency
        self._today = today

    def table(self) -> dict[str, CommandHandler]:
        """Command name (without slash) to handler."""
        return {
            "start": self.start,
            "help": self.help,
            "stats": self.stats,
            "today": self.today,
            "yesterday": self.yesterday,
            "week": self.week,
            "month": self.month,
            "summary": self.summary,
            "list": self.list_projects,
            "create": self.create,
            "income": self.income,
            "new": self.new_project,
            "close": self.close_project,
            "open": self.open_project,
            "cancel": self.cancel,
        }

    # -------------------------------------------------------------------------
    # General
    # -------------------------------------------------------------------------

    async def start(self, user_id: str, args: list[str]) -> str:
        return messages.WELCOME

    async def help(self, user_id: str, args: list[str]) -> str:
        return messages.HELP

    async def cancel(self, user_id: str, args: list[str]) -> str:
        # Reached only when no dialog is active
        return messages.NOTHING_TO_CANCEL

    # -------------------------------------------------------------------------
    # Guided dialogs
    # -------------------------------------------------------------------------

    async def create(self, user_id: str, args: list[str]) -> str:
        return await self._engine.start_expense_flow(user_id)

    async def income(self, user_id: str, args: list[str]) -> str:
        return await self._engine.start_income_flow(user_id)

    async def new_project(self, user_id: str, args: list[str]) -> str:
        return await self._engine.start_project_flow(user_id)

    async def close_project(self, user_id: str, args: list[str]) -> str:
        return await self._engine.start_close_project_flow(user_id)

    async def open_project(self, user_id: str, args: list[str]) -> str:
        return await self._engine.start_open_project_flow(user_id)

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    async def today(self, user_id: str, args: list[str]) -> str:
        return await self._expense_report(user_id, "today", "Today's Expenses")

    async def yesterday(self, user_id: str, args: list[str]) -> str:
        return await self._expense_report(user_id, "yesterday", "Yesterday's Expenses")

    async def week(self, user_id: str, args: list[str]) -> str:
        return await self._expense_report(user_id, "week", "This Week's Expenses")

    async def month(self, user_id: str, args: list[str]) -> str:
        return await self._expense_report(user_id, "month", "This Month's Expenses")

    async def stats(self, user_id: str, args: list[str]) -> str:
        period = period_range("month", self._today())
        summary = await self._summaries.summarize(user_id, period)
        return format_monthly_stats(summary, self._currency)

    async def summary(self, user_id: str, args: list[str]) -> str:
        """`/summary <period>`: day, week, month, or a month range."""
        period = resolve_summary_period(" ".join(args), self._today()) if args else None
        if period is None:
            return messages.SUMMARY_USAGE
        result = await self._summaries.summarize(user_id, period)
        return format_financial_summary(result, self._currency)

    async def list_projects(self, user_id: str, args: list[str]) -> str:
        projects = await self._summaries.list_projects(user_id)
        if not projects:
            return messages.NO_PROJECTS
        open_lines, closed_lines = format_project_lines(projects)
        return messages.project_list(open_lines, closed_lines)

    async def _expense_report(self, user_id: str, period_name: str, title: str) -> str:
        period = period_range(period_name, self._today())
        summary = await self._summaries.summarize(user_id, period)
        return format_expense_report(summary, title, self._currency)


def parse_command(text: str) -> Optional[tuple[str, list[str]]]:
    """
    Split "/cmd@BotName arg1 arg2" into ("cmd", ["arg1", "arg2"]).

    Returns None for text that is not a command.
    """
    parts = text.strip().split()
    if not parts or not parts[0].startswith("/") or len(parts[0]) < 2:
        return None
    name = parts[0][1:].split("@", 1)[0].lower()
    if not name:
        return None
    return name, parts[1:]
