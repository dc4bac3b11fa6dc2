"""
Query Package

Deterministic period resolution and aggregation for summary commands.
"""

from expense_bot.queries.periods import (
    parse_month,
    parse_month_range,
    period_range,
    resolve_summary_period,
)
from expense_bot.queries.summary import (
    CategoryTotal,
    PeriodSummary,
    ProjectTotal,
    StoreTotal,
    SummaryBuilder,
    format_expense_report,
    format_financial_summary,
    format_monthly_stats,
    format_project_lines,
)

__all__ = [
    # Periods
    "parse_month",
    "parse_month_range",
    "period_range",
    "resolve_summary_period",
    # Aggregation
    "CategoryTotal",
    "PeriodSummary",
    "ProjectTotal",
    "StoreTotal",
    "SummaryBuilder",
    # Formatting
    "format_expense_report",
    "format_financial_summary",
    "format_monthly_stats",
    "format_project_lines",
]
