"""
Expense Bot - Source Package

Multi-tenant Telegram bot core for a personal expense tracker. Each user
owns an isolated bot that accepts commands and receipt photos and records
expenses, income and projects.

DESIGN PRINCIPLES:
1. One live session per user, never shared
2. Guided dialogs are explicit state machines
3. Collaborators are untrusted: their failures never corrupt dialog state
4. A commit is attempted at most once per dialog
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Bot Team"
