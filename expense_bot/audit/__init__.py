"""Audit logging package."""

from expense_bot.audit.logger import AuditLogger, ErrorDeduplicator, create_correlation_id

__all__ = ["AuditLogger", "ErrorDeduplicator", "create_correlation_id"]
