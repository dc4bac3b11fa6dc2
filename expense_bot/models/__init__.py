"""
Data Models Package

This package contains all Pydantic models used by the bot core.
All data crossing a component boundary must conform to these schemas.
"""

from expense_bot.models.finance import (
    MAX_AMOUNT,
    Category,
    DateRange,
    Project,
    ProjectStatus,
    ReceiptItem,
    StructuredReceipt,
    Transaction,
    TransactionRecord,
    TransactionSource,
    TransactionType,
    quantize_amount,
)
from expense_bot.models.conversation import (
    BotSessionInfo,
    BotStatus,
    ConversationSession,
    FlowKind,
    InboundEvent,
    PhotoMessage,
    RegistryStats,
    TextMessage,
)
from expense_bot.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Finance models
    "MAX_AMOUNT",
    "Category",
    "DateRange",
    "Project",
    "ProjectStatus",
    "ReceiptItem",
    "StructuredReceipt",
    "Transaction",
    "TransactionRecord",
    "TransactionSource",
    "TransactionType",
    "quantize_amount",
    # Conversation and session models
    "BotSessionInfo",
    "BotStatus",
    "ConversationSession",
    "FlowKind",
    "InboundEvent",
    "PhotoMessage",
    "RegistryStats",
    "TextMessage",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
