"""
Guided Dialogs Package

State machine, session store and step definitions for multi-step dialogs
(create expense, create income, projects, receipt project selection).
"""

from expense_bot.conversation.engine import ConversationEngine
from expense_bot.conversation.flows import (
    FLOWS,
    CommitAction,
    FlowSpec,
    ProjectOption,
    StepSpec,
    build_project_options,
)
from expense_bot.conversation.store import (
    AlreadyInConversationError,
    ConversationError,
    ConversationStore,
    NoActiveConversationError,
)
from expense_bot.conversation.validators import InvalidStepInput

__all__ = [
    # Engine
    "ConversationEngine",
    # Flow definitions
    "FLOWS",
    "CommitAction",
    "FlowSpec",
    "ProjectOption",
    "StepSpec",
    "build_project_options",
    # Store and errors
    "AlreadyInConversationError",
    "ConversationError",
    "ConversationStore",
    "InvalidStepInput",
    "NoActiveConversationError",
]
