"""
Conversation and Session Models

Two different things are called a "session" in this system:

- ConversationSession: the in-progress state of one guided dialog
  (which flow, which step, what has been collected so far).
- BotSessionInfo: a read-only snapshot of one user's live messaging
  session, as reported by the registry.

Inbound chat events (TextMessage, PhotoMessage) are defined here too so the
router, registry and transport agree on one shape.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# GUIDED DIALOGS
# =============================================================================

class FlowKind(str, Enum):
    """The guided dialogs the bot can run."""
    CREATE_EXPENSE = "create_expense"
    CREATE_INCOME = "create_income"
    CREATE_PROJECT = "create_project"
    CLOSE_PROJECT = "close_project"
    OPEN_PROJECT = "open_project"
    PROJECT_SELECTION = "project_selection"  # assigning a receipt to a project


class ConversationSession(BaseModel):
    """
    State of one in-progress guided dialog.

    CRITICAL: step_index only ever increases within a flow, and only after
    the input for the current step validated. The store enforces this.
    """

    user_id: str
    flow_kind: FlowKind
    step_index: int = Field(
        default=0,
        ge=0,
        description="Index of the step whose input is awaited"
    )
    collected_fields: dict[str, Any] = Field(
        default_factory=dict,
        description="Validated values plus data memoized when the flow started"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# BOT SESSIONS
# =============================================================================

class BotStatus(str, Enum):
    """Lifecycle of a user's messaging session."""
    STARTING = "starting"
    ACTIVE = "active"
    RESTARTING = "restarting"
    INACTIVE = "inactive"  # gave up after repeated failures; needs explicit start


class BotSessionInfo(BaseModel):
    """Snapshot of a single bot session."""

    user_id: str
    status: BotStatus
    generation: int = Field(
        default=0,
        ge=0,
        description="Increments each time the transport handle is replaced"
    )
    last_activity_at: datetime
    pending_events: int = Field(
        default=0,
        ge=0,
        description="Inbound events queued but not yet processed"
    )


class RegistryStats(BaseModel):
    """Registry-wide statistics."""

    total_sessions: int = Field(default=0, ge=0)
    active_sessions: int = Field(default=0, ge=0)
    sessions: list[BotSessionInfo] = Field(default_factory=list)


# =============================================================================
# INBOUND EVENTS
# =============================================================================

class TextMessage(BaseModel):
    """A plain text message (commands included)."""

    user_id: str
    text: str
    chat_id: Optional[int] = None
    received_at: datetime = Field(default_factory=datetime.utcnow)


class PhotoMessage(BaseModel):
    """
    A photo message.

    The image itself is not downloaded until the router has accepted the
    photo; `fetch_image` downloads it on demand.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: str
    file_id: str
    fetch_image: Callable[[], Awaitable[bytes]] = Field(exclude=True)
    media_group_id: Optional[str] = Field(
        default=None,
        description="Set when the photo was sent as part of an album"
    )
    caption: Optional[str] = None
    chat_id: Optional[int] = None
    received_at: datetime = Field(default_factory=datetime.utcnow)


InboundEvent = TextMessage | PhotoMessage
