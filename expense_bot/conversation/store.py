"""
Conversation Store

In-memory registry of in-progress guided dialogs, at most one per user.

Pure bookkeeping: no I/O, no awaits. Every method runs to completion
without yielding, so single-writer-per-user access needs no lock.

CRITICAL: step_index never moves backwards. `advance` rejects a lower
index so a bug in a flow definition surfaces immediately instead of
silently re-asking a question that was already answered.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from expense_bot.models.conversation import ConversationSession, FlowKind


logger = structlog.get_logger(__name__)


class ConversationError(Exception):
    """Base exception for conversation bookkeeping."""
    pass


class AlreadyInConversationError(ConversationError):
    """A dialog is already in progress for this user."""

    def __init__(self, user_id: str, flow_kind: FlowKind):
        self.user_id = user_id
        self.flow_kind = flow_kind
        super().__init__(f"User {user_id} is already in {flow_kind.value}")


class NoActiveConversationError(ConversationError):
    """No dialog is in progress for this user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No active conversation for user {user_id}")


class ConversationStore:
    """
    Holds one ConversationSession per user.

    Sessions idle for longer than `idle_timeout` expire lazily: the next
    lookup after the deadline finds nothing. Expired sessions are kept
    aside until `drain_expired` hands them to whoever reports them.
    """

    def __init__(
        self,
        idle_timeout: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._sessions: dict[str, ConversationSession] = {}
        self._expired: list[ConversationSession] = []
        self._idle_timeout = idle_timeout
        self._clock = clock

    def get(self, user_id: str) -> Optional[ConversationSession]:
        """Return the active session, or None (expired sessions are dropped)."""
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if self._clock() - session.updated_at > self._idle_timeout:
            logger.info(
                "conversation_expired",
                user_id=user_id,
                flow_kind=session.flow_kind.value,
                step_index=session.step_index,
            )
            del self._sessions[user_id]
            self._expired.append(session)
            return None
        return session

    def start(
        self,
        user_id: str,
        flow_kind: FlowKind,
        initial_data: Optional[dict[str, Any]] = None,
        replace: bool = False,
    ) -> ConversationSession:
        """
        Begin a dialog at step 0.

        Raises:
            AlreadyInConversationError: If one is in progress and replace is False
        """
        existing = self.get(user_id)
        if existing is not None and not replace:
            raise AlreadyInConversationError(user_id, existing.flow_kind)

        now = self._clock()
        session = ConversationSession(
            user_id=user_id,
            flow_kind=flow_kind,
            step_index=0,
            collected_fields=dict(initial_data or {}),
            created_at=now,
            updated_at=now,
        )
        self._sessions[user_id] = session
        return session

    def advance(self, user_id: str, step_index: int, merged_data: dict[str, Any]) -> ConversationSession:
        """
        Move the dialog to `step_index` and merge newly collected fields.

        Raises:
            NoActiveConversationError: If there is no dialog for this user
            ValueError: If step_index would move backwards
        """
        session = self.get(user_id)
        if session is None:
            raise NoActiveConversationError(user_id)
        if step_index < session.step_index:
            raise ValueError(
                f"step_index cannot decrease ({session.step_index} -> {step_index})"
            )

        updated = session.model_copy(update={
            "step_index": step_index,
            "collected_fields": {**session.collected_fields, **merged_data},
            "updated_at": self._clock(),
        })
        self._sessions[user_id] = updated
        return updated

    def end(self, user_id: str) -> None:
        """Remove the dialog. Idempotent."""
        self._sessions.pop(user_id, None)

    def active_count(self) -> int:
        return len(self._sessions)

    def drain_expired(self) -> list[ConversationSession]:
        """Return and forget the sessions dropped as expired since the last call."""
        expired, self._expired = self._expired, []
        return expired
