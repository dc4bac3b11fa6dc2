"""
Audit Logger

DESIGN DECISION: Every significant action in the bot core is logged.
This provides:
1. Complete traceability per tenant
2. Debugging capability across restarts
3. A record of every commit attempt

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the bot if logging fails)
- Deduplicates repeated errors so a misbehaving client cannot flood the log
"""

import hashlib
import threading
import time
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog

from expense_bot.models.audit import AuditEvent, AuditEventBuilder
from expense_bot.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class ErrorDeduplicator:
    """
    Decides whether an error occurrence should be recorded.

    Two occurrences with the same signature (user, error type, first 100
    characters of the message) inside `window_seconds` are recorded once.
    The cache is pruned when it grows past `max_entries`.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._window = window_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def signature(user_id: Optional[str], error_type: str, message: str) -> str:
        digest = hashlib.sha1(f"{error_type}:{message[:100]}".encode("utf-8")).hexdigest()
        return f"{user_id or '-'}:{digest}"

    def should_record(self, user_id: Optional[str], error_type: str, message: str) -> bool:
        key = self.signature(user_id, error_type, message)
        now = self._clock()
        with self._lock:
            last = self._seen.get(key)
            if last is not None and now - last < self._window:
                return False
            self._seen[key] = now
            if len(self._seen) > self._max_entries:
                self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        cutoff = now - self._window * 2
        for key in [k for k, ts in self._seen.items() if ts < cutoff]:
            del self._seen[key]

    def __len__(self) -> int:
        return len(self._seen)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Google Sheets (for persistence), when a storage backend is given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        dedup_window_seconds: float = 60.0,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            dedup_window_seconds: Identical errors from one user inside
                    this window are recorded once.
        """
        self._storage = storage
        self._logger = structlog.get_logger("expense_bot.audit")
        self._dedup = ErrorDeduplicator(window_seconds=dedup_window_seconds)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_session_started(self, user_id: str, generation: int) -> None:
        await self.log(AuditEventBuilder.session_started(user_id, generation))

    async def log_session_stopped(self, user_id: str, reason: str) -> None:
        await self.log(AuditEventBuilder.session_stopped(user_id, reason))

    async def log_session_restarted(self, user_id: str, generation: int, attempt: int) -> None:
        await self.log(AuditEventBuilder.session_restarted(user_id, generation, attempt))

    async def log_session_restart_failed(self, user_id: str, attempt: int, error_message: str) -> None:
        await self.log(AuditEventBuilder.session_restart_failed(user_id, attempt, error_message))

    async def log_session_inactive(self, user_id: str, failures: int) -> None:
        await self.log(AuditEventBuilder.session_inactive(user_id, failures))

    async def log_conversation_started(self, user_id: str, flow_kind: str) -> None:
        await self.log(AuditEventBuilder.conversation_started(user_id, flow_kind))

    async def log_conversation_cancelled(self, user_id: str, flow_kind: str, step_index: int) -> None:
        await self.log(AuditEventBuilder.conversation_cancelled(user_id, flow_kind, step_index))

    async def log_conversation_expired(self, user_id: str, flow_kind: str) -> None:
        await self.log(AuditEventBuilder.conversation_expired(user_id, flow_kind))

    async def log_receipt_extracted(
        self,
        user_id: str,
        store_name: str,
        total: str,
        items_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a successful receipt extraction."""
        await self.log(AuditEventBuilder.receipt_extracted(
            user_id=user_id,
            store_name=store_name,
            total=total,
            items_count=items_count,
            correlation_id=correlation_id,
        ))

    async def log_extraction_failed(
        self,
        user_id: str,
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed receipt extraction (deduplicated)."""
        if not self._dedup.should_record(user_id, f"extraction:{error_kind}", error_message):
            return
        await self.log(AuditEventBuilder.extraction_failed(
            user_id=user_id,
            error_kind=error_kind,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_transaction_committed(
        self,
        user_id: str,
        transaction_id: UUID,
        transaction_type: str,
        description: str,
        amount: str,
        project_id: Optional[UUID] = None,
    ) -> None:
        """Log a stored transaction."""
        await self.log(AuditEventBuilder.transaction_committed(
            user_id=user_id,
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            description=description,
            amount=amount,
            project_id=project_id,
        ))

    async def log_project_created(self, user_id: str, project_id: UUID, name: str) -> None:
        await self.log(AuditEventBuilder.project_created(user_id, project_id, name))

    async def log_project_status_changed(self, user_id: str, project_id: UUID, status: str) -> None:
        await self.log(AuditEventBuilder.project_status_changed(user_id, project_id, status))

    async def log_commit_failed(
        self,
        user_id: str,
        flow_kind: str,
        error_kind: str,
        error_message: str,
    ) -> None:
        """Log a failed commit. Never deduplicated: each is a lost entry."""
        await self.log(AuditEventBuilder.commit_failed(
            user_id=user_id,
            flow_kind=flow_kind,
            error_kind=error_kind,
            error_message=error_message,
        ))

    async def log_rate_limited(self, user_id: str, action_class: str) -> None:
        """Log a rejected request (deduplicated)."""
        if not self._dedup.should_record(user_id, "rate_limited", action_class):
            return
        await self.log(AuditEventBuilder.rate_limited(user_id, action_class))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Log an error (deduplicated).

        Returns False if the occurrence was suppressed as a duplicate.
        """
        if not self._dedup.should_record(user_id, error_type, error_message):
            return False
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            user_id=user_id,
            details=details,
            correlation_id=correlation_id,
        ))
        return True

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error (deduplicated)."""
        if not self._dedup.should_record(user_id, f"service:{service}", error_message):
            return
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a receipt photo).
    Pass it through all subsequent operations.
    """
    return uuid4()
