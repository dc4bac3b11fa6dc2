"""
Audit Models for Expense Bot

Every significant action in the bot core is logged for audit purposes:
session lifecycle changes, commits, receipt extraction, rate limiting
and errors.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Bot session lifecycle
    SESSION_STARTED = "session_started"
    SESSION_STOPPED = "session_stopped"
    SESSION_RESTARTED = "session_restarted"
    SESSION_RESTART_FAILED = "session_restart_failed"
    SESSION_INACTIVE = "session_inactive"

    # Guided dialogs
    CONVERSATION_STARTED = "conversation_started"
    CONVERSATION_CANCELLED = "conversation_cancelled"
    CONVERSATION_EXPIRED = "conversation_expired"

    # Receipts
    RECEIPT_EXTRACTED = "receipt_extracted"
    EXTRACTION_FAILED = "extraction_failed"

    # Persistence
    TRANSACTION_COMMITTED = "transaction_committed"
    PROJECT_CREATED = "project_created"
    PROJECT_STATUS_CHANGED = "project_status_changed"
    COMMIT_FAILED = "commit_failed"

    # Intake
    RATE_LIMITED = "rate_limited"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which tenant and entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Tenant the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'project', 'session')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one receipt intake)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.session_started(user_id, generation)
        event = AuditEventBuilder.transaction_committed(user_id, txn_id, ...)
    """

    @staticmethod
    def session_started(user_id: str, generation: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_STARTED,
            user_id=user_id,
            entity_type="session",
            description=f"Bot session started (generation {generation})",
            details={"generation": generation},
        )

    @staticmethod
    def session_stopped(user_id: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_STOPPED,
            user_id=user_id,
            entity_type="session",
            description=f"Bot session stopped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def session_restarted(user_id: str, generation: int, attempt: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_RESTARTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="session",
            description=f"Bot session restarted after transport error (attempt {attempt})",
            details={"generation": generation, "attempt": attempt},
        )

    @staticmethod
    def session_restart_failed(user_id: str, attempt: int, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_RESTART_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="session",
            description=f"Bot session restart attempt {attempt} failed",
            error_message=error_message,
            details={"attempt": attempt},
        )

    @staticmethod
    def session_inactive(user_id: str, failures: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_INACTIVE,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="session",
            description=f"Bot session marked inactive after {failures} failed restarts",
            details={"failures": failures},
        )

    @staticmethod
    def conversation_started(user_id: str, flow_kind: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONVERSATION_STARTED,
            user_id=user_id,
            entity_type="conversation",
            description=f"Guided dialog started: {flow_kind}",
            details={"flow_kind": flow_kind},
            is_user_action=True,
        )

    @staticmethod
    def conversation_cancelled(user_id: str, flow_kind: str, step_index: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONVERSATION_CANCELLED,
            user_id=user_id,
            entity_type="conversation",
            description=f"Guided dialog cancelled: {flow_kind} at step {step_index}",
            details={"flow_kind": flow_kind, "step_index": step_index},
            is_user_action=True,
        )

    @staticmethod
    def conversation_expired(user_id: str, flow_kind: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONVERSATION_EXPIRED,
            user_id=user_id,
            entity_type="conversation",
            description=f"Guided dialog expired: {flow_kind}",
            details={"flow_kind": flow_kind},
        )

    @staticmethod
    def receipt_extracted(
        user_id: str,
        store_name: str,
        total: str,
        items_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_EXTRACTED,
            user_id=user_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt extracted: {store_name} - {total}",
            details={
                "store_name": store_name,
                "total": total,
                "items_count": items_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def extraction_failed(
        user_id: str,
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt extraction failed ({error_kind})",
            error_code=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def transaction_committed(
        user_id: str,
        transaction_id: UUID,
        transaction_type: str,
        description: str,
        amount: str,
        project_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_COMMITTED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=str(transaction_id),
            description=f"{transaction_type.capitalize()} saved: {description} - {amount}",
            details={
                "type": transaction_type,
                "amount": amount,
                "project_id": str(project_id) if project_id else None,
            },
        )

    @staticmethod
    def project_created(user_id: str, project_id: UUID, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROJECT_CREATED,
            user_id=user_id,
            entity_type="project",
            entity_id=str(project_id),
            description=f"Project created: {name}",
            details={"name": name},
        )

    @staticmethod
    def project_status_changed(user_id: str, project_id: UUID, status: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROJECT_STATUS_CHANGED,
            user_id=user_id,
            entity_type="project",
            entity_id=str(project_id),
            description=f"Project status set to {status}",
            details={"status": status},
        )

    @staticmethod
    def commit_failed(
        user_id: str,
        flow_kind: str,
        error_kind: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMIT_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="conversation",
            description=f"Commit failed for {flow_kind} ({error_kind})",
            error_code=error_kind,
            error_message=error_message,
            details={"flow_kind": flow_kind},
        )

    @staticmethod
    def rate_limited(user_id: str, action_class: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_LIMITED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            description=f"Rate limit hit for {action_class}",
            details={"action_class": action_class},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
