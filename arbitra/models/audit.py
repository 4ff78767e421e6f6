"""
Audit Models for Arbitra

Every transaction created, every message sent, and every verification
outcome is recorded. This provides:
1. Traceability of each transfer from creation to peer acceptance
2. A local record of tampered or malformed messages
3. Debugging information when a peer misbehaves

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Longest excerpt of a caller- or peer-supplied value placed in a description
DESCRIPTION_EXCERPT = 80


def _clip(value: Any) -> str:
    text = str(value)
    if len(text) <= DESCRIPTION_EXCERPT:
        return text
    return text[:DESCRIPTION_EXCERPT - 3] + "..."


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Local transaction lifecycle
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_STORED = "transaction_stored"

    # Outgoing messages
    MESSAGE_SENT = "message_sent"
    MESSAGE_SEND_FAILED = "message_send_failed"

    # Incoming messages
    MESSAGE_VERIFIED = "message_verified"
    INTEGRITY_FAILED = "integrity_failed"
    MESSAGE_PARSE_FAILED = "message_parse_failed"
    UNKNOWN_MESSAGE_TYPE = "unknown_message_type"
    TRANSACTION_RECEIVED = "transaction_received"

    # System events
    STORAGE_ERROR = "storage_error"
    SYSTEM_ERROR = "system_error"


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

    entity_id is a string because the entities we audit are identified by
    message digests or document names rather than UUIDs.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'message', 'document')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Identifier of the entity (digest, document name)"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one submitted transfer)"
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

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging
        and for storage as a JSON record.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(digest, sender, receiver, amount, cid)
        event = AuditEventBuilder.integrity_failed(expected, computed, peer)
    """

    @staticmethod
    def transaction_created(
        digest: str,
        sender: str,
        receiver: str,
        amount: float,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=digest,
            correlation_id=correlation_id,
            description=f"Transaction created: {_clip(sender)} -> {_clip(receiver)} ({_clip(amount)})",
            details={
                "sender": sender,
                "receiver": receiver,
                "amount": amount,
            },
        )

    @staticmethod
    def transaction_stored(
        digest: str,
        document: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_STORED,
            entity_type="document",
            entity_id=document,
            correlation_id=correlation_id,
            description=f"Transaction appended to {_clip(document)}",
            details={"hash": digest},
        )

    @staticmethod
    def message_sent(
        digest: str,
        message_type: str,
        peer: str,
        reply_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGE_SENT,
            entity_type="message",
            entity_id=digest,
            correlation_id=correlation_id,
            description=f"Message sent to {_clip(peer)}",
            details={
                "message_type": message_type,
                "peer": peer,
                "reply_count": reply_count,
            },
        )

    @staticmethod
    def message_send_failed(
        digest: str,
        peer: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGE_SEND_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="message",
            entity_id=digest,
            correlation_id=correlation_id,
            description=f"Could not send message to {_clip(peer)}",
            error_message=error_message,
            details={"peer": peer},
        )

    @staticmethod
    def message_verified(
        digest: str,
        message_type: str,
        origin: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGE_VERIFIED,
            entity_type="message",
            entity_id=digest,
            description=f"Message from {_clip(origin or 'unknown')} verified",
            details={
                "message_type": message_type,
                "from": origin,
            },
        )

    @staticmethod
    def integrity_failed(
        expected_hash: Optional[str],
        computed_hash: Optional[str],
        origin: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTEGRITY_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="message",
            entity_id=expected_hash,
            description=f"Digest mismatch on message from {_clip(origin or 'unknown')}",
            details={
                "expected_hash": expected_hash,
                "computed_hash": computed_hash,
                "from": origin,
            },
        )

    @staticmethod
    def message_parse_failed(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGE_PARSE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="message",
            description="Received bytes are not a valid message",
            error_message=error_message,
        )

    @staticmethod
    def unknown_message_type(
        digest: Optional[str],
        message_type: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNKNOWN_MESSAGE_TYPE,
            entity_type="message",
            entity_id=digest,
            description=f"Message type unknown: {_clip(message_type)}",
            details={"message_type": message_type},
        )

    @staticmethod
    def transaction_received(
        digest: str,
        document: str,
        sender: str,
        amount: float,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECEIVED,
            entity_type="transaction",
            entity_id=digest,
            description=f"Verified transaction from {_clip(sender)} stored in {_clip(document)}",
            details={
                "document": document,
                "sender": sender,
                "amount": amount,
            },
        )

    @staticmethod
    def storage_error(
        document: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type="document",
            entity_id=document,
            correlation_id=correlation_id,
            description=f"Storage error on {_clip(document)}",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {_clip(error_type)}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
