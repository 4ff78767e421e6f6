"""
Data Models Package

This package contains all Pydantic models used by Arbitra.
All data flowing through the system must conform to these schemas.
"""

from arbitra.models.transaction import TransactionRecord, now_ms
from arbitra.models.message import (
    KNOWN_MESSAGE_TYPES,
    Message,
    MessageHeader,
    MessageType,
    VerificationOutcome,
    VerificationResult,
)
from arbitra.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "TransactionRecord",
    "now_ms",
    # Message models
    "KNOWN_MESSAGE_TYPES",
    "Message",
    "MessageHeader",
    "MessageType",
    "VerificationOutcome",
    "VerificationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
