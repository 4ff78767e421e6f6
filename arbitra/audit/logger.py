"""
Audit Logger

DESIGN DECISION: Every transaction and every verification outcome is
logged. This provides:
1. Traceability of a transfer from creation to peer acceptance
2. A local record of tampered or malformed messages
3. Debugging capability when peers disagree

The audit logger:
- Is async so it can share the event loop with the sockets
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from arbitra.models.audit import AuditEvent, AuditEventBuilder
from arbitra.services.storage import AuditStorageInterface


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


def configure_logging(level: str = "INFO") -> None:
    """
    Route stdlib logging (and therefore structlog) to stderr at level.

    structlog renders the JSON line; the stdlib handler only prints it.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit list document (for persistence), when storage is given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("arbitra.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

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

    async def _log_built(self, build: Callable[..., AuditEvent], *args, **kwargs) -> bool:
        """
        Build an event and log it.

        An event that fails validation is reported locally and dropped;
        auditing never interrupts the flow that triggered it.
        """
        try:
            event = build(*args, **kwargs)
        except ValidationError as e:
            self._logger.error(
                "audit_event_invalid",
                builder=build.__name__,
                errors=e.error_count(),
                error=str(e),
            )
            return False
        return await self.log(event)

    async def log_transaction_created(
        self,
        digest: str,
        sender: str,
        receiver: str,
        amount: float,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._log_built(
            AuditEventBuilder.transaction_created,
            digest=digest,
            sender=sender,
            receiver=receiver,
            amount=amount,
            correlation_id=correlation_id,
        )

    async def log_transaction_stored(
        self,
        digest: str,
        document: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._log_built(
            AuditEventBuilder.transaction_stored,
            digest=digest,
            document=document,
            correlation_id=correlation_id,
        )

    async def log_message_sent(
        self,
        digest: str,
        message_type: str,
        peer: str,
        reply_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._log_built(
            AuditEventBuilder.message_sent,
            digest=digest,
            message_type=message_type,
            peer=peer,
            reply_count=reply_count,
            correlation_id=correlation_id,
        )

    async def log_message_send_failed(
        self,
        digest: str,
        peer: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._log_built(
            AuditEventBuilder.message_send_failed,
            digest=digest,
            peer=peer,
            error_message=error_message,
            correlation_id=correlation_id,
        )

    async def log_message_verified(
        self,
        digest: str,
        message_type: str,
        origin: str,
    ) -> None:
        await self._log_built(
            AuditEventBuilder.message_verified,
            digest=digest,
            message_type=message_type,
            origin=origin,
        )

    async def log_integrity_failed(
        self,
        expected_hash: Optional[str],
        computed_hash: Optional[str],
        origin: str,
    ) -> None:
        await self._log_built(
            AuditEventBuilder.integrity_failed,
            expected_hash=expected_hash,
            computed_hash=computed_hash,
            origin=origin,
        )

    async def log_message_parse_failed(self, error_message: str) -> None:
        await self._log_built(AuditEventBuilder.message_parse_failed, error_message)

    async def log_unknown_message_type(
        self,
        digest: Optional[str],
        message_type: Optional[str],
    ) -> None:
        await self._log_built(
            AuditEventBuilder.unknown_message_type,
            digest=digest,
            message_type=message_type,
        )

    async def log_transaction_received(
        self,
        digest: str,
        document: str,
        sender: str,
        amount: float,
    ) -> None:
        await self._log_built(
            AuditEventBuilder.transaction_received,
            digest=digest,
            document=document,
            sender=sender,
            amount=amount,
        )

    async def log_storage_error(
        self,
        document: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._log_built(
            AuditEventBuilder.storage_error,
            document=document,
            error_message=error_message,
            correlation_id=correlation_id,
        )

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self._log_built(
            AuditEventBuilder.system_error,
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., submitting a transfer).
    Pass it through all subsequent operations.
    """
    return uuid4()
