"""
Audit Storage on the Record Store

Audit events are appended, one JSON record each, to a list document
(default name "auditlog") in the same store that holds transactions.
"""

from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from arbitra.config import StoreSettings, get_settings
from arbitra.models.audit import AuditEvent
from arbitra.services.storage.interface import (
    AuditStorageInterface,
    RecordStoreInterface,
)


logger = structlog.get_logger(__name__)


class RecordStoreAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list document."""

    def __init__(
        self,
        store: RecordStoreInterface,
        settings: Optional[StoreSettings] = None,
    ):
        self._store = store
        self._document = (settings or get_settings().store).audit_document

    @property
    def document(self) -> str:
        return self._document

    async def append_event(self, event: AuditEvent) -> bool:
        await self._store.append(self._document, event.to_log_dict())
        return True

    async def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in await self._store.read_list(self._document):
            try:
                events.append(AuditEvent.model_validate(row))
            except ValidationError as e:
                logger.warning("audit_row_skipped", document=self._document, error=str(e))
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in await self._all_events()
            if e.correlation_id == correlation_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = await self._all_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
