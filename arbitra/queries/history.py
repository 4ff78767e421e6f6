"""
Transaction History

Read side of the recent-transactions list document. The raw document is
fetched with get_all() and parsed here, the same way the history view
renders it.

GUARANTEES:
- Only returns records actually stored
- Malformed records are skipped, never guessed at
- An unreadable document reads as "no history", with a warning
"""

import json
from typing import Optional

import structlog
from pydantic import ValidationError

from arbitra.config import StoreSettings, get_settings
from arbitra.models.transaction import TransactionRecord
from arbitra.services.storage import RecordStoreInterface


logger = structlog.get_logger(__name__)


class TransactionHistory:
    """Queries over a list document of transaction records."""

    def __init__(
        self,
        store: RecordStoreInterface,
        document: Optional[str] = None,
        settings: Optional[StoreSettings] = None,
    ):
        self._store = store
        self._document = document or (settings or get_settings().store).recent_tx_document

    @property
    def document(self) -> str:
        return self._document

    async def list_transactions(self) -> list[TransactionRecord]:
        """All records in stored (insertion) order."""
        content = await self._store.get_all(self._document)
        if content is None:
            return []

        try:
            rows = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning("history_unreadable", document=self._document, error=str(e))
            return []
        if not isinstance(rows, list):
            logger.warning("history_unreadable", document=self._document, error="not a list")
            return []

        records = []
        for index, row in enumerate(rows):
            try:
                records.append(TransactionRecord.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    "history_record_skipped",
                    document=self._document,
                    index=index,
                    errors=e.error_count(),
                )
        return records

    async def recent(self, limit: Optional[int] = None) -> list[TransactionRecord]:
        """Newest first, by record time."""
        records = sorted(
            await self.list_transactions(),
            key=lambda r: r.time,
            reverse=True,
        )
        return records if limit is None else records[:limit]

    async def total_sent(self, sender: str) -> float:
        return sum(
            r.amount for r in await self.list_transactions()
            if r.sender == sender
        )

    async def with_counterparty(self, name: str) -> list[TransactionRecord]:
        """Records where name is either side of the transfer."""
        return [
            r for r in await self.list_transactions()
            if name in (r.sender, r.receiver)
        ]
