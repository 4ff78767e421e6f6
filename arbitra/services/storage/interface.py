"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the JSON-file store for something else later
2. Keep flows decoupled from how documents reach the disk
3. Put the audit trail on top of the same store

"Not found" is an expected answer, so reads report it as a ReadStatus
value. Only genuine I/O faults are raised.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from arbitra.models.audit import AuditEvent


class DocumentShape(str, Enum):
    """The two shapes a document can take."""
    KEYED = "keyed"  # JSON object, key -> value
    LIST = "list"    # JSON array, append-only records


class ReadStatus(str, Enum):
    """Outcome of reading a document from storage."""
    OK = "ok"
    NOT_FOUND = "not_found"
    CORRUPT = "corrupt"


class ReadResult(BaseModel):
    """Raw read outcome. content is set only when status is OK."""

    status: ReadStatus
    content: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status == ReadStatus.OK


class RecordStoreInterface(ABC):
    """
    Abstract interface for the local document store.

    Documents are identified by a logical file name and are either keyed
    (a mapping) or list (an append-only array) documents.
    """

    @abstractmethod
    async def get(self, file_name: str, key: str, fallback: Any = None) -> Any:
        """
        Read one key of a keyed document.

        Returns:
            The stored value, or fallback if the document, the key, or a
            parseable document is missing

        Raises:
            StorageIOError: On any I/O failure other than "does not exist"
            DocumentShapeError: If the document is a list document
        """
        pass

    @abstractmethod
    async def get_all(self, file_name: str, fallback: Optional[str] = None) -> Optional[str]:
        """
        Read the raw serialized content of a document, unparsed.

        Returns:
            The file content, or fallback if it does not exist
        """
        pass

    @abstractmethod
    async def store(self, file_name: str, key: str, value: Any) -> None:
        """
        Write one key of a keyed document.

        Arrays stored under an existing array key are merged as a
        de-duplicated union; anything else overwrites.
        """
        pass

    @abstractmethod
    async def store_all(self, file_name: str, document: Any) -> None:
        """Overwrite a whole document. No merge."""
        pass

    @abstractmethod
    async def append(self, file_name: str, record: Any) -> None:
        """Push a record to the end of a list document."""
        pass

    @abstractmethod
    async def read_document(self, file_name: str) -> dict:
        """Parsed keyed document ({} when missing or unparseable)."""
        pass

    @abstractmethod
    async def read_list(self, file_name: str) -> list:
        """Parsed list document ([] when missing or unparseable)."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageIOError(StorageError):
    """
    Unrecoverable file-system failure (permissions, disk, ...).

    "File does not exist" is never reported this way.
    """

    def __init__(self, document: str, message: str):
        self.document = document
        super().__init__(message)


class DocumentShapeError(StorageError):
    """A document was used as a keyed document and a list document."""

    def __init__(self, document: str, expected: DocumentShape, message: str):
        self.document = document
        self.expected = expected
        super().__init__(message)


class InvalidFileNameError(StorageError, ValueError):
    """A document name has no path-safe form."""
    pass
