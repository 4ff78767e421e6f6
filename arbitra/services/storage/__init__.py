"""
Storage Services Package

Provides abstract interfaces and the JSON-file implementation of the
local record store, plus the audit log stored on top of it.
"""

from arbitra.services.storage.interface import (
    AuditStorageInterface,
    DocumentShape,
    DocumentShapeError,
    InvalidFileNameError,
    ReadResult,
    ReadStatus,
    RecordStoreInterface,
    StorageError,
    StorageIOError,
)
from arbitra.services.storage.documents import KeyedDocument, ListDocument
from arbitra.services.storage.json_files import (
    JsonFileRecordStore,
    merge_unique,
    sanitize_file_name,
)
from arbitra.services.storage.audit_storage import RecordStoreAuditStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RecordStoreInterface",
    # Result types
    "DocumentShape",
    "ReadResult",
    "ReadStatus",
    # Exceptions
    "DocumentShapeError",
    "InvalidFileNameError",
    "StorageError",
    "StorageIOError",
    # Document handles
    "KeyedDocument",
    "ListDocument",
    # JSON file implementation
    "JsonFileRecordStore",
    "RecordStoreAuditStorage",
    "merge_unique",
    "sanitize_file_name",
]
