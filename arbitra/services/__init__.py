"""Services package."""

from arbitra.services.storage import (
    AuditStorageInterface,
    DocumentShapeError,
    InvalidFileNameError,
    JsonFileRecordStore,
    KeyedDocument,
    ListDocument,
    RecordStoreAuditStorage,
    RecordStoreInterface,
    StorageError,
    StorageIOError,
)
from arbitra.services.channel import (
    ChannelError,
    FrameTooLargeError,
    HashOracleServer,
    MessageParseError,
    MessageServer,
    PeerClient,
    PeerConnectionError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "DocumentShapeError",
    "InvalidFileNameError",
    "JsonFileRecordStore",
    "KeyedDocument",
    "ListDocument",
    "RecordStoreAuditStorage",
    "RecordStoreInterface",
    "StorageError",
    "StorageIOError",
    # Channel services
    "ChannelError",
    "FrameTooLargeError",
    "HashOracleServer",
    "MessageParseError",
    "MessageServer",
    "PeerClient",
    "PeerConnectionError",
]
