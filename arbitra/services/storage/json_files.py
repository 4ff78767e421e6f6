"""
JSON File Storage Implementation

One JSON file per logical document name:

    <app_data_root>/<app_namespace>/<file_name>.json

DESIGN DECISION: Writes go to a temp file in the same directory and are
moved into place with os.replace, so a crash leaves either the old or the
new document on disk, never half of one.

TRADEOFFS:
- Every write rewrites the whole document (fine for personal history sizes)
- A corrupt document is discarded on the next write rather than repaired
- Read-modify-write cycles are serialized per name with an asyncio.Lock;
  two processes writing the same directory are not coordinated

File I/O runs in a worker thread so the event loop keeps serving sockets.
"""

import asyncio
import contextlib
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional

import structlog

from arbitra.config import StoreSettings, get_settings
from arbitra.services.storage.documents import KeyedDocument, ListDocument
from arbitra.services.storage.interface import (
    DocumentShape,
    DocumentShapeError,
    InvalidFileNameError,
    ReadResult,
    ReadStatus,
    RecordStoreInterface,
    StorageIOError,
)


logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class _NamedLock:
    """Per-name lock plus the number of operations holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


def sanitize_file_name(name: str) -> str:
    """
    Reduce a logical document name to a path-safe identifier.

    Anything outside [A-Za-z0-9._-] becomes "_" and leading dots are
    dropped, so a name can never climb out of the namespace directory.
    """
    if not isinstance(name, str):
        raise InvalidFileNameError(f"Document name must be a string, got {type(name).__name__}")
    cleaned = _UNSAFE_CHARS.sub("_", name.strip()).lstrip(".")
    if not cleaned:
        raise InvalidFileNameError(f"Invalid document name: {name!r}")
    return cleaned


def _identity(item: Any) -> str:
    return json.dumps(item, sort_keys=True, separators=(",", ":"))


def merge_unique(existing: list, incoming: list) -> list:
    """
    Set union of two arrays.

    Items compare by their canonical JSON form, so equal objects collapse
    too. First-seen order is kept.
    """
    seen = set()
    merged = []
    for item in list(existing) + list(incoming):
        ident = _identity(item)
        if ident in seen:
            continue
        seen.add(ident)
        merged.append(item)
    return merged


def _is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _shape_of(document: Any) -> DocumentShape:
    if isinstance(document, dict):
        return DocumentShape.KEYED
    if _is_array(document):
        return DocumentShape.LIST
    raise TypeError(
        f"A document must be a JSON object or array, got {type(document).__name__}"
    )


def _serialize(document: Any) -> str:
    # Compact, no whitespace between tokens
    return json.dumps(document, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


class JsonFileRecordStore(RecordStoreInterface):
    """
    Local document store backed by one JSON file per document.

    Usage:
        store = JsonFileRecordStore(StoreSettings(app_data_root=tmp))
        await store.append("recenttx", record.to_body())
        value = await store.get("prefs", "peers", fallback=[])
    """

    def __init__(self, settings: Optional[StoreSettings] = None):
        self._settings = settings or get_settings().store
        self._root = self._settings.data_dir
        self._locks: dict[str, _NamedLock] = {}
        self._shapes: dict[str, DocumentShape] = {}

    @property
    def data_dir(self) -> Path:
        return self._root

    def path_for(self, file_name: str) -> Path:
        """Absolute path of the file backing a document."""
        return self._root / f"{sanitize_file_name(file_name)}.json"

    # -------------------------------------------------------------------------
    # Typed handles
    # -------------------------------------------------------------------------

    def keyed_document(self, file_name: str) -> KeyedDocument:
        name = sanitize_file_name(file_name)
        self._claim_shape(name, DocumentShape.KEYED)
        return KeyedDocument(self, name)

    def list_document(self, file_name: str) -> ListDocument:
        name = sanitize_file_name(file_name)
        self._claim_shape(name, DocumentShape.LIST)
        return ListDocument(self, name)

    def _claim_shape(self, name: str, shape: DocumentShape) -> None:
        current = self._shapes.get(name)
        if current is not None and current != shape:
            raise DocumentShapeError(
                name,
                current,
                f"{name} is a {current.value} document, not a {shape.value} document",
            )
        self._shapes[name] = shape

    @contextlib.asynccontextmanager
    async def _serialized(self, name: str):
        """Hold the lock for name; the lock is dropped once nobody uses it."""
        if not self._settings.serialize_writes:
            yield
            return

        entry = self._locks.get(name)
        if entry is None:
            entry = self._locks[name] = _NamedLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[name]

    # -------------------------------------------------------------------------
    # Blocking file access (runs in a worker thread)
    # -------------------------------------------------------------------------

    @staticmethod
    def _read_text(path: Path, errors: str = "strict") -> ReadResult:
        try:
            content = path.read_text(encoding="utf-8", errors=errors)
        except FileNotFoundError:
            return ReadResult(status=ReadStatus.NOT_FOUND)
        except UnicodeDecodeError:
            return ReadResult(status=ReadStatus.CORRUPT)
        except OSError as e:
            raise StorageIOError(path.stem, f"Error opening {path.name}: {e}") from e
        return ReadResult(status=ReadStatus.OK, content=content)

    @staticmethod
    def _write_text(path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{path.stem}.",
                suffix=".tmp",
                dir=path.parent,
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(content)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_path, path)
            except BaseException:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageIOError(path.stem, f"Error writing {path.name}: {e}") from e

    # -------------------------------------------------------------------------
    # Async plumbing
    # -------------------------------------------------------------------------

    async def _read(self, name: str, errors: str = "strict") -> ReadResult:
        try:
            result = await asyncio.to_thread(self._read_text, self.path_for(name), errors)
        except StorageIOError as e:
            logger.error("document_read_failed", document=name, error=str(e))
            raise
        if result.status == ReadStatus.NOT_FOUND:
            logger.debug("document_not_found", document=name)
        elif result.status == ReadStatus.CORRUPT:
            logger.warning("document_undecodable", document=name)
        return result

    async def _load(self, name: str, shape: DocumentShape) -> tuple[ReadStatus, Any]:
        """
        Read and parse a document.

        Unparseable content, or JSON that is neither object nor array, is
        reported as CORRUPT. JSON of the other container shape raises.
        """
        result = await self._read(name)
        if not result.found:
            return result.status, None

        try:
            data = json.loads(result.content)
        except json.JSONDecodeError as e:
            logger.warning("document_corrupt", document=name, error=str(e))
            return ReadStatus.CORRUPT, None

        try:
            actual = _shape_of(data)
        except TypeError:
            logger.warning("document_corrupt", document=name, error="not an object or array")
            return ReadStatus.CORRUPT, None

        if actual != shape:
            raise DocumentShapeError(
                name,
                shape,
                f"{name}.json holds a {actual.value} document, expected {shape.value}",
            )
        return ReadStatus.OK, data

    async def _persist(self, name: str, document: Any) -> None:
        content = _serialize(document)
        try:
            await asyncio.to_thread(self._write_text, self.path_for(name), content)
        except StorageIOError as e:
            logger.error("document_write_failed", document=name, error=str(e))
            raise

    # -------------------------------------------------------------------------
    # RecordStoreInterface
    # -------------------------------------------------------------------------

    async def get(self, file_name: str, key: str, fallback: Any = None) -> Any:
        name = sanitize_file_name(file_name)
        self._claim_shape(name, DocumentShape.KEYED)

        status, data = await self._load(name, DocumentShape.KEYED)
        if status != ReadStatus.OK:
            return fallback
        return data.get(key, fallback)

    async def get_all(self, file_name: str, fallback: Optional[str] = None) -> Optional[str]:
        name = sanitize_file_name(file_name)
        # Raw text; undecodable bytes come back as U+FFFD rather than a fallback
        result = await self._read(name, errors="replace")
        if not result.found:
            return fallback
        return result.content

    async def store(self, file_name: str, key: str, value: Any) -> None:
        if not isinstance(key, str):
            raise TypeError(f"Document keys must be strings, got {type(key).__name__}")
        name = sanitize_file_name(file_name)
        self._claim_shape(name, DocumentShape.KEYED)

        async with self._serialized(name):
            status, data = await self._load(name, DocumentShape.KEYED)
            if status == ReadStatus.CORRUPT:
                logger.warning("corrupt_document_replaced", document=name, key=key)
                data = {}
            elif status == ReadStatus.NOT_FOUND:
                data = {}

            if key in data and _is_array(data[key]) and _is_array(value):
                data[key] = merge_unique(data[key], value)
            else:
                data[key] = list(value) if isinstance(value, tuple) else value

            await self._persist(name, data)

    async def store_all(self, file_name: str, document: Any) -> None:
        name = sanitize_file_name(file_name)
        shape = _shape_of(document)
        self._claim_shape(name, shape)

        async with self._serialized(name):
            await self._persist(name, document)

    async def append(self, file_name: str, record: Any) -> None:
        name = sanitize_file_name(file_name)
        self._claim_shape(name, DocumentShape.LIST)

        async with self._serialized(name):
            status, data = await self._load(name, DocumentShape.LIST)
            if status == ReadStatus.CORRUPT:
                logger.warning("corrupt_document_replaced", document=name)
                data = []
            elif status == ReadStatus.NOT_FOUND:
                data = []

            data.append(record)
            await self._persist(name, data)

    async def read_document(self, file_name: str) -> dict:
        name = sanitize_file_name(file_name)
        self._claim_shape(name, DocumentShape.KEYED)
        status, data = await self._load(name, DocumentShape.KEYED)
        return data if status == ReadStatus.OK else {}

    async def read_list(self, file_name: str) -> list:
        name = sanitize_file_name(file_name)
        self._claim_shape(name, DocumentShape.LIST)
        status, data = await self._load(name, DocumentShape.LIST)
        return data if status == ReadStatus.OK else []
