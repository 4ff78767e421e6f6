"""
Typed Document Handles

A file name is either a keyed document or a list document for its whole
life. Callers pick the shape once, at the call site:

    settings = store.keyed_document("settings")
    history = store.list_document("recenttx")

The store remembers the choice and raises DocumentShapeError if the same
name is later opened the other way.
"""

from typing import Any, Optional

from arbitra.services.storage.interface import RecordStoreInterface


class KeyedDocument:
    """Handle on a document shaped as a mapping of string keys."""

    def __init__(self, store: RecordStoreInterface, name: str):
        self._store = store
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def get(self, key: str, fallback: Any = None) -> Any:
        return await self._store.get(self._name, key, fallback)

    async def get_all(self, fallback: Optional[str] = None) -> Optional[str]:
        return await self._store.get_all(self._name, fallback)

    async def store(self, key: str, value: Any) -> None:
        await self._store.store(self._name, key, value)

    async def replace(self, document: dict) -> None:
        await self._store.store_all(self._name, document)

    async def load(self) -> dict:
        return await self._store.read_document(self._name)

    def __repr__(self) -> str:
        return f"KeyedDocument({self._name!r})"


class ListDocument:
    """Handle on an append-only array document."""

    def __init__(self, store: RecordStoreInterface, name: str):
        self._store = store
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def append(self, record: Any) -> None:
        await self._store.append(self._name, record)

    async def get_all(self, fallback: Optional[str] = None) -> Optional[str]:
        return await self._store.get_all(self._name, fallback)

    async def replace(self, records: list) -> None:
        await self._store.store_all(self._name, records)

    async def records(self) -> list:
        return await self._store.read_list(self._name)

    def __repr__(self) -> str:
        return f"ListDocument({self._name!r})"
