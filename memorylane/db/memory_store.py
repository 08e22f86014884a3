"""Dict-backed DocumentStore for local development and tests."""
from __future__ import annotations

import asyncio
import copy
import uuid
from typing import Any, Mapping, Sequence

from memorylane.core.exceptions import DocumentNotFoundError
from memorylane.db.document_store import (
    DocumentStore,
    Filter,
    Precondition,
    StoredDocument,
    apply_query,
    apply_updates,
)


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, name: str) -> dict[str, dict]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, doc_id: str) -> StoredDocument | None:
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None
        return StoredDocument(doc_id, copy.deepcopy(data))

    async def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        async with self._lock:
            self._collection(collection)[doc_id] = apply_updates({}, fields)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        async with self._lock:
            docs = self._collection(collection)
            if doc_id not in docs:
                raise DocumentNotFoundError(collection, doc_id)
            docs[doc_id] = apply_updates(docs[doc_id], fields)

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        precondition: Precondition,
    ) -> bool:
        async with self._lock:
            docs = self._collection(collection)
            current = docs.get(doc_id)
            if current is None or not precondition(current):
                return False
            docs[doc_id] = apply_updates(current, fields)
            return True

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self._lock:
            self._collection(collection).pop(doc_id, None)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        documents = [
            StoredDocument(doc_id, copy.deepcopy(data))
            for doc_id, data in self._collection(collection).items()
        ]
        return apply_query(documents, filters, order_by, descending, limit)
