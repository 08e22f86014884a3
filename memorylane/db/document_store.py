"""
Document-store interface used by the indexing, search and chat services.

Documents are JSON-compatible dicts addressed by (collection, id). Updates
are partial and understand three sentinels: ArrayAppend for atomic list
appends, SERVER_TIMESTAMP for store-assigned times and DELETE_FIELD for
removing a key.
"""
from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, NamedTuple, Sequence

# ── Collections ────────────────────────────────────────────────────────────

VIDEOS = "videos"
CONVERSATIONS = "conversations"
SEARCHES = "searches"


# ── Field sentinels ────────────────────────────────────────────────────────

class ArrayAppend:
    """Append values to a list field as part of the same write."""

    def __init__(self, *values: Any):
        self.values = list(values)

    def __repr__(self) -> str:
        return f"ArrayAppend({self.values!r})"


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")
DELETE_FIELD = _Sentinel("DELETE_FIELD")


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def apply_updates(data: Mapping[str, Any], fields: Mapping[str, Any]) -> dict:
    """Return a new document with `fields` merged into `data`."""
    result = copy.deepcopy(dict(data))
    now = None
    for key, value in fields.items():
        if value is DELETE_FIELD:
            result.pop(key, None)
        elif value is SERVER_TIMESTAMP:
            now = now or utcnow_iso()
            result[key] = now
        elif isinstance(value, ArrayAppend):
            existing = result.get(key)
            items = list(existing) if isinstance(existing, list) else []
            items.extend(copy.deepcopy(value.values))
            result[key] = items
        else:
            result[key] = copy.deepcopy(value)
    return result


# ── Queries ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def matches(self, data: Mapping[str, Any]) -> bool:
        actual = data.get(self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "array_contains":
            return isinstance(actual, list) and self.value in actual
        raise ValueError(f"Unsupported filter operator: {self.op}")


class StoredDocument(NamedTuple):
    id: str
    data: dict


def apply_query(
    documents: Sequence[StoredDocument],
    filters: Sequence[Filter] = (),
    order_by: str | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> list[StoredDocument]:
    """Filter, order and cut a list of documents. Missing sort keys go last."""
    matched = [doc for doc in documents if all(f.matches(doc.data) for f in filters)]
    if order_by:
        present = [doc for doc in matched if doc.data.get(order_by) is not None]
        missing = [doc for doc in matched if doc.data.get(order_by) is None]
        present.sort(key=lambda doc: doc.data[order_by], reverse=descending)
        matched = present + missing
    if limit is not None:
        matched = matched[:limit]
    return matched


# ── Interface ──────────────────────────────────────────────────────────────

Precondition = Callable[[Mapping[str, Any]], bool]


class DocumentStore(ABC):
    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> StoredDocument | None:
        ...

    @abstractmethod
    async def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        """Insert a new document and return its store-assigned id."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Merge `fields` into an existing document. Raises DocumentNotFoundError."""

    @abstractmethod
    async def update_if(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        precondition: Precondition,
    ) -> bool:
        """Atomically apply `fields` only when `precondition(current)` holds.

        Returns False (and writes nothing) when the document is missing or the
        precondition rejects its current state.
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        ...

    async def close(self) -> None:
        return None
