"""
PostgreSQL-backed DocumentStore.

Every write runs in its own transaction; read-modify-write paths hold a row
lock (SELECT ... FOR UPDATE) so concurrent poll loops and webhooks touching
the same video serialize on the database instead of clobbering each other.
"""
import logging
import uuid
from typing import Any, Mapping, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from memorylane.core.exceptions import DocumentNotFoundError
from memorylane.db.document_store import (
    DocumentStore,
    Filter,
    Precondition,
    StoredDocument,
    apply_query,
    apply_updates,
)
from memorylane.db.models import Document

logger = logging.getLogger(__name__)


class SqlDocumentStore(DocumentStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], engine: AsyncEngine | None = None):
        self._session_factory = session_factory
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    async def _locked_row(self, session: AsyncSession, collection: str, doc_id: str) -> Document | None:
        result = await session.execute(
            select(Document)
            .where(Document.collection == collection, Document.id == doc_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def get(self, collection: str, doc_id: str) -> StoredDocument | None:
        async with self._session_factory() as session:
            row = await session.get(Document, (collection, doc_id))
            if row is None:
                return None
            return StoredDocument(row.id, dict(row.data or {}))

    async def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        async with self._session_factory() as session:
            session.add(Document(collection=collection, id=doc_id, data=apply_updates({}, fields)))
            await session.commit()
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._locked_row(session, collection, doc_id)
                if row is None:
                    raise DocumentNotFoundError(collection, doc_id)
                # Assign a fresh dict so the JSON column is flagged dirty
                row.data = apply_updates(row.data or {}, fields)

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        precondition: Precondition,
    ) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._locked_row(session, collection, doc_id)
                if row is None or not precondition(row.data or {}):
                    return False
                row.data = apply_updates(row.data or {}, fields)
                return True

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(Document).where(Document.collection == collection, Document.id == doc_id)
            )
            await session.commit()

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        stmt = select(Document).where(Document.collection == collection)
        # String equality is pushed down to SQL; everything else is finished in Python
        for f in filters:
            if f.op == "==" and isinstance(f.value, str):
                stmt = stmt.where(Document.data[f.field].as_string() == f.value)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        documents = [StoredDocument(row.id, dict(row.data or {})) for row in rows]
        return apply_query(documents, filters, order_by, descending, limit)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
