from __future__ import annotations

import asyncio
import copy
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Literal, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.context import ContextScope
from infrastructure.database.models.documents import StoredDocument

FilterOp = Literal["==", "in"]

_SESSION_LOCK_KEY = "document_repository_lock"

# Session lock held by the current task, so nested repository calls do not re-acquire it.
_held_lock: ContextVar[Optional[asyncio.Lock]] = ContextVar("document_repository_held_lock", default=None)


@dataclass(frozen=True)
class DocumentFilter:
    """Equality or membership predicate on a top-level string field."""

    field: str
    op: FilterOp
    value: Any

    @classmethod
    def eq(cls, field: str, value: Any) -> "DocumentFilter":
        return cls(field, "==", value)

    @classmethod
    def in_(cls, field: str, values: Sequence[Any]) -> "DocumentFilter":
        return cls(field, "in", list(values))


def _to_document(row: StoredDocument) -> Dict[str, Any]:
    document = dict(row.data or {})
    document["id"] = row.document_id
    return document


def _strip_id(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key != "id"}


def apply_field_updates(data: Mapping[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``updates`` into a copy of ``data``.

    Top-level keys replace the stored value. Dotted keys such as
    ``"associationCounts.deals"`` walk (and create) nested maps.
    """
    merged = copy.deepcopy(dict(data))
    for key, value in updates.items():
        if key == "id":
            continue
        parts = key.split(".")
        target = merged
        for part in parts[:-1]:
            nested = target.get(part)
            if not isinstance(nested, dict):
                nested = {}
                target[part] = nested
            target = nested
        target[parts[-1]] = value
    return merged


class DocumentRepository:
    """Tenant-scoped document store over the ``documents`` table.

    Documents are addressed as ``collection/document_id`` under the tenant of the
    bound :class:`ContextScope`. Returned documents are plain dicts that always
    carry their ``id``.

    Every repository bound to the same session shares one lock, so callers may
    fan out with ``asyncio.gather`` while the session still sees one statement
    at a time.
    """

    def __init__(self, db: AsyncSession, context: ContextScope):
        self.db = db
        self.context = context
        self._lock: asyncio.Lock = db.info.setdefault(_SESSION_LOCK_KEY, asyncio.Lock())

    @property
    def tenant_id(self) -> str:
        return self.context.tenant_id

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[None]:
        if _held_lock.get() is self._lock:
            yield
            return
        async with self._lock:
            token = _held_lock.set(self._lock)
            try:
                yield
            finally:
                _held_lock.reset(token)

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """Run the enclosed repository calls inside a SAVEPOINT.

        If the block raises, only its own writes are rolled back and the
        enclosing transaction stays usable. Other tasks sharing the session
        wait until the block exits.
        """
        async with self._locked():
            async with self.db.begin_nested():
                yield

    async def _fetch_row(self, collection: str, document_id: str) -> Optional[StoredDocument]:
        stmt = select(StoredDocument).where(
            StoredDocument.tenant_id == self.context.tenant_id,
            StoredDocument.collection == collection,
            StoredDocument.document_id == document_id,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_document(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        if not document_id:
            return None
        async with self._locked():
            row = await self._fetch_row(collection, document_id)
        return _to_document(row) if row else None

    async def get_documents_by_ids(
        self,
        collection: str,
        document_ids: Sequence[str],
    ) -> Dict[str, Dict[str, Any]]:
        unique_ids = {document_id for document_id in document_ids if document_id}
        if not unique_ids:
            return {}

        stmt = select(StoredDocument).where(
            StoredDocument.tenant_id == self.context.tenant_id,
            StoredDocument.collection == collection,
            StoredDocument.document_id.in_(unique_ids),
        )
        async with self._locked():
            result = await self.db.execute(stmt)
            rows = result.scalars().all()
        return {row.document_id: _to_document(row) for row in rows}

    async def list_documents(
        self,
        collection: str,
        filters: Sequence[DocumentFilter] = (),
        *,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        stmt = select(StoredDocument).where(
            StoredDocument.tenant_id == self.context.tenant_id,
            StoredDocument.collection == collection,
        )

        for condition in filters:
            field = StoredDocument.data[condition.field].as_string()
            if condition.op == "==":
                stmt = stmt.where(field == str(condition.value))
            elif condition.op == "in":
                values = [str(value) for value in condition.value]
                if not values:
                    return []
                stmt = stmt.where(field.in_(values))
            else:
                raise ValueError(f"Unsupported filter operator: {condition.op}")

        stmt = stmt.order_by(StoredDocument.created_at.asc(), StoredDocument.id.asc())
        if limit:
            stmt = stmt.limit(limit)

        async with self._locked():
            result = await self.db.execute(stmt)
            rows = result.scalars().all()
        return [_to_document(row) for row in rows]

    async def iter_collection(self, collection: str) -> AsyncIterator[Dict[str, Any]]:
        for document in await self.list_documents(collection):
            yield document

    async def add_document(self, collection: str, data: Mapping[str, Any]) -> str:
        document_id = uuid.uuid4().hex
        await self.set_document(collection, document_id, data)
        return document_id

    async def set_document(
        self,
        collection: str,
        document_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        async with self._locked():
            row = await self._fetch_row(collection, document_id)
            if row is None:
                row = StoredDocument(
                    tenant_id=self.context.tenant_id,
                    collection=collection,
                    document_id=document_id,
                    data=_strip_id(data),
                )
                self.db.add(row)
            elif merge:
                row.data = apply_field_updates(row.data or {}, data)
            else:
                row.data = _strip_id(data)
            await self.db.flush()

    async def update_document(
        self,
        collection: str,
        document_id: str,
        updates: Mapping[str, Any],
    ) -> bool:
        async with self._locked():
            row = await self._fetch_row(collection, document_id)
            if row is None:
                return False
            row.data = apply_field_updates(row.data or {}, updates)
            await self.db.flush()
        return True

    async def delete_document(self, collection: str, document_id: str) -> bool:
        async with self._locked():
            row = await self._fetch_row(collection, document_id)
            if row is None:
                return False
            await self.db.delete(row)
            await self.db.flush()
        return True
