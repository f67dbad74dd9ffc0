"""
SQL Entity Store

Stores every collection in the `entities` table as JSON payloads.
Datetimes are tagged on the way in ({"$date": iso}) and restored on the way
out, so records read back with the same types they were written with.

Filters are evaluated in Python after loading a collection; JSON operators
differ too much between SQLite and PostgreSQL to push them down.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deedkeeper.core.collections import CollectionRef, collection_key
from deedkeeper.core.errors import NotFoundError
from deedkeeper.core.utc import to_iso, to_utc
from deedkeeper.models.models import EntityRecord
from deedkeeper.store.base import (
    BatchOp,
    EntityStore,
    Filter,
    WriteBatch,
    apply_patch,
    matches_filters,
    strip_sentinels,
    with_id,
)

logger = logging.getLogger(__name__)

_DATE_TAG = "$date"


def encode_value(value: Any) -> Any:
    """Make a record value JSON-safe."""
    if isinstance(value, datetime):
        return {_DATE_TAG: to_iso(value)}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Inverse of encode_value."""
    if isinstance(value, dict):
        if set(value) == {_DATE_TAG}:
            return to_utc(datetime.fromisoformat(value[_DATE_TAG]))
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


class SqlWriteBatch(WriteBatch):
    def __init__(self, store: "SqlEntityStore") -> None:
        super().__init__()
        self._store = store

    async def _commit(self, ops: list[BatchOp]) -> None:
        async with self._store.session_factory() as session:
            async with session.begin():
                for op in ops:
                    await self._store._apply(session, op)
        logger.debug(f"Committed batch of {len(ops)} writes")


class SqlEntityStore(EntityStore):
    """Entity store over SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, collection: CollectionRef, doc_id: str) -> Optional[dict]:
        async with self.session_factory() as session:
            row = await session.get(EntityRecord, (collection_key(collection), doc_id))
            if row is None:
                return None
            return with_id(doc_id, decode_value(row.payload))

    async def query(self, collection: CollectionRef, filters: Sequence[Filter] = ()) -> list[dict]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(EntityRecord)
                .where(EntityRecord.collection_path == collection_key(collection))
                .order_by(EntityRecord.doc_id)
            )
            records = [with_id(row.doc_id, decode_value(row.payload)) for row in result.scalars()]
        return [r for r in records if matches_filters(r, filters)]

    async def set(self, collection: CollectionRef, doc_id: str, data: dict, merge: bool = False) -> None:
        await self._run(BatchOp("set", collection, doc_id, data, merge))

    async def update(self, collection: CollectionRef, doc_id: str, patch: dict) -> None:
        await self._run(BatchOp("update", collection, doc_id, patch))

    async def delete(self, collection: CollectionRef, doc_id: str) -> None:
        await self._run(BatchOp("delete", collection, doc_id))

    def batch(self) -> WriteBatch:
        return SqlWriteBatch(self)

    async def list_subcollections(self, collection: CollectionRef, doc_id: str) -> list[str]:
        prefix = f"{collection_key(collection)}/{doc_id}/"
        async with self.session_factory() as session:
            result = await session.execute(
                select(EntityRecord.collection_path)
                .where(EntityRecord.collection_path.startswith(prefix, autoescape=True))
                .distinct()
            )
            paths = list(result.scalars())
        names = {p[len(prefix):] for p in paths}
        return sorted(n for n in names if n and "/" not in n)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _run(self, op: BatchOp) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await self._apply(session, op)

    async def _apply(self, session: AsyncSession, op: BatchOp) -> None:
        key, doc_id = op.key
        row = await session.get(EntityRecord, (key, doc_id))

        if op.kind == "delete":
            if row is not None:
                await session.delete(row)
                await session.flush()
            return

        data = dict(op.data)
        data.pop("id", None)

        if op.kind == "update":
            if row is None:
                raise NotFoundError(f"{key}/{doc_id} not found")
            current = decode_value(row.payload)
            row.payload = encode_value(apply_patch(current, data))
        elif row is None:
            session.add(EntityRecord(
                collection_path=key,
                doc_id=doc_id,
                payload=encode_value(strip_sentinels(data)),
            ))
        elif op.merge:
            row.payload = encode_value(apply_patch(decode_value(row.payload), data))
        else:
            row.payload = encode_value(strip_sentinels(data))
        # Make the next get() in this transaction see the write
        await session.flush()
