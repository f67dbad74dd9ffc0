"""
In-memory Entity Store

Keeps every collection in process. Reads and writes deep-copy records so
callers can never mutate stored state by accident. Used by tests and by the
"memory" store backend.
"""

import asyncio
import copy
import logging
from typing import Optional, Sequence

from deedkeeper.core.collections import CollectionRef, collection_key
from deedkeeper.core.errors import NotFoundError
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


class InMemoryWriteBatch(WriteBatch):
    def __init__(self, store: "InMemoryEntityStore") -> None:
        super().__init__()
        self._store = store

    async def _commit(self, ops: list[BatchOp]) -> None:
        await self._store._apply_atomically(ops)


class InMemoryEntityStore(EntityStore):
    """Dict-of-dicts store: {collection_key: {doc_id: record}}."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict]] = {}
        self._lock = asyncio.Lock()

    def _bucket(self, collection: CollectionRef) -> dict[str, dict]:
        return self._data.setdefault(collection_key(collection), {})

    async def get(self, collection: CollectionRef, doc_id: str) -> Optional[dict]:
        record = self._data.get(collection_key(collection), {}).get(doc_id)
        if record is None:
            return None
        return with_id(doc_id, copy.deepcopy(record))

    async def query(self, collection: CollectionRef, filters: Sequence[Filter] = ()) -> list[dict]:
        bucket = self._data.get(collection_key(collection), {})
        results = []
        for doc_id in sorted(bucket):
            record = with_id(doc_id, copy.deepcopy(bucket[doc_id]))
            if matches_filters(record, filters):
                results.append(record)
        return results

    async def set(self, collection: CollectionRef, doc_id: str, data: dict, merge: bool = False) -> None:
        async with self._lock:
            self._set_unlocked(self._data, collection_key(collection), doc_id, data, merge)

    async def update(self, collection: CollectionRef, doc_id: str, patch: dict) -> None:
        async with self._lock:
            bucket = self._bucket(collection)
            if doc_id not in bucket:
                raise NotFoundError(f"{collection_key(collection)}/{doc_id} not found")
            bucket[doc_id] = apply_patch(bucket[doc_id], copy.deepcopy(patch))

    async def delete(self, collection: CollectionRef, doc_id: str) -> None:
        async with self._lock:
            self._data.get(collection_key(collection), {}).pop(doc_id, None)

    def batch(self) -> WriteBatch:
        return InMemoryWriteBatch(self)

    async def list_subcollections(self, collection: CollectionRef, doc_id: str) -> list[str]:
        prefix = f"{collection_key(collection)}/{doc_id}/"
        names = set()
        for key, bucket in self._data.items():
            if key.startswith(prefix) and bucket:
                remainder = key[len(prefix):]
                if "/" not in remainder:
                    names.add(remainder)
        return sorted(names)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _set_unlocked(data: dict, key: str, doc_id: str, record: dict, merge: bool) -> None:
        bucket = data.setdefault(key, {})
        record = copy.deepcopy(record)
        record.pop("id", None)
        if merge and doc_id in bucket:
            bucket[doc_id] = apply_patch(bucket[doc_id], record)
        else:
            bucket[doc_id] = strip_sentinels(record)

    async def _apply_atomically(self, ops: list[BatchOp]) -> None:
        async with self._lock:
            # Stage on a copy of the touched buckets; swap in only on success
            touched = {op.key[0] for op in ops}
            staged = {key: dict(self._data.get(key, {})) for key in touched}
            for op in ops:
                key, doc_id = op.key
                if op.kind == "set":
                    self._set_unlocked(staged, key, doc_id, op.data, op.merge)
                elif op.kind == "update":
                    if doc_id not in staged[key]:
                        raise NotFoundError(f"{key}/{doc_id} not found")
                    staged[key][doc_id] = apply_patch(staged[key][doc_id], copy.deepcopy(op.data))
                else:
                    staged[key].pop(doc_id, None)
            self._data.update(staged)
            logger.debug(f"Committed batch of {len(ops)} writes")

    def dump(self) -> dict[str, dict[str, dict]]:
        """Deep copy of everything stored, for assertions in tests."""
        return copy.deepcopy({k: v for k, v in self._data.items() if v})
