"""
Entity Store Adapter - contract

A thin async contract over a schemaless collection store. The store
enforces no foreign keys and offers no cross-collection transactions:
single-record writes are atomic, and a WriteBatch is atomic as a whole,
nothing more.

Records are plain dicts. Reads return copies that include the record "id".
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Optional, Sequence
import uuid

from deedkeeper.core.collections import CollectionRef, collection_key


class _DeleteField:
    """Sentinel: a patch value that removes the key instead of setting it."""

    _instance: Optional["_DeleteField"] = None

    def __new__(cls) -> "_DeleteField":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()

FilterOp = Literal["==", "!=", "in"]
Filter = tuple[str, FilterOp, Any]


# =============================================================================
# Helpers shared by implementations
# =============================================================================

def apply_patch(existing: dict, patch: dict) -> dict:
    """Return existing updated with patch; DELETE_FIELD values remove keys."""
    merged = dict(existing)
    for key, value in patch.items():
        if value is DELETE_FIELD:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def strip_sentinels(data: dict) -> dict:
    """Drop DELETE_FIELD entries from a full (non-merge) write."""
    return {k: v for k, v in data.items() if v is not DELETE_FIELD}


def matches_filters(record: dict, filters: Iterable[Filter]) -> bool:
    """Evaluate filters against a record. Missing fields compare as None."""
    for field_name, op, value in filters:
        actual = record.get(field_name)
        if op == "==":
            if actual != value:
                return False
        elif op == "!=":
            if actual == value:
                return False
        elif op == "in":
            if actual not in value:
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    return True


def with_id(doc_id: str, data: dict) -> dict:
    record = dict(data)
    record["id"] = doc_id
    return record


def new_id() -> str:
    """Generate a record id."""
    return uuid.uuid4().hex


# =============================================================================
# Write Batch
# =============================================================================

@dataclass
class BatchOp:
    """One staged write inside a batch."""
    kind: Literal["set", "update", "delete"]
    collection: CollectionRef
    doc_id: str
    data: dict = field(default_factory=dict)
    merge: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return collection_key(self.collection), self.doc_id


class WriteBatch(ABC):
    """
    Staged writes committed atomically.

    If commit() raises, none of the staged writes took effect. A batch can
    be committed once.
    """

    def __init__(self) -> None:
        self._ops: list[BatchOp] = []
        self._committed = False

    def set(self, collection: CollectionRef, doc_id: str, data: dict, merge: bool = False) -> "WriteBatch":
        self._ops.append(BatchOp("set", collection, doc_id, dict(data), merge))
        return self

    def update(self, collection: CollectionRef, doc_id: str, patch: dict) -> "WriteBatch":
        self._ops.append(BatchOp("update", collection, doc_id, dict(patch)))
        return self

    def delete(self, collection: CollectionRef, doc_id: str) -> "WriteBatch":
        self._ops.append(BatchOp("delete", collection, doc_id))
        return self

    @property
    def ops(self) -> Sequence[BatchOp]:
        return tuple(self._ops)

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Batch already committed")
        if not self._ops:
            self._committed = True
            return
        await self._commit(list(self._ops))
        self._committed = True

    @abstractmethod
    async def _commit(self, ops: list[BatchOp]) -> None:
        """Apply all ops atomically or raise without applying any."""


# =============================================================================
# Entity Store
# =============================================================================

class EntityStore(ABC):
    """Async contract over a schemaless collection store."""

    @abstractmethod
    async def get(self, collection: CollectionRef, doc_id: str) -> Optional[dict]:
        """Return the record (with "id") or None."""

    @abstractmethod
    async def query(self, collection: CollectionRef, filters: Sequence[Filter] = ()) -> list[dict]:
        """Return all records matching every filter, ordered by id."""

    @abstractmethod
    async def set(self, collection: CollectionRef, doc_id: str, data: dict, merge: bool = False) -> None:
        """Create or replace a record; merge=True patches an existing one."""

    @abstractmethod
    async def update(self, collection: CollectionRef, doc_id: str, patch: dict) -> None:
        """Patch an existing record. Raises NotFoundError if it is absent."""

    @abstractmethod
    async def delete(self, collection: CollectionRef, doc_id: str) -> None:
        """Delete a record. Deleting a missing record is a no-op."""

    @abstractmethod
    def batch(self) -> WriteBatch:
        """Start a new atomic write batch."""

    @abstractmethod
    async def list_subcollections(self, collection: CollectionRef, doc_id: str) -> list[str]:
        """Names of subcollections directly under a record."""

    async def add(self, collection: CollectionRef, data: dict) -> str:
        """Create a record with a generated id and return the id."""
        doc_id = new_id()
        await self.set(collection, doc_id, data)
        return doc_id

    async def exists(self, collection: CollectionRef, doc_id: str) -> bool:
        return await self.get(collection, doc_id) is not None

    async def close(self) -> None:
        """Release resources held by the store."""
