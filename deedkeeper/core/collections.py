"""
Collection identifiers.

Every collection the code touches is named here, so "which collections
exist" is a closed question and typos fail at import time.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Collection(str, Enum):
    """Top-level collections in the entity store."""
    USERS = "users"
    PROPERTIES = "properties"
    DOCUMENTS = "documents"
    AUDIT_LOGS = "audit_logs"
    AUTH_USERS = "auth_users"
    BACKUPS = "backups"
    SYSTEM = "system"


# Collections that hold domain entities checked by the integrity scan
ENTITY_COLLECTIONS = (Collection.USERS, Collection.PROPERTIES, Collection.DOCUMENTS)

# Collections a backup may snapshot
BACKUP_SOURCE_COLLECTIONS = (
    Collection.USERS,
    Collection.PROPERTIES,
    Collection.DOCUMENTS,
    Collection.AUDIT_LOGS,
)

# Well-known system record ids
BOOTSTRAP_RECORD_ID = "bootstrap"

# Subcollection under backups/{id} holding one snapshot per source collection
BACKUP_DATA_SUBCOLLECTION = "data"


@dataclass(frozen=True)
class CollectionPath:
    """
    Path to a subcollection: {parent}/{parent_id}/{name}.

    The store accepts either a Collection or a CollectionPath wherever a
    collection is expected.
    """
    parent: Collection
    parent_id: str
    name: str

    def __str__(self) -> str:
        return f"{self.parent.value}/{self.parent_id}/{self.name}"


CollectionRef = Union[Collection, CollectionPath]


def collection_key(ref: CollectionRef) -> str:
    """Canonical string key for a collection or subcollection."""
    if isinstance(ref, Collection):
        return ref.value
    return str(ref)


def document_path(ref: CollectionRef, doc_id: str) -> str:
    """Full path of a record, e.g. "properties/p1"."""
    return f"{collection_key(ref)}/{doc_id}"
