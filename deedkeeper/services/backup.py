"""
Backup / Snapshot Service

Copies whole collections into backups/{backup_id}/data/{collection}.

State machine for the metadata record backups/{backup_id}:
    in_progress -> completed   every requested collection was written
    in_progress -> failed      an exception interrupted the copy loop

Snapshots written before a failure are kept. Only "completed" promises a
full copy; a "failed" backup may still be partially usable. Snapshots are
not isolated from concurrent writes.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from deedkeeper.core.collections import (
    BACKUP_DATA_SUBCOLLECTION,
    BACKUP_SOURCE_COLLECTIONS,
    Collection,
    CollectionPath,
    document_path,
)
from deedkeeper.core.config import Settings, get_settings
from deedkeeper.core.errors import (
    InternalError,
    NotFoundError,
    ValidationError,
    log_context,
    service_boundary,
)
from deedkeeper.core.security import AuthorizationGate
from deedkeeper.core.user_context import CallerContext
from deedkeeper.core.utc import to_iso, utc_now
from deedkeeper.models.entities import BackupStatus
from deedkeeper.store.base import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class BackupResult:
    backup_id: str
    timestamp: str
    collections: list[str]

    def to_dict(self) -> dict:
        return {
            "backupId": self.backup_id,
            "timestamp": self.timestamp,
            "collections": list(self.collections),
        }


def snapshot_path(backup_id: str) -> CollectionPath:
    return CollectionPath(Collection.BACKUPS, backup_id, BACKUP_DATA_SUBCOLLECTION)


class BackupService:
    def __init__(
        self,
        store: EntityStore,
        settings: Optional[Settings] = None,
        gate: Optional[AuthorizationGate] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.gate = gate or AuthorizationGate()
        self.clock = clock

    def allowed_collections(self) -> list[str]:
        configured = self.settings.backup_collections_set
        return [c.value for c in BACKUP_SOURCE_COLLECTIONS if c.value in configured]

    def _validate(self, collections: Optional[Iterable[str]]) -> list[Collection]:
        requested = list(dict.fromkeys(collections or []))
        if not requested:
            raise ValidationError("Collections array is required")
        allowed = self.allowed_collections()
        invalid = [c for c in requested if c not in allowed]
        if invalid:
            raise ValidationError(f"Invalid collections: {', '.join(map(str, invalid))}")
        return [Collection(c) for c in requested]

    async def _new_backup_id(self, started: datetime) -> str:
        backup_id = f"backup_{int(started.timestamp() * 1000)}"
        if await self.store.exists(Collection.BACKUPS, backup_id):
            backup_id = f"{backup_id}_{secrets.token_hex(3)}"
        return backup_id

    @service_boundary("createDataBackup", "Backup creation failed")
    async def create_backup(
        self,
        caller: CallerContext,
        collections: Optional[Iterable[str]],
        include_subcollections: bool = False,
    ) -> BackupResult:
        """
        Snapshot the requested collections.

        Raises:
            ValidationError: empty or disallowed collection list
            InternalError: the copy failed; metadata is left as "failed"
        """
        self.gate.require_admin(caller)
        targets = self._validate(collections)
        names = [c.value for c in targets]

        started = self.clock()
        backup_id = await self._new_backup_id(started)
        timestamp = to_iso(started)
        context = log_context("createDataBackup", caller.uid, backupId=backup_id, collections=names)
        logger.info(
            f"Starting backup creation for collections: {', '.join(names)}",
            extra={"context": {**context, "includeSubcollections": include_subcollections}},
        )

        await self.store.set(Collection.BACKUPS, backup_id, {
            "timestamp": timestamp,
            "collections": names,
            "includeSubcollections": include_subcollections,
            "status": BackupStatus.IN_PROGRESS.value,
            "createdAt": started,
            "createdBy": caller.uid,
        })

        try:
            for collection in targets:
                await self._snapshot_collection(backup_id, collection, include_subcollections)

            await self.store.update(Collection.BACKUPS, backup_id, {
                "status": BackupStatus.COMPLETED.value,
                "completedAt": self.clock(),
            })
        except Exception as e:
            await self._mark_failed(backup_id, e)
            logger.error(f"Backup {backup_id} failed: {e}", exc_info=True, extra={"context": context})
            raise InternalError("Backup creation failed") from e

        logger.info(f"Backup created successfully: {backup_id}", extra={"context": context})
        return BackupResult(backup_id=backup_id, timestamp=timestamp, collections=names)

    async def _snapshot_collection(
        self,
        backup_id: str,
        collection: Collection,
        include_subcollections: bool,
    ) -> None:
        records = await self.store.query(collection)
        documents = []
        for record in records:
            doc_id = record.pop("id")
            entry = {
                "id": doc_id,
                "data": record,
                "path": document_path(collection, doc_id),
            }
            if include_subcollections:
                entry["subcollections"] = await self._read_subcollections(collection, doc_id)
            documents.append(entry)

        await self.store.set(snapshot_path(backup_id), collection.value, {
            "collection": collection.value,
            "documentCount": len(documents),
            "documents": documents,
            "backedUpAt": self.clock(),
        })
        logger.debug(f"Backup {backup_id}: {collection.value} ({len(documents)} records)")

    async def _read_subcollections(self, collection: Collection, doc_id: str) -> dict[str, list[dict]]:
        subcollections = {}
        for name in await self.store.list_subcollections(collection, doc_id):
            path = CollectionPath(collection, doc_id, name)
            children = []
            for child in await self.store.query(path):
                child_id = child.pop("id")
                children.append({"id": child_id, "data": child, "path": document_path(path, child_id)})
            subcollections[name] = children
        return subcollections

    async def _mark_failed(self, backup_id: str, error: Exception) -> None:
        try:
            await self.store.update(Collection.BACKUPS, backup_id, {
                "status": BackupStatus.FAILED.value,
                "error": str(error),
                "failedAt": self.clock(),
            })
        except Exception as e:
            logger.error(f"Could not mark backup {backup_id} as failed: {e}")

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @service_boundary("getBackup", "Failed to load backup")
    async def get_backup(self, caller: CallerContext, backup_id: str) -> dict:
        """Backup metadata plus the names of the snapshots present."""
        self.gate.require_admin(caller)
        metadata = await self.store.get(Collection.BACKUPS, backup_id)
        if metadata is None:
            raise NotFoundError(f"Backup {backup_id} not found")
        snapshots = await self.store.query(snapshot_path(backup_id))
        metadata["snapshots"] = [s["id"] for s in snapshots]
        return metadata

    async def get_snapshot(self, backup_id: str, collection: str) -> Optional[dict]:
        return await self.store.get(snapshot_path(backup_id), collection)

    @service_boundary("listBackups", "Failed to list backups")
    async def list_backups(self, caller: CallerContext) -> list[dict]:
        self.gate.require_admin(caller)
        backups = await self.store.query(Collection.BACKUPS)
        return sorted(backups, key=lambda b: b.get("timestamp", ""), reverse=True)
