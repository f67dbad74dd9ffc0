"""
Orphan Reclamation Service

Finds orphaned documents and properties and, unless this is a dry run,
deletes them.

Eligibility:
- Document: propertyId set but unresolved, or ownerId set but unresolved,
  or markedForCleanup with cleanupDate more than the grace period ago.
- Property: ownerId None + markedForCleanup + grace period elapsed, or
  ownerId set but unresolved.

Unresolved references are also reported in `errors` so nothing is deleted
without a trace. Deletions for one collection go through a single batch: it
either lands whole or not at all. Under "all", documents are processed
before properties and a failed property batch does not undo the documents.

Counters:
- deleted: records found eligible ("would delete"), dry run or not
- committed: records actually removed; always 0 in a dry run
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from deedkeeper.core.collections import Collection
from deedkeeper.core.config import Settings, get_settings
from deedkeeper.core.errors import ValidationError, log_context, service_boundary
from deedkeeper.core.security import AuthorizationGate
from deedkeeper.core.user_context import CallerContext
from deedkeeper.core.utc import coerce_timestamp, days_since, utc_now
from deedkeeper.store.base import EntityStore

logger = logging.getLogger(__name__)


class ReclaimTarget(str, Enum):
    ORPHANED_DOCUMENTS = "orphaned_documents"
    ORPHANED_PROPERTIES = "orphaned_properties"
    ALL = "all"


@dataclass
class ReclaimResult:
    processed: int = 0
    deleted: int = 0
    committed: int = 0
    errors: list[str] = field(default_factory=list)
    eligible_ids: list[str] = field(default_factory=list)

    def merge(self, other: "ReclaimResult") -> None:
        self.processed += other.processed
        self.deleted += other.deleted
        self.committed += other.committed
        self.errors.extend(other.errors)
        self.eligible_ids.extend(other.eligible_ids)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "deleted": self.deleted,
            "committed": self.committed,
            "errors": list(self.errors),
            "eligibleIds": list(self.eligible_ids),
        }


class ReclamationService:
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

    @property
    def grace_days(self) -> int:
        return self.settings.cleanup_grace_days

    @service_boundary("cleanupOrphanedData", "Cleanup operation failed")
    async def reclaim(
        self,
        caller: CallerContext,
        target: str,
        dry_run: bool = False,
    ) -> ReclaimResult:
        self.gate.require_admin(caller)
        if not target:
            raise ValidationError("Cleanup type is required")
        try:
            target = ReclaimTarget(target)
        except ValueError:
            raise ValidationError("Invalid cleanup type") from None

        logger.info(
            f"Starting cleanup operation: {target.value} (dryRun: {dry_run})",
            extra={"context": log_context("cleanupOrphanedData", caller.uid)},
        )

        result = ReclaimResult()
        if target in (ReclaimTarget.ORPHANED_DOCUMENTS, ReclaimTarget.ALL):
            result.merge(await self._reclaim_documents(dry_run))
        if target in (ReclaimTarget.ORPHANED_PROPERTIES, ReclaimTarget.ALL):
            result.merge(await self._reclaim_properties(dry_run))

        logger.info(
            f"Cleanup operation completed: {target.value}",
            extra={"context": log_context(
                "cleanupOrphanedData",
                caller.uid,
                processed=result.processed,
                deleted=result.deleted,
                committed=result.committed,
                errorCount=len(result.errors),
                dryRun=dry_run,
            )},
        )
        return result

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def _grace_elapsed(self, record: dict, kind: str, errors: list[str]) -> bool:
        try:
            cleanup_date = coerce_timestamp(record.get("cleanupDate"))
        except ValueError:
            errors.append(f"{kind} {record['id']} has invalid cleanupDate")
            return False
        if cleanup_date is None:
            return False
        return days_since(cleanup_date, self.clock()) > self.grace_days

    async def _resolves(
        self,
        collection: Collection,
        ref_id: str,
        cache: dict[tuple[Collection, str], bool],
    ) -> bool:
        key = (collection, ref_id)
        if key not in cache:
            cache[key] = await self.store.get(collection, ref_id) is not None
        return cache[key]

    async def _reclaim_documents(self, dry_run: bool) -> ReclaimResult:
        result = ReclaimResult()
        cache: dict[tuple[Collection, str], bool] = {}
        try:
            documents = await self.store.query(Collection.DOCUMENTS)
        except Exception as e:
            result.errors.append(f"Error during document cleanup: {e}")
            return result
        result.processed = len(documents)

        for doc in documents:
            did = doc["id"]
            eligible = False

            property_id = doc.get("propertyId")
            if property_id:
                try:
                    if not await self._resolves(Collection.PROPERTIES, property_id, cache):
                        eligible = True
                        result.errors.append(
                            f"Document {did} references non-existent property {property_id}"
                        )
                except Exception as e:
                    logger.warning(f"Property lookup failed for document {did}: {e}")
                    result.errors.append(f"Error checking property {property_id} for document {did}")

            owner_id = doc.get("ownerId")
            if owner_id and not eligible:
                try:
                    if not await self._resolves(Collection.USERS, owner_id, cache):
                        eligible = True
                        result.errors.append(
                            f"Document {did} references non-existent owner {owner_id}"
                        )
                except Exception as e:
                    logger.warning(f"Owner lookup failed for document {did}: {e}")
                    result.errors.append(f"Error checking owner {owner_id} for document {did}")

            if not eligible and doc.get("markedForCleanup"):
                eligible = self._grace_elapsed(doc, "Document", result.errors)

            if eligible:
                result.eligible_ids.append(did)

        result.deleted = len(result.eligible_ids)
        if not dry_run:
            result.committed = await self._delete_batch(
                Collection.DOCUMENTS, result.eligible_ids, result.errors
            )
        return result

    async def _reclaim_properties(self, dry_run: bool) -> ReclaimResult:
        result = ReclaimResult()
        cache: dict[tuple[Collection, str], bool] = {}
        try:
            properties = await self.store.query(Collection.PROPERTIES)
        except Exception as e:
            result.errors.append(f"Error during property cleanup: {e}")
            return result
        result.processed = len(properties)

        for prop in properties:
            pid = prop["id"]
            eligible = False
            owner_id = prop.get("ownerId")

            if owner_id is None and prop.get("markedForCleanup"):
                eligible = self._grace_elapsed(prop, "Property", result.errors)
            elif owner_id:
                try:
                    if not await self._resolves(Collection.USERS, owner_id, cache):
                        eligible = True
                        result.errors.append(
                            f"Property {pid} references non-existent owner {owner_id}"
                        )
                except Exception as e:
                    logger.warning(f"Owner lookup failed for property {pid}: {e}")
                    result.errors.append(f"Error checking owner {owner_id} for property {pid}")

            if eligible:
                result.eligible_ids.append(pid)

        result.deleted = len(result.eligible_ids)
        if not dry_run:
            result.committed = await self._delete_batch(
                Collection.PROPERTIES, result.eligible_ids, result.errors
            )
        return result

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def _delete_batch(self, collection: Collection, ids: list[str], errors: list[str]) -> int:
        """Delete ids in one atomic batch. Returns the number removed (0 on failure)."""
        if not ids:
            return 0
        batch = self.store.batch()
        for doc_id in ids:
            batch.delete(collection, doc_id)
        try:
            await batch.commit()
        except Exception as e:
            logger.error(f"Cleanup batch for {collection.value} failed: {e}", exc_info=True)
            errors.append(f"Error committing {collection.value} cleanup batch: {e}")
            return 0
        return len(ids)
