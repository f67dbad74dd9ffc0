"""
User Lifecycle Service

Audit records for user and ownership events, and the soft cascade that runs
when a user is deleted through the admin path: their properties and
documents are detached and marked for cleanup instead of being deleted, so
they can be recovered until the reclamation grace period runs out.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from deedkeeper.core.collections import Collection
from deedkeeper.core.errors import log_context
from deedkeeper.core.utc import utc_now
from deedkeeper.models.entities import AuditAction
from deedkeeper.store.base import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupMarkResult:
    properties_marked: int = 0
    documents_marked: int = 0

    def to_dict(self) -> dict:
        return {
            "propertiesMarked": self.properties_marked,
            "documentsMarked": self.documents_marked,
        }


class UserLifecycleService:
    def __init__(self, store: EntityStore):
        self.store = store

    async def record_audit(
        self,
        action: AuditAction,
        user_id: str,
        user_email: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Append an audit log record and return its id."""
        entry = {
            "action": action.value,
            "userId": user_id,
            "timestamp": utc_now(),
            "metadata": metadata or {},
        }
        if user_email:
            entry["userEmail"] = user_email
        return await self.store.add(Collection.AUDIT_LOGS, entry)

    async def on_user_created(self, user_id: str, email: str, role: str, created_by: Optional[str] = None) -> None:
        await self.record_audit(
            AuditAction.USER_CREATED,
            user_id,
            email,
            {"role": role, "createdBy": created_by},
        )
        logger.info(
            f"User created audit log recorded for {email}",
            extra={"context": log_context("onUserCreated", user_id, role=role)},
        )

    async def on_user_deleted(self, user_id: str, email: Optional[str], deleted_by: Optional[str] = None) -> CleanupMarkResult:
        """
        Audit the deletion and mark the user's properties and documents.

        Each collection is marked in its own batch. Marked records get
        ownerId=None, so they enter the pending-deletion state that the
        reclamation service clears after the grace period.
        """
        await self.record_audit(
            AuditAction.USER_DELETED,
            user_id,
            email,
            {"deletedBy": deleted_by},
        )

        result = CleanupMarkResult()
        now = utc_now()
        patch = {
            "ownerId": None,
            "deletedOwner": email,
            "markedForCleanup": True,
            "cleanupDate": now,
        }

        properties = await self.store.query(Collection.PROPERTIES, [("ownerId", "==", user_id)])
        if properties:
            batch = self.store.batch()
            for record in properties:
                batch.update(Collection.PROPERTIES, record["id"], patch)
            await batch.commit()
            result.properties_marked = len(properties)

        documents = await self.store.query(Collection.DOCUMENTS, [("ownerId", "==", user_id)])
        if documents:
            batch = self.store.batch()
            for record in documents:
                batch.update(Collection.DOCUMENTS, record["id"], patch)
            await batch.commit()
            result.documents_marked = len(documents)

        logger.info(
            f"User deletion processed and cleanup initiated for {email}",
            extra={"context": log_context(
                "onUserDeleted",
                user_id,
                propertiesAffected=result.properties_marked,
                documentsAffected=result.documents_marked,
            )},
        )
        return result
