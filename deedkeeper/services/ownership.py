"""
Ownership Transfer Workflow

Reassigns a property to a new owner and cascades the new ownerId to every
document attached to the property, so document ownership never silently
diverges from property ownership.

The property update and the document batch are two separate writes. If the
batch fails after the property was updated, the transfer is reported as an
internal error and the divergence stays visible to the integrity checker.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from deedkeeper.core.collections import Collection
from deedkeeper.core.errors import (
    InternalError,
    NotFoundError,
    ValidationError,
    log_context,
    service_boundary,
)
from deedkeeper.core.security import AuthorizationGate
from deedkeeper.core.user_context import CallerContext, Role
from deedkeeper.core.utc import utc_now
from deedkeeper.models.entities import AuditAction
from deedkeeper.services.lifecycle import UserLifecycleService
from deedkeeper.services.notifications import NotificationSender, NotificationType, notify
from deedkeeper.store.base import DELETE_FIELD, EntityStore

logger = logging.getLogger(__name__)

# A transfer rescues records that were waiting for reclamation
CLEAR_CLEANUP_MARK = {
    "markedForCleanup": DELETE_FIELD,
    "cleanupDate": DELETE_FIELD,
    "deletedOwner": DELETE_FIELD,
}


@dataclass
class TransferResult:
    property_id: str
    previous_owner_id: Optional[str]
    new_owner_id: str
    documents_updated: int

    def to_dict(self) -> dict:
        return {
            "propertyId": self.property_id,
            "previousOwnerId": self.previous_owner_id,
            "newOwnerId": self.new_owner_id,
            "documentsUpdated": self.documents_updated,
        }


class OwnershipTransferService:
    def __init__(
        self,
        store: EntityStore,
        lifecycle: UserLifecycleService,
        notifier: NotificationSender,
        gate: Optional[AuthorizationGate] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.notifier = notifier
        self.gate = gate or AuthorizationGate()

    async def _load_new_owner(self, new_owner_id: str) -> dict:
        owner = await self.store.get(Collection.USERS, new_owner_id)
        if owner is None:
            raise NotFoundError(f"User {new_owner_id} not found")
        if owner.get("role") != Role.OWNER.value:
            raise ValidationError(
                f"User {new_owner_id} has role {owner.get('role')}, expected owner"
            )
        if not owner.get("isActive", True):
            raise ValidationError(f"User {new_owner_id} is inactive")
        return owner

    @service_boundary("transferOwnership", "Ownership transfer failed")
    async def transfer(
        self,
        caller: CallerContext,
        property_id: str,
        new_owner_id: str,
    ) -> TransferResult:
        self.gate.require_admin(caller)
        if not new_owner_id or not new_owner_id.strip():
            raise ValidationError("New owner ID is required")

        prop = await self.store.get(Collection.PROPERTIES, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")
        owner = await self._load_new_owner(new_owner_id)
        previous_owner_id = prop.get("ownerId")
        context = log_context(
            "transferOwnership",
            caller.uid,
            propertyId=property_id,
            previousOwnerId=previous_owner_id,
            newOwnerId=new_owner_id,
        )

        await self.store.update(Collection.PROPERTIES, property_id, {
            "ownerId": new_owner_id,
            "updatedAt": utc_now(),
            **CLEAR_CLEANUP_MARK,
        })

        try:
            documents_updated = await self._cascade_to_documents(property_id, new_owner_id)
        except Exception as e:
            logger.error(
                f"Property {property_id} transferred but document cascade failed: {e}",
                exc_info=True,
                extra={"context": context},
            )
            raise InternalError(
                "Ownership transfer partially applied: documents were not updated"
            ) from e

        await self.lifecycle.record_audit(
            AuditAction.OWNERSHIP_TRANSFERRED,
            caller.uid,
            caller.email,
            {
                "propertyId": property_id,
                "previousOwnerId": previous_owner_id,
                "newOwnerId": new_owner_id,
                "documentsUpdated": documents_updated,
            },
        )
        await self._notify(owner, prop)

        logger.info(
            f"Property {property_id} transferred to {new_owner_id}",
            extra={"context": {**context, "documentsUpdated": documents_updated}},
        )
        return TransferResult(
            property_id=property_id,
            previous_owner_id=previous_owner_id,
            new_owner_id=new_owner_id,
            documents_updated=documents_updated,
        )

    async def _cascade_to_documents(self, property_id: str, new_owner_id: str) -> int:
        """
        Give every document attached to the property the new owner, in one
        batch. Returns the number of documents changed.

        A document deleted between the query and the commit fails the batch
        with NotFoundError; the attached set is then read again and the
        batch retried once without it.
        """
        for attempt in range(2):
            documents = await self.store.query(Collection.DOCUMENTS, [("propertyId", "==", property_id)])
            stale = [
                d for d in documents
                if d.get("ownerId") != new_owner_id or d.get("markedForCleanup")
            ]
            if not stale:
                return 0
            batch = self.store.batch()
            for doc in stale:
                batch.update(Collection.DOCUMENTS, doc["id"], {
                    "ownerId": new_owner_id,
                    **CLEAR_CLEANUP_MARK,
                })
            try:
                await batch.commit()
            except NotFoundError:
                if attempt:
                    raise
                logger.info(f"Document on property {property_id} vanished during transfer; retrying cascade")
                continue
            return len(stale)
        return 0

    async def _notify(self, owner: dict, prop: dict) -> None:
        await notify(self.notifier, NotificationType.PROPERTY_ASSIGNED, owner.get("email"), {
            "name": owner.get("name"),
            "address": prop.get("address") or prop["id"],
            "type": prop.get("type", ""),
            "value": prop.get("rentalValue", ""),
        })
