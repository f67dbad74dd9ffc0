"""
Property and Document Records

Creation, tenant assignment and role-scoped reads for properties and
documents. References are checked here at write time; after that, nothing
stops them from dangling.

Reads: admins see everything, owners see what they own, tenants see what is
attached to the properties they rent. Owners and tenants additionally see
only documents whose visibility includes their role.
"""

import logging
from typing import Optional

from deedkeeper.core.collections import Collection
from deedkeeper.core.errors import AuthorizationError, NotFoundError, ValidationError, service_boundary
from deedkeeper.core.security import AuthorizationGate
from deedkeeper.core.user_context import CallerContext, DocumentVisibility, Role, document_visible_to
from deedkeeper.core.utc import utc_now
from deedkeeper.models.entities import DocumentEntity, PropertyEntity
from deedkeeper.store.base import DELETE_FIELD, EntityStore

logger = logging.getLogger(__name__)


class RecordService:
    def __init__(self, store: EntityStore, gate: Optional[AuthorizationGate] = None):
        self.store = store
        self.gate = gate or AuthorizationGate()

    def _require_owner_or_admin(self, caller: CallerContext, owner_id: Optional[str]) -> None:
        """Admins act on anything; owners only on their own records."""
        self.gate.require_role(caller, Role.ADMIN, Role.OWNER)
        if caller.role is Role.OWNER:
            self.gate.require_self_or_admin(caller, owner_id or "")

    async def _require_user(self, uid: str, role: Optional[Role], label: str) -> dict:
        user = await self.store.get(Collection.USERS, uid)
        if user is None:
            raise NotFoundError(f"{label} {uid} not found")
        if role is not None and user.get("role") != role.value:
            raise ValidationError(f"{label} {uid} must have role {role.value}")
        return user

    async def _require_property(self, property_id: str) -> dict:
        prop = await self.store.get(Collection.PROPERTIES, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")
        return prop

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @service_boundary("createProperty", "Failed to create property")
    async def create_property(self, caller: CallerContext, data: PropertyEntity) -> str:
        self._require_owner_or_admin(caller, data.owner_id)
        await self._require_user(data.owner_id, Role.OWNER, "Owner")
        if data.tenant_id:
            await self._require_user(data.tenant_id, Role.TENANT, "Tenant")
        property_id = await self.store.add(Collection.PROPERTIES, data.to_record())
        logger.info(f"Property {property_id} created for owner {data.owner_id}")
        return property_id

    @service_boundary("assignTenant", "Failed to assign tenant")
    async def assign_tenant(self, caller: CallerContext, property_id: str, tenant_id: str) -> None:
        prop = await self._require_property(property_id)
        self._require_owner_or_admin(caller, prop.get("ownerId"))
        await self._require_user(tenant_id, Role.TENANT, "Tenant")
        await self.store.update(Collection.PROPERTIES, property_id, {
            "tenantId": tenant_id,
            "updatedAt": utc_now(),
        })

    @service_boundary("unassignTenant", "Failed to unassign tenant")
    async def unassign_tenant(self, caller: CallerContext, property_id: str) -> None:
        """Remove tenantId from the record (the field is dropped, not nulled)."""
        prop = await self._require_property(property_id)
        self._require_owner_or_admin(caller, prop.get("ownerId"))
        await self.store.update(Collection.PROPERTIES, property_id, {
            "tenantId": DELETE_FIELD,
            "updatedAt": utc_now(),
        })

    @service_boundary("deleteProperty", "Failed to delete property")
    async def delete_property(self, caller: CallerContext, property_id: str) -> int:
        """Delete a property and its documents in one batch. Returns documents removed."""
        prop = await self._require_property(property_id)
        self._require_owner_or_admin(caller, prop.get("ownerId"))
        documents = await self.store.query(Collection.DOCUMENTS, [("propertyId", "==", property_id)])

        batch = self.store.batch()
        for doc in documents:
            batch.delete(Collection.DOCUMENTS, doc["id"])
        batch.delete(Collection.PROPERTIES, property_id)
        await batch.commit()

        logger.info(f"Property {property_id} deleted with {len(documents)} documents")
        return len(documents)

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    @service_boundary("createDocument", "Failed to create document")
    async def create_document(self, caller: CallerContext, data: DocumentEntity) -> str:
        self._require_owner_or_admin(caller, data.owner_id)
        await self._require_user(data.owner_id, None, "Owner")
        if data.property_id:
            await self._require_property(data.property_id)
        if not data.uploaded_by:
            data = data.model_copy(update={"uploaded_by": caller.uid})
        document_id = await self.store.add(Collection.DOCUMENTS, data.to_record())
        logger.info(f"Document {document_id} created for owner {data.owner_id}")
        return document_id

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _require_reader(self, caller: CallerContext) -> Role:
        self.gate.require_role(caller, Role.ADMIN, Role.OWNER, Role.TENANT)
        return caller.role

    @staticmethod
    def _visibility_allows(role: Role, doc: dict) -> bool:
        try:
            visibility = DocumentVisibility(doc.get("visibility") or DocumentVisibility.BOTH.value)
        except ValueError:
            # Unknown visibility: admins only
            return role is Role.ADMIN
        return document_visible_to(role, visibility)

    @service_boundary("listProperties", "Failed to list properties")
    async def list_properties(self, caller: CallerContext) -> list[dict]:
        role = self._require_reader(caller)
        if role is Role.ADMIN:
            filters = []
        elif role is Role.OWNER:
            filters = [("ownerId", "==", caller.uid)]
        else:
            filters = [("tenantId", "==", caller.uid)]
        return await self.store.query(Collection.PROPERTIES, filters)

    @service_boundary("listDocuments", "Failed to list documents")
    async def list_documents(self, caller: CallerContext, property_id: Optional[str] = None) -> list[dict]:
        """Active documents the caller may see, optionally for one property."""
        role = self._require_reader(caller)
        filters = [("isActive", "==", True)]
        if property_id:
            filters.append(("propertyId", "==", property_id))

        if role is Role.ADMIN:
            return await self.store.query(Collection.DOCUMENTS, filters)
        if role is Role.OWNER:
            documents = await self.store.query(Collection.DOCUMENTS, [*filters, ("ownerId", "==", caller.uid)])
        else:
            rented = {p["id"] for p in await self.list_properties(caller)}
            documents = [
                d for d in await self.store.query(Collection.DOCUMENTS, filters)
                if d.get("propertyId") in rented
            ]
        return [d for d in documents if self._visibility_allows(role, d)]

    @service_boundary("getDocument", "Failed to get document")
    async def get_document(self, caller: CallerContext, document_id: str) -> dict:
        role = self._require_reader(caller)
        doc = await self.store.get(Collection.DOCUMENTS, document_id)
        if doc is None:
            raise NotFoundError(f"Document {document_id} not found")
        if role is Role.ADMIN:
            return doc

        if role is Role.OWNER:
            related = doc.get("ownerId") == caller.uid
        else:
            property_id = doc.get("propertyId")
            prop = await self.store.get(Collection.PROPERTIES, property_id) if property_id else None
            related = prop is not None and prop.get("tenantId") == caller.uid
        if not related or not self._visibility_allows(role, doc):
            raise AuthorizationError("You do not have access to this document")
        return doc
