"""
Entity shapes for users, properties and documents.

The store is schemaless; these models describe a well-formed record and are
used when the service layer creates one. camelCase aliases are the field
names on the wire and in the store.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from deedkeeper.core.user_context import DocumentVisibility, Role
from deedkeeper.core.utc import utc_now


class PropertyType(str, Enum):
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"


class DocumentType(str, Enum):
    DEED = "deed"
    CONTRACT = "contract"
    INVOICE = "invoice"
    RECEIPT = "receipt"
    INSURANCE = "insurance"
    TAX_DOCUMENT = "tax_document"
    MAINTENANCE = "maintenance"
    INSPECTION = "inspection"
    OTHER = "other"


class BackupStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class BootstrapState(str, Enum):
    NOT_STARTED = "not_started"
    COMPLETED = "completed"


class AuditAction(str, Enum):
    USER_CREATED = "user_created"
    USER_DELETED = "user_deleted"
    ROLE_CHANGED = "role_changed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"


class _Entity(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    def to_record(self) -> dict:
        """Store representation (camelCase keys, unset optionals dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class UserEntity(_Entity):
    email: str
    name: str
    phone: str = ""
    role: Role
    is_active: bool = Field(default=True, alias="isActive")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")


class PropertyEntity(_Entity):
    address: str
    type: PropertyType
    owner_id: str = Field(alias="ownerId")
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    rental_value: float = Field(default=0, alias="rentalValue")
    contract_start_date: Optional[datetime] = Field(default=None, alias="contractStartDate")
    is_active: bool = Field(default=True, alias="isActive")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")


class DocumentEntity(_Entity):
    owner_id: str = Field(alias="ownerId")
    property_id: Optional[str] = Field(default=None, alias="propertyId")
    display_name: str = Field(alias="displayName")
    original_name: str = Field(default="", alias="originalName")
    mime_type: str = Field(default="application/octet-stream", alias="mimeType")
    size: int = 0
    uploaded_by: str = Field(default="", alias="uploadedBy")
    uploaded_at: datetime = Field(default_factory=utc_now, alias="uploadedAt")
    type: DocumentType = DocumentType.OTHER
    visibility: DocumentVisibility = DocumentVisibility.BOTH
    is_active: bool = Field(default=True, alias="isActive")
    tags: list[str] = Field(default_factory=list)
    description: Optional[str] = None

    def to_record(self) -> dict:
        # propertyId is always present on documents, null when unattached
        record = super().to_record()
        record["propertyId"] = self.property_id
        return record
