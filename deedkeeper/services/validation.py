"""
Payload Validation Service

Checks user, property and document payloads before they are written.
Returns every problem found rather than stopping at the first one.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from deedkeeper.core.collections import Collection
from deedkeeper.core.errors import NotFoundError, ValidationError, service_boundary
from deedkeeper.core.user_context import CallerContext, Role
from deedkeeper.models.entities import DocumentType, PropertyType
from deedkeeper.services.auth_provider import AuthProvider
from deedkeeper.store.base import EntityStore

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\(\d{3}\) \d{3}-\d{4}$")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
ADDRESS_MIN_LENGTH = 5
ADDRESS_MAX_LENGTH = 200
DOCUMENT_NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
PASSWORD_MIN_LENGTH = 6


def is_valid_email(email: Any) -> bool:
    return isinstance(email, str) and bool(EMAIL_PATTERN.match(email))


def is_valid_role(role: Any) -> bool:
    return isinstance(role, str) and role in {r.value for r in Role}


def is_valid_phone(phone: Any) -> bool:
    return isinstance(phone, str) and bool(PHONE_PATTERN.match(phone))


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": self.errors or None}


class ValidationService:
    """Server-side validation of user, property and document payloads."""

    def __init__(self, store: EntityStore, auth_provider: AuthProvider):
        self.store = store
        self.auth_provider = auth_provider

    @service_boundary("validateData", "Data validation failed")
    async def validate(
        self,
        caller: CallerContext,
        collection: str,
        data: dict,
        operation: str,
    ) -> ValidationResult:
        """Validate `data` for `operation` on `collection`."""
        if not collection or data is None or not operation:
            raise ValidationError("Collection, data, and operation are required")
        try:
            op = Operation(operation)
        except ValueError:
            raise ValidationError(f"Invalid operation: {operation}") from None

        if collection == Collection.USERS.value:
            errors = await self._validate_user(data, op)
        elif collection == Collection.PROPERTIES.value:
            errors = await self._validate_property(data, op)
        elif collection == Collection.DOCUMENTS.value:
            errors = await self._validate_document(data, op)
        else:
            raise ValidationError("Invalid collection name")

        result = ValidationResult(valid=not errors, errors=errors)
        logger.info(
            f"Data validation completed for {collection}",
            extra={"context": {
                "functionName": "validateData",
                "userId": caller.uid,
                "collection": collection,
                "operation": op.value,
                "valid": result.valid,
                "errorCount": len(errors),
            }},
        )
        return result

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def _validate_user(self, data: dict, op: Operation) -> list[str]:
        errors: list[str] = []
        if op is Operation.CREATE:
            if not data.get("email"):
                errors.append("Email is required")
            if not data.get("name"):
                errors.append("Name is required")
            if not data.get("role"):
                errors.append("Role is required")

        email = data.get("email")
        if email and not is_valid_email(email):
            errors.append("Invalid email format")

        role = data.get("role")
        if role and not is_valid_role(role):
            errors.append("Invalid role. Must be admin, owner, or tenant")

        if op is Operation.CREATE and email:
            try:
                await self.auth_provider.get_user_by_email(email)
                errors.append("Email already exists")
            except NotFoundError:
                pass
            except Exception as e:
                logger.warning(f"Email uniqueness check failed: {e}")
                errors.append("Error checking email uniqueness")

        name = data.get("name")
        if name and not NAME_MIN_LENGTH <= len(str(name)) <= NAME_MAX_LENGTH:
            errors.append("Name must be between 2 and 100 characters")

        phone = data.get("phone")
        if phone and not is_valid_phone(phone):
            errors.append("Phone must be in format (XXX) XXX-XXXX")

        return errors

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    async def _validate_property(self, data: dict, op: Operation) -> list[str]:
        errors: list[str] = []
        if op is Operation.CREATE:
            if not data.get("address"):
                errors.append("Address is required")
            if not data.get("type"):
                errors.append("Property type is required")
            if not data.get("ownerId"):
                errors.append("Owner ID is required")
            if data.get("rentalValue") is None:
                errors.append("Rental value is required")

        address = data.get("address")
        if address and not ADDRESS_MIN_LENGTH <= len(str(address)) <= ADDRESS_MAX_LENGTH:
            errors.append("Address must be between 5 and 200 characters")

        prop_type = data.get("type")
        if prop_type and prop_type not in {t.value for t in PropertyType}:
            errors.append("Property type must be residential or commercial")

        value = data.get("rentalValue")
        if value is not None and (
            isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0
        ):
            errors.append("Rental value must be a positive number")

        owner_id = data.get("ownerId")
        if owner_id:
            try:
                owner = await self.store.get(Collection.USERS, owner_id)
                if owner is None:
                    errors.append("Owner does not exist")
                elif owner.get("role") not in (Role.OWNER.value, Role.ADMIN.value):
                    errors.append("Assigned user must have owner or admin role")
            except Exception as e:
                logger.warning(f"Owner lookup failed for {owner_id}: {e}")
                errors.append("Error validating owner")

        start = data.get("contractStartDate")
        if start and _parse_date(start) is None:
            errors.append("Invalid contract start date format")

        return errors

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def _validate_document(self, data: dict, op: Operation) -> list[str]:
        errors: list[str] = []
        if op is Operation.CREATE:
            if not data.get("displayName"):
                errors.append("Document name is required")
            if not data.get("type"):
                errors.append("Document type is required")
            if not data.get("ownerId"):
                errors.append("Owner ID is required")

        name = data.get("displayName")
        if name and len(str(name)) > DOCUMENT_NAME_MAX_LENGTH:
            errors.append("Document name must be between 1 and 100 characters")

        doc_type = data.get("type")
        valid_types = [t.value for t in DocumentType]
        if doc_type and doc_type not in valid_types:
            errors.append(f"Document type must be one of: {', '.join(valid_types)}")

        property_id = data.get("propertyId")
        if property_id:
            try:
                if await self.store.get(Collection.PROPERTIES, property_id) is None:
                    errors.append("Property does not exist")
            except Exception as e:
                logger.warning(f"Property lookup failed for {property_id}: {e}")
                errors.append("Error validating property")

        owner_id = data.get("ownerId")
        if owner_id:
            try:
                if await self.store.get(Collection.USERS, owner_id) is None:
                    errors.append("Owner does not exist")
            except Exception as e:
                logger.warning(f"Owner lookup failed for {owner_id}: {e}")
                errors.append("Error validating owner")

        description = data.get("description")
        if description and len(str(description)) > DESCRIPTION_MAX_LENGTH:
            errors.append("Description must be less than 500 characters")

        return errors


def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None
