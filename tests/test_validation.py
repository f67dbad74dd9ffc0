"""
Deedkeeper - Validation Service Tests
"""

import pytest

from deedkeeper.core.errors import ValidationError
from deedkeeper.core.user_context import Role
from deedkeeper.services.validation import (
    ValidationService,
    is_valid_email,
    is_valid_phone,
    is_valid_role,
)

from factories import register, seed_user


@pytest.fixture
def validator(store, provider) -> ValidationService:
    return ValidationService(store, provider)


def test_format_helpers():
    assert is_valid_email("a@b.co")
    assert not is_valid_email("a b@c.d")
    assert is_valid_phone("(555) 123-4567")
    assert not is_valid_phone("555-123-4567")
    assert is_valid_role("tenant")
    assert not is_valid_role("Tenant")


# =============================================================================
# Users
# =============================================================================

@pytest.mark.anyio
async def test_valid_user_create(validator, admin):
    result = await validator.validate(admin, "users", {
        "email": "new@example.com",
        "name": "New Person",
        "role": "owner",
        "phone": "(555) 123-4567",
    }, "create")

    assert result.to_dict() == {"valid": True, "errors": None}


@pytest.mark.anyio
async def test_user_create_collects_every_error(validator, provider, store, admin):
    await register(provider, store, "taken@example.com", Role.OWNER)

    result = await validator.validate(admin, "users", {
        "email": "taken@example.com",
        "name": "X",
        "role": "boss",
        "phone": "12345",
    }, "create")

    assert result.valid is False
    assert result.errors == [
        "Invalid role. Must be admin, owner, or tenant",
        "Email already exists",
        "Name must be between 2 and 100 characters",
        "Phone must be in format (XXX) XXX-XXXX",
    ]


@pytest.mark.anyio
async def test_user_update_skips_required_fields(validator, admin):
    result = await validator.validate(admin, "users", {"phone": "(555) 123-4567"}, "update")
    assert result.valid


# =============================================================================
# Properties and Documents
# =============================================================================

@pytest.mark.anyio
async def test_property_create(validator, store, admin):
    await seed_user(store, "U1", role="owner")
    await seed_user(store, "T1", role="tenant")

    ok = await validator.validate(admin, "properties", {
        "address": "12 Oak Avenue",
        "type": "residential",
        "ownerId": "U1",
        "rentalValue": 1200,
        "contractStartDate": "2026-01-01",
    }, "create")
    assert ok.valid

    bad = await validator.validate(admin, "properties", {
        "address": "12",
        "type": "castle",
        "ownerId": "T1",
        "rentalValue": -5,
        "contractStartDate": "next tuesday",
    }, "create")
    assert bad.errors == [
        "Address must be between 5 and 200 characters",
        "Property type must be residential or commercial",
        "Rental value must be a positive number",
        "Assigned user must have owner or admin role",
        "Invalid contract start date format",
    ]


@pytest.mark.anyio
async def test_property_create_missing_fields(validator, admin):
    result = await validator.validate(admin, "properties", {}, "create")
    assert result.errors == [
        "Address is required",
        "Property type is required",
        "Owner ID is required",
        "Rental value is required",
    ]


@pytest.mark.anyio
async def test_document_references(validator, clean_graph, admin):
    ok = await validator.validate(admin, "documents", {
        "displayName": "deed.pdf",
        "type": "deed",
        "ownerId": "U1",
        "propertyId": "P1",
    }, "create")
    assert ok.valid

    bad = await validator.validate(admin, "documents", {
        "displayName": "x" * 101,
        "type": "memo",
        "ownerId": "U404",
        "propertyId": "P404",
        "description": "y" * 501,
    }, "update")
    assert bad.errors[0] == "Document name must be between 1 and 100 characters"
    assert bad.errors[1].startswith("Document type must be one of: deed, contract")
    assert bad.errors[2:] == [
        "Property does not exist",
        "Owner does not exist",
        "Description must be less than 500 characters",
    ]


# =============================================================================
# Request Errors
# =============================================================================

@pytest.mark.anyio
@pytest.mark.parametrize("collection,data,operation,message", [
    ("", {}, "create", "Collection, data, and operation are required"),
    ("users", None, "create", "Collection, data, and operation are required"),
    ("users", {}, "upsert", "Invalid operation: upsert"),
    ("backups", {}, "create", "Invalid collection name"),
])
async def test_bad_requests(validator, admin, collection, data, operation, message):
    with pytest.raises(ValidationError, match=message):
        await validator.validate(admin, collection, data, operation)
