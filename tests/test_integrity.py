"""
Deedkeeper - Integrity Checker Tests
Dangling references, missing fields, divergence and report stability.
"""

import pytest

from deedkeeper.core.collections import Collection
from deedkeeper.core.errors import AuthorizationError, ValidationError
from deedkeeper.services.integrity import IntegrityChecker, is_pending_deletion, parse_collections

from factories import NOW, seed_document, seed_property, seed_user


@pytest.fixture
def checker(store) -> IntegrityChecker:
    return IntegrityChecker(store)


# =============================================================================
# Clean Data
# =============================================================================

@pytest.mark.anyio
async def test_clean_graph_reports_nothing(clean_graph, checker, admin):
    report = await checker.check(admin)

    assert report.is_clean
    assert report.to_dict() == {
        "issues": [],
        "summary": {
            "checkedCounts": {"users": 1, "properties": 1, "documents": 1},
            "issuesFound": 0,
        },
    }


@pytest.mark.anyio
async def test_attached_documents_resolve_to_properties(clean_graph, checker, admin):
    report = await checker.check(admin)
    assert report.is_clean

    for doc in await clean_graph.query(Collection.DOCUMENTS):
        if doc.get("propertyId"):
            assert await clean_graph.get(Collection.PROPERTIES, doc["propertyId"]) is not None


# =============================================================================
# Dangling References
# =============================================================================

@pytest.mark.anyio
async def test_deleted_owner_is_reported(clean_graph, checker, admin):
    await clean_graph.delete(Collection.USERS, "U1")

    report = await checker.check(admin)

    assert "Property P1 references non-existent owner U1" in report.issues
    assert "Document D1 references non-existent owner U1" in report.issues


@pytest.mark.anyio
async def test_missing_property_and_tenant(store, checker, admin):
    await seed_user(store, "U1", role="owner")
    await seed_property(store, "P1", "U1", tenantId="T9")
    await seed_document(store, "D1", "U1", "P404")

    report = await checker.check(admin)

    assert report.issues == [
        "Property P1 references non-existent tenant T9",
        "Document D1 references non-existent property P404",
    ]


@pytest.mark.anyio
async def test_owner_with_wrong_role(store, checker, admin):
    await seed_user(store, "T1", role="tenant")
    await seed_property(store, "P1", "T1")

    report = await checker.check(admin)

    assert report.issues == ["Property P1 owner T1 has role tenant, expected owner"]


@pytest.mark.anyio
async def test_owner_divergence(store, checker, admin):
    await seed_user(store, "U1", role="owner")
    await seed_user(store, "U2", role="owner")
    await seed_property(store, "P1", "U2")
    await seed_document(store, "D1", "U1", "P1")

    report = await checker.check(admin)

    assert report.issues == ["Document D1 owner U1 differs from property P1 owner U2"]


# =============================================================================
# Field Checks
# =============================================================================

@pytest.mark.anyio
async def test_missing_fields_and_invalid_values(store, checker, admin):
    await store.set(Collection.USERS, "U1", {"role": "superuser"})
    await seed_property(store, "P1", None, address="", type="castle")
    await seed_document(store, "D1", None, None, displayName="")

    report = await checker.check(admin)

    assert report.issues == [
        "User U1 missing email",
        "User U1 missing name",
        "User U1 has invalid role: superuser",
        "Property P1 missing address",
        "Property P1 has invalid type: castle",
        "Document D1 missing displayName",
        "Document D1 missing ownerId",
    ]


@pytest.mark.anyio
async def test_pending_deletion_is_not_missing_owner(store, checker, admin):
    await seed_property(store, "P1", None, markedForCleanup=True, cleanupDate=NOW, deletedOwner="U1")
    await seed_document(store, "D1", None, "P1", markedForCleanup=True, cleanupDate=NOW, deletedOwner="U1")

    report = await checker.check(admin)

    assert report.is_clean


def test_is_pending_deletion():
    assert is_pending_deletion({"ownerId": None, "markedForCleanup": True})
    assert not is_pending_deletion({"ownerId": "U1", "markedForCleanup": True})
    assert not is_pending_deletion({"ownerId": None})


# =============================================================================
# Stability and Failures
# =============================================================================

@pytest.mark.anyio
async def test_repeated_runs_are_identical(clean_graph, checker, admin):
    await clean_graph.delete(Collection.USERS, "U1")
    await seed_document(clean_graph, "D2", "U7", "P9")

    first = await checker.check(admin)
    second = await checker.check(admin)

    assert first.to_dict() == second.to_dict()
    assert first.issues_found == 4


@pytest.mark.anyio
async def test_lookup_failure_becomes_issue(clean_graph, checker, admin, monkeypatch):
    original_get = clean_graph.get

    async def flaky_get(collection, doc_id):
        if collection is Collection.USERS:
            raise RuntimeError("store unavailable")
        return await original_get(collection, doc_id)

    monkeypatch.setattr(clean_graph, "get", flaky_get)

    report = await checker.check(admin, ["properties", "documents"])

    assert report.issues == [
        "Error checking owner U1 for property P1",
        "Error checking owner U1 for document D1",
    ]
    assert report.checked_counts == {"users": 0, "properties": 1, "documents": 1}


@pytest.mark.anyio
async def test_collection_subset(clean_graph, checker, admin):
    report = await checker.check(admin, ["documents"])
    assert report.checked_counts == {"users": 0, "properties": 0, "documents": 1}


def test_parse_collections_rejects_unknown():
    with pytest.raises(ValidationError):
        parse_collections(["backups"])
    with pytest.raises(ValidationError):
        parse_collections(["nonsense"])
    with pytest.raises(ValidationError):
        parse_collections([])


@pytest.mark.anyio
async def test_requires_admin(clean_graph, checker, owner_ctx):
    with pytest.raises(AuthorizationError):
        await checker.check(owner_ctx)
