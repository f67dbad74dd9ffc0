"""
Deedkeeper - Auth Service Tests
Bootstrap, role claims and user administration.
"""

from unittest.mock import AsyncMock

import pytest

from deedkeeper.core.collections import BOOTSTRAP_RECORD_ID, Collection
from deedkeeper.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from deedkeeper.core.security import CredentialResolver
from deedkeeper.core.user_context import CallerContext, Role
from deedkeeper.services.auth_provider import LocalAuthProvider
from deedkeeper.services.auth_service import AuthService
from deedkeeper.services.integrity import IntegrityChecker
from deedkeeper.services.lifecycle import UserLifecycleService

from factories import INIT_SECRET, TEST_SECRET, register, seed_document, seed_property


@pytest.fixture
def auth(store, provider, settings) -> AuthService:
    return AuthService(store, provider, UserLifecycleService(store), settings=settings)


@pytest.fixture
def notifying_auth(store, provider, settings, notifier) -> AuthService:
    return AuthService(store, provider, UserLifecycleService(store), settings=settings, notifier=notifier)


# =============================================================================
# Bootstrap
# =============================================================================

@pytest.mark.anyio
async def test_bootstrap_grants_admin_once(auth, provider, store):
    user = await provider.create_user("first@example.com", "secret123", display_name="First")
    token = await provider.issue_credential(user.uid)
    resolver = CredentialResolver(provider)
    assert not await auth.is_bootstrap_completed()

    result = await auth.bootstrap("first@example.com", INIT_SECRET)

    assert result.uid == user.uid
    assert result.already_completed is False
    assert await auth.is_bootstrap_completed()
    assert (await provider.get_user(user.uid)).role is Role.ADMIN

    record = await store.get(Collection.USERS, user.uid)
    assert record["role"] == "admin"
    assert record["name"] == "First"

    bootstrap = await store.get(Collection.SYSTEM, BOOTSTRAP_RECORD_ID)
    assert bootstrap["state"] == "completed"
    assert bootstrap["adminUid"] == user.uid

    # Old credential keeps its missing role until refreshed
    assert (await resolver.resolve(token)).role is None
    assert (await resolver.resolve(await resolver.refresh(token))).role is Role.ADMIN


@pytest.mark.anyio
async def test_bootstrap_is_idempotent(auth, provider):
    first = await provider.create_user("first@example.com", "secret123")
    second = await provider.create_user("second@example.com", "secret123")
    await auth.bootstrap("first@example.com", INIT_SECRET)

    again = await auth.bootstrap("second@example.com", INIT_SECRET)
    wrong_secret = await auth.bootstrap("second@example.com", "nope")

    assert again.already_completed is True
    assert again.uid == first.uid
    assert wrong_secret.already_completed is True
    assert (await provider.get_user(second.uid)).role is None


@pytest.mark.anyio
async def test_bootstrap_rejects_wrong_secret(auth, provider):
    await provider.create_user("first@example.com", "secret123")

    with pytest.raises(AuthorizationError, match="Invalid admin secret"):
        await auth.bootstrap("first@example.com", "guess")

    assert not await auth.is_bootstrap_completed()


@pytest.mark.anyio
async def test_bootstrap_disabled_without_configured_secret(store, provider, settings):
    unconfigured = settings.model_copy(update={"admin_init_secret": ""})
    auth = AuthService(store, provider, UserLifecycleService(store), settings=unconfigured)
    await provider.create_user("first@example.com", "secret123")

    with pytest.raises(AuthorizationError):
        await auth.bootstrap("first@example.com", "")


@pytest.mark.anyio
async def test_bootstrap_unknown_or_invalid_email(auth):
    with pytest.raises(NotFoundError):
        await auth.bootstrap("nobody@example.com", INIT_SECRET)
    with pytest.raises(ValidationError):
        await auth.bootstrap("not-an-email", INIT_SECRET)


# =============================================================================
# Claims
# =============================================================================

@pytest.mark.anyio
async def test_set_role_updates_claim_record_and_audit(auth, provider, store, admin):
    uid = await register(provider, store, "t@example.com", Role.TENANT)

    await auth.set_role(admin, uid, "owner")

    assert (await provider.get_user(uid)).role is Role.OWNER
    assert (await store.get(Collection.USERS, uid))["role"] == "owner"
    audits = await store.query(Collection.AUDIT_LOGS, [("action", "==", "role_changed")])
    assert audits[0]["metadata"] == {"previousRole": "tenant", "newRole": "owner", "changedBy": "admin-1"}


@pytest.mark.anyio
async def test_set_role_validation(auth, provider, store, admin, owner_ctx):
    uid = await register(provider, store, "t@example.com", Role.TENANT)

    with pytest.raises(ValidationError, match="Invalid role"):
        await auth.set_role(admin, uid, "superuser")
    with pytest.raises(AuthorizationError):
        await auth.set_role(owner_ctx, uid, "owner")
    with pytest.raises(NotFoundError):
        await auth.set_role(admin, "ghost", "owner")


@pytest.mark.anyio
async def test_get_claims_self_or_admin(auth, provider, store, admin):
    uid = await register(provider, store, "o@example.com", Role.OWNER)
    me = CallerContext(uid=uid, role=Role.OWNER)

    own = await auth.get_claims(me)
    assert own["uid"] == uid
    assert own["claims"]["role"] == "owner"

    assert (await auth.get_claims(admin, uid))["email"] == "o@example.com"

    with pytest.raises(AuthorizationError):
        await auth.get_claims(me, "someone-else")


# =============================================================================
# Users
# =============================================================================

@pytest.mark.anyio
async def test_create_user(auth, provider, store, admin):
    record = await auth.create_user(admin, "new@example.com", "secret123", "New Person", "owner", phone="(555) 123-4567")

    assert record["role"] == "owner"
    assert record["isActive"] is True
    assert (await provider.get_user(record["id"])).role is Role.OWNER
    audits = await store.query(Collection.AUDIT_LOGS, [("action", "==", "user_created")])
    assert audits[0]["metadata"] == {"role": "owner", "createdBy": "admin-1"}


@pytest.mark.anyio
async def test_create_user_duplicate_email(auth, admin):
    await auth.create_user(admin, "dup@example.com", "secret123", "First", "tenant")

    with pytest.raises(ConflictError):
        await auth.create_user(admin, "DUP@example.com", "secret123", "Second", "tenant")


@pytest.mark.anyio
@pytest.mark.parametrize("email,password,name,role,phone", [
    ("bad-email", "secret123", "Name", "owner", ""),
    ("a@example.com", "123", "Name", "owner", ""),
    ("a@example.com", "secret123", "N", "owner", ""),
    ("a@example.com", "secret123", "Name", "landlord", ""),
    ("a@example.com", "secret123", "Name", "owner", "555-1234"),
])
async def test_create_user_validation(auth, admin, email, password, name, role, phone):
    with pytest.raises(ValidationError):
        await auth.create_user(admin, email, password, name, role, phone=phone)


@pytest.mark.anyio
async def test_self_update_limited_to_profile(auth, provider, store):
    uid = await register(provider, store, "o@example.com", Role.OWNER)
    me = CallerContext(uid=uid, role=Role.OWNER)

    updated = await auth.update_user(me, uid, {"name": "Renamed", "phone": "(555) 000-1111"})
    assert updated["name"] == "Renamed"
    assert (await provider.get_user(uid)).display_name == "Renamed"

    with pytest.raises(AuthorizationError):
        await auth.update_user(me, uid, {"role": "admin"})
    with pytest.raises(AuthorizationError):
        await auth.update_user(me, "other-user", {"name": "Nope"})
    with pytest.raises(ValidationError, match="Unsupported fields"):
        await auth.update_user(me, uid, {"email": "x@example.com"})


@pytest.mark.anyio
async def test_admin_deactivates_user(auth, provider, store, admin):
    uid = await register(provider, store, "o@example.com", Role.OWNER)

    updated = await auth.update_user(admin, uid, {"isActive": False})

    assert updated["isActive"] is False
    claims = (await provider.get_user(uid)).custom_claims
    assert claims == {"role": "owner", "isActive": False}


@pytest.mark.anyio
async def test_delete_user_marks_records_for_cleanup(auth, provider, store, admin):
    uid = await register(provider, store, "o@example.com", Role.OWNER)
    await seed_property(store, "P1", uid)
    await seed_document(store, "D1", uid, "P1")

    result = await auth.delete_user(admin, uid)

    assert result.to_dict() == {"propertiesMarked": 1, "documentsMarked": 1}
    assert await store.get(Collection.USERS, uid) is None
    with pytest.raises(NotFoundError):
        await provider.get_user(uid)

    prop = await store.get(Collection.PROPERTIES, "P1")
    assert prop["ownerId"] is None
    assert prop["markedForCleanup"] is True
    assert prop["deletedOwner"] == "o@example.com"
    doc = await store.get(Collection.DOCUMENTS, "D1")
    assert doc["ownerId"] is None
    assert doc["markedForCleanup"] is True

    audits = await store.query(Collection.AUDIT_LOGS, [("action", "==", "user_deleted")])
    assert audits[0]["metadata"] == {"deletedBy": "admin-1"}


@pytest.mark.anyio
async def test_delete_unknown_user(auth, admin):
    with pytest.raises(NotFoundError):
        await auth.delete_user(admin, "ghost")


@pytest.mark.anyio
async def test_list_users_filters(auth, provider, store, admin):
    await register(provider, store, "anna@example.com", Role.OWNER)
    await register(provider, store, "bob@example.com", Role.TENANT)

    owners = await auth.list_users(admin, role="owner")
    assert [u["email"] for u in owners] == ["anna@example.com"]

    found = await auth.list_users(admin, search="BOB")
    assert [u["email"] for u in found] == ["bob@example.com"]

    assert len(await auth.list_users(admin, is_active=True)) == 2


@pytest.mark.anyio
async def test_sign_in(auth, provider, store):
    await register(provider, store, "o@example.com", Role.OWNER, password="hunter22")

    token = await auth.sign_in("o@example.com", "hunter22")
    assert (await CredentialResolver(provider).resolve(token)).role is Role.OWNER


# =============================================================================
# Self-registration
# =============================================================================

@pytest.mark.anyio
async def test_register_creates_roleless_auth_user(auth, provider, store):
    result = await auth.register("self@example.com", "secret123", "Self Made")

    user = await provider.get_user(result["uid"])
    assert user.role is None
    assert user.display_name == "Self Made"
    assert await store.get(Collection.USERS, result["uid"]) is None


@pytest.mark.anyio
async def test_register_rejects_bad_input(auth):
    with pytest.raises(ValidationError):
        await auth.register("nope", "secret123")
    with pytest.raises(ValidationError):
        await auth.register("a@example.com", "123")

    await auth.register("a@example.com", "secret123")
    with pytest.raises(ConflictError):
        await auth.register("a@example.com", "secret123")


@pytest.mark.anyio
async def test_first_role_creates_profile(auth, store, admin):
    uid = (await auth.register("self@example.com", "secret123", "Self Made"))["uid"]

    await auth.set_role(admin, uid, "tenant")

    record = await store.get(Collection.USERS, uid)
    assert record["role"] == "tenant"
    assert record["name"] == "Self Made"
    assert record["email"] == "self@example.com"


@pytest.mark.anyio
async def test_roleless_user_cannot_create_partial_profile(auth, store, admin):
    uid = (await auth.register("self@example.com", "secret123", "Self Made"))["uid"]
    me = CallerContext(uid=uid, role=None, email="self@example.com")

    with pytest.raises(NotFoundError, match="no profile yet"):
        await auth.update_user(me, uid, {"phone": "(555) 123-4567"})
    assert await store.get(Collection.USERS, uid) is None

    await auth.set_role(admin, uid, "owner")
    await auth.update_user(me, uid, {"phone": "(555) 123-4567"})

    record = await store.get(Collection.USERS, uid)
    assert record["email"] == "self@example.com"
    assert record["name"] == "Self Made"
    assert record["phone"] == "(555) 123-4567"
    report = await IntegrityChecker(store).check(admin, ["users"])
    assert report.is_clean


@pytest.mark.anyio
async def test_admin_role_update_creates_full_profile(auth, store, admin):
    uid = (await auth.register("self@example.com", "secret123", "Self Made"))["uid"]

    updated = await auth.update_user(admin, uid, {"role": "tenant", "phone": "(555) 123-4567"})

    assert updated["email"] == "self@example.com"
    assert updated["name"] == "Self Made"
    assert updated["role"] == "tenant"
    assert updated["isActive"] is True


@pytest.mark.anyio
async def test_auth_users_outlive_the_provider(store, provider):
    await provider.create_user("kept@example.com", "secret123")

    reopened = LocalAuthProvider(TEST_SECRET, store=store)
    token = await reopened.sign_in("kept@example.com", "secret123")

    assert (await provider.verify_credential(token)).claims["email"] == "kept@example.com"


# =============================================================================
# Notifications
# =============================================================================

@pytest.mark.anyio
async def test_account_events_notify_the_user(notifying_auth, notifier, admin):
    record = await notifying_auth.create_user(admin, "new@example.com", "secret123", "New Person", "tenant")
    await notifying_auth.set_role(admin, record["id"], "owner")
    await notifying_auth.delete_user(admin, record["id"])

    assert [m["to"] for m in notifier.sent] == ["new@example.com"] * 3
    assert [m["subject"] for m in notifier.sent] == [
        "Welcome to Deedkeeper",
        "Role Update Notification",
        "Account Deletion Notification",
    ]
    assert "<strong>Role:</strong> Tenant" in notifier.sent[0]["html"]
    assert "<strong>Previous Role:</strong> Tenant" in notifier.sent[1]["html"]
    assert "<strong>New Role:</strong> Owner" in notifier.sent[1]["html"]


@pytest.mark.anyio
async def test_failed_notification_does_not_fail_role_change(notifying_auth, notifier, provider, store, admin, monkeypatch):
    uid = await register(provider, store, "t@example.com", Role.TENANT)
    monkeypatch.setattr(notifier, "send", AsyncMock(side_effect=RuntimeError("relay down")))

    await notifying_auth.set_role(admin, uid, "owner")

    assert (await store.get(Collection.USERS, uid))["role"] == "owner"
