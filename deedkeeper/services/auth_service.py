"""
Auth Service
User administration, role claims and the one-time admin bootstrap.

Every role change is written twice: as a claim on the auth user (what the
authorization gate sees after a refresh) and on the users record (what the
integrity checker and listings see).
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from deedkeeper.core.collections import BOOTSTRAP_RECORD_ID, Collection
from deedkeeper.core.config import Settings, get_settings
from deedkeeper.core.errors import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
    log_context,
    service_boundary,
)
from deedkeeper.core.security import AuthorizationGate
from deedkeeper.core.user_context import CallerContext, Role, role_display_name
from deedkeeper.core.utc import utc_now
from deedkeeper.models.entities import AuditAction, BootstrapState, UserEntity
from deedkeeper.services.auth_provider import AuthProvider
from deedkeeper.services.lifecycle import CleanupMarkResult, UserLifecycleService
from deedkeeper.services.notifications import NotificationSender, NotificationType, notify
from deedkeeper.store.base import EntityStore
from deedkeeper.services.validation import (
    NAME_MAX_LENGTH,
    NAME_MIN_LENGTH,
    PASSWORD_MIN_LENGTH,
    is_valid_email,
    is_valid_phone,
)

logger = logging.getLogger(__name__)

INVALID_ROLE_MESSAGE = "Invalid role. Must be admin, owner, or tenant"
SELF_EDITABLE_FIELDS = {"name", "phone"}
UPDATABLE_FIELDS = {"name", "phone", "role", "isActive"}
BOOTSTRAP_RECORD_VERSION = 1


@dataclass
class BootstrapResult:
    uid: str
    email: str
    already_completed: bool = False

    def to_dict(self) -> dict:
        message = (
            "Bootstrap already completed"
            if self.already_completed
            else f"Admin role set for user {self.email}"
        )
        return {
            "success": True,
            "message": message,
            "uid": self.uid,
            "alreadyCompleted": self.already_completed,
        }


def _parse_role(value: Any) -> Role:
    role = Role.parse(value) if isinstance(value, (str, Role)) else None
    if role is None:
        raise ValidationError(INVALID_ROLE_MESSAGE)
    return role


def _validate_name(name: Any) -> None:
    if not isinstance(name, str) or not NAME_MIN_LENGTH <= len(name.strip()) <= NAME_MAX_LENGTH:
        raise ValidationError("Name must be between 2 and 100 characters")


def _validate_phone(phone: Any) -> None:
    if phone and not is_valid_phone(phone):
        raise ValidationError("Phone must be in format (XXX) XXX-XXXX")


class AuthService:
    def __init__(
        self,
        store: EntityStore,
        provider: AuthProvider,
        lifecycle: UserLifecycleService,
        settings: Optional[Settings] = None,
        gate: Optional[AuthorizationGate] = None,
        notifier: Optional[NotificationSender] = None,
    ):
        self.store = store
        self.provider = provider
        self.lifecycle = lifecycle
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.gate = gate or AuthorizationGate()

    # =========================================================================
    # Claims
    # =========================================================================

    @service_boundary("setCustomClaims", "Failed to set user role")
    async def set_role(self, caller: CallerContext, uid: str, role: str) -> dict:
        """Set a user's role claim. The user sees it after refreshing."""
        self.gate.require_admin(caller)
        if not uid:
            raise ValidationError("uid is required")
        new_role = _parse_role(role)

        auth_user = await self.provider.get_user(uid)
        previous = auth_user.role
        await self.provider.set_role_claim(uid, new_role)

        if await self.store.exists(Collection.USERS, uid):
            await self.store.update(Collection.USERS, uid, {
                "role": new_role.value,
                "updatedAt": utc_now(),
            })
        else:
            # Self-registered users get their profile with their first role
            entity = UserEntity(
                email=auth_user.email,
                name=auth_user.display_name or auth_user.email,
                role=new_role,
                is_active=bool(auth_user.custom_claims.get("isActive", True)),
            )
            await self.store.set(Collection.USERS, uid, entity.to_record())

        await self.lifecycle.record_audit(
            AuditAction.ROLE_CHANGED,
            uid,
            auth_user.email,
            {
                "previousRole": previous.value if previous else None,
                "newRole": new_role.value,
                "changedBy": caller.uid,
            },
        )
        await notify(self.notifier, NotificationType.ROLE_CHANGED, auth_user.email, {
            "name": auth_user.display_name,
            "previousRole": role_display_name(previous) if previous else None,
            "newRole": role_display_name(new_role),
        })
        logger.info(
            f"Role {new_role.value} set for user {uid}",
            extra={"context": log_context("setCustomClaims", caller.uid, targetUserId=uid)},
        )
        return {"success": True, "message": f"Role {new_role.value} set for user {uid}"}

    @service_boundary("getUserClaims", "Failed to get user claims")
    async def get_claims(self, caller: CallerContext, uid: Optional[str] = None) -> dict:
        target = uid or caller.uid
        self.gate.require_self_or_admin(caller, target)
        auth_user = await self.provider.get_user(target)
        return {
            "uid": auth_user.uid,
            "email": auth_user.email or "",
            "claims": dict(auth_user.custom_claims),
        }

    # =========================================================================
    # Users
    # =========================================================================

    @service_boundary("createUser", "Failed to create user")
    async def create_user(
        self,
        caller: CallerContext,
        email: str,
        password: str,
        name: str,
        role: str,
        phone: str = "",
        is_active: bool = True,
    ) -> dict:
        self.gate.require_admin(caller)
        if not is_valid_email(email):
            raise ValidationError("Invalid email format")
        new_role = _parse_role(role)
        if not password or len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError("Password must be at least 6 characters")
        _validate_name(name)
        _validate_phone(phone)

        # ConflictError from the provider when the email is taken
        auth_user = await self.provider.create_user(email, password, display_name=name)
        await self.provider.set_role_claim(auth_user.uid, new_role, is_active=is_active)

        entity = UserEntity(
            email=email,
            name=name.strip(),
            phone=phone,
            role=new_role,
            is_active=is_active,
        )
        await self.store.set(Collection.USERS, auth_user.uid, entity.to_record())
        await self.lifecycle.on_user_created(auth_user.uid, email, new_role.value, created_by=caller.uid)
        await notify(self.notifier, NotificationType.USER_CREATED, email, {
            "name": entity.name,
            "email": email,
            "role": role_display_name(new_role),
        })

        logger.info(
            f"User created successfully: {email}",
            extra={"context": log_context("createUser", caller.uid, newUserId=auth_user.uid)},
        )
        return await self.store.get(Collection.USERS, auth_user.uid)

    @service_boundary("updateUser", "Failed to update user")
    async def update_user(self, caller: CallerContext, uid: str, patch: dict[str, Any]) -> dict:
        """
        Update name / phone (self or admin) and role / isActive (admin only).
        """
        self.gate.require_self_or_admin(caller, uid)
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")
        if not caller.is_admin and set(patch) - SELF_EDITABLE_FIELDS:
            raise AuthorizationError("Only admins can change user roles or status")

        new_role = _parse_role(patch["role"]) if patch.get("role") is not None else None
        if "name" in patch:
            _validate_name(patch["name"])
        if "phone" in patch:
            _validate_phone(patch["phone"])

        auth_user = await self.provider.get_user(uid)
        existing = await self.store.get(Collection.USERS, uid)
        if existing is None and new_role is None:
            # Self-registered users get a profile only with their first role
            raise NotFoundError(f"User {uid} has no profile yet; a role must be assigned first")

        if "name" in patch:
            await self.provider.update_user(uid, {"display_name": patch["name"]})
        if new_role is not None or "isActive" in patch:
            is_active = bool(patch["isActive"]) if "isActive" in patch else None
            await self.provider.set_role_claim(uid, new_role, is_active=is_active)

        if existing is None:
            entity = UserEntity(
                email=auth_user.email,
                name=(patch.get("name") or auth_user.display_name or auth_user.email).strip(),
                phone=patch.get("phone") or "",
                role=new_role,
                is_active=bool(patch.get("isActive", True)),
            )
            await self.store.set(Collection.USERS, uid, entity.to_record())
        else:
            fields: dict[str, Any] = {"updatedAt": utc_now()}
            if "name" in patch:
                fields["name"] = patch["name"].strip()
            if "phone" in patch:
                fields["phone"] = patch["phone"]
            if new_role is not None:
                fields["role"] = new_role.value
            if "isActive" in patch:
                fields["isActive"] = bool(patch["isActive"])
            await self.store.update(Collection.USERS, uid, fields)

        logger.info(
            f"User {uid} updated",
            extra={"context": log_context("updateUser", caller.uid, targetUserId=uid, fields=sorted(patch))},
        )
        return await self.store.get(Collection.USERS, uid)

    @service_boundary("deleteUser", "Failed to delete user")
    async def delete_user(self, caller: CallerContext, uid: str) -> CleanupMarkResult:
        """
        Delete the auth user and the users record, then mark the user's
        properties and documents for cleanup.
        """
        self.gate.require_admin(caller)
        record = await self.store.get(Collection.USERS, uid)
        try:
            auth_user = await self.provider.get_user(uid)
        except NotFoundError:
            auth_user = None
        if record is None and auth_user is None:
            raise NotFoundError(f"User {uid} not found")

        email = (record or {}).get("email") or (auth_user.email if auth_user else None)
        if auth_user is not None:
            await self.provider.delete_user(uid)
        await self.store.delete(Collection.USERS, uid)
        result = await self.lifecycle.on_user_deleted(uid, email, deleted_by=caller.uid)
        await notify(self.notifier, NotificationType.USER_DELETED, email, {
            "name": (record or {}).get("name") or (auth_user.display_name if auth_user else None),
            "email": email,
        })

        logger.info(
            f"User {uid} deleted",
            extra={"context": log_context("deleteUser", caller.uid, targetUserId=uid, **result.to_dict())},
        )
        return result

    @service_boundary("listUsers", "Failed to list users")
    async def list_users(
        self,
        caller: CallerContext,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> list[dict]:
        self.gate.require_admin(caller)
        filters = []
        if role is not None:
            filters.append(("role", "==", _parse_role(role).value))
        if is_active is not None:
            filters.append(("isActive", "==", is_active))
        users = await self.store.query(Collection.USERS, filters)

        if search:
            needle = search.strip().lower()
            users = [
                u for u in users
                if needle in str(u.get("name", "")).lower()
                or needle in str(u.get("email", "")).lower()
            ]
        return users

    # =========================================================================
    # Sign-in and bootstrap
    # =========================================================================

    @service_boundary("signIn", "Sign-in failed")
    async def sign_in(self, email: str, password: str) -> str:
        return await self.provider.sign_in(email, password)

    @service_boundary("registerUser", "Failed to register user")
    async def register(self, email: str, password: str, name: str = "") -> dict:
        """
        Public sign-up. The auth user gets no role claim; an admin (or the
        bootstrap, for the first admin) assigns one later.
        """
        if not is_valid_email(email):
            raise ValidationError("Invalid email format")
        if not password or len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError("Password must be at least 6 characters")
        if name:
            _validate_name(name)

        auth_user = await self.provider.create_user(email, password, display_name=name.strip())
        logger.info(
            f"Auth user registered: {email}",
            extra={"context": log_context("registerUser", auth_user.uid)},
        )
        return {"uid": auth_user.uid, "email": auth_user.email}

    async def _bootstrap_record(self) -> dict:
        record = await self.store.get(Collection.SYSTEM, BOOTSTRAP_RECORD_ID)
        return record or {"state": BootstrapState.NOT_STARTED.value}

    async def is_bootstrap_completed(self) -> bool:
        record = await self._bootstrap_record()
        return record.get("state") == BootstrapState.COMPLETED.value

    @service_boundary("initializeAdmin", "Failed to initialize admin user")
    async def bootstrap(self, email: str, secret: str) -> BootstrapResult:
        """
        Grant the admin role to an existing auth user, once.

        The bootstrap record is read once up front. When it already says
        "completed", this returns the recorded admin and changes nothing.
        The secret is compared with ==, which is not constant-time.
        """
        context = log_context("initializeAdmin", email=email)
        if not is_valid_email(email):
            raise ValidationError("Invalid email format")

        record = await self._bootstrap_record()
        if record.get("state") == BootstrapState.COMPLETED.value:
            logger.info("Bootstrap already completed; nothing to do", extra={"context": context})
            return BootstrapResult(
                uid=record.get("adminUid", ""),
                email=record.get("adminEmail", ""),
                already_completed=True,
            )

        expected = self.settings.admin_init_secret
        if not expected or secret != expected:
            logger.warning("Bootstrap rejected: invalid admin secret", extra={"context": context})
            raise AuthorizationError("Invalid admin secret")

        auth_user = await self.provider.get_user_by_email(email)
        await self.provider.set_role_claim(auth_user.uid, Role.ADMIN, is_active=True)

        now = utc_now()
        profile = {
            "email": auth_user.email,
            "role": Role.ADMIN.value,
            "isActive": True,
            "updatedAt": now,
        }
        existing = await self.store.get(Collection.USERS, auth_user.uid)
        if existing is None:
            profile["name"] = auth_user.display_name or auth_user.email
            profile["phone"] = ""
            profile["createdAt"] = now
        await self.store.set(Collection.USERS, auth_user.uid, profile, merge=True)

        await self.store.set(Collection.SYSTEM, BOOTSTRAP_RECORD_ID, {
            "state": BootstrapState.COMPLETED.value,
            "completedAt": now,
            "adminEmail": auth_user.email,
            "adminUid": auth_user.uid,
            "version": BOOTSTRAP_RECORD_VERSION,
        })
        await self.lifecycle.record_audit(
            AuditAction.ROLE_CHANGED,
            auth_user.uid,
            auth_user.email,
            {"newRole": Role.ADMIN.value, "source": "bootstrap"},
        )

        logger.info(
            f"Admin role initialized for user {email}",
            extra={"context": {**context, "userId": auth_user.uid}},
        )
        return BootstrapResult(uid=auth_user.uid, email=auth_user.email)
