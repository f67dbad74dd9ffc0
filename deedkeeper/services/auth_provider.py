"""
Authentication Provider

The identity backend behind the credential resolver: auth user records,
role claims, and signed bearer credentials.

Credentials are HS256 JWTs carrying {uid, email, role, isActive, iat, exp}.
Claims are copied into the credential when it is issued, so a role change
is only visible to the holder after a refresh.
"""

import hashlib
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import jwt
from passlib.hash import pbkdf2_sha256 as hasher

from deedkeeper.core.collections import Collection
from deedkeeper.core.errors import AuthenticationError, ConflictError, NotFoundError
from deedkeeper.core.user_context import Role
from deedkeeper.store.base import EntityStore
from deedkeeper.store.memory import InMemoryEntityStore

logger = logging.getLogger(__name__)

CREDENTIAL_ALGORITHM = "HS256"


@dataclass
class AuthUser:
    """An identity known to the auth provider."""
    uid: str
    email: str
    display_name: str = ""
    password_hash: str = ""
    custom_claims: dict[str, Any] = field(default_factory=dict)
    disabled: bool = False

    @property
    def role(self) -> Optional[Role]:
        return Role.parse(self.custom_claims.get("role"))

    def to_record(self) -> dict:
        return {
            "email": self.email,
            "emailLower": self.email.lower(),
            "displayName": self.display_name,
            "passwordHash": self.password_hash,
            "customClaims": dict(self.custom_claims),
            "disabled": self.disabled,
        }

    @classmethod
    def from_record(cls, record: dict) -> "AuthUser":
        return cls(
            uid=record["id"],
            email=record.get("email", ""),
            display_name=record.get("displayName", ""),
            password_hash=record.get("passwordHash", ""),
            custom_claims=dict(record.get("customClaims") or {}),
            disabled=bool(record.get("disabled", False)),
        )


@dataclass(frozen=True)
class VerifiedCredential:
    """Result of verifying a credential: the uid and the claims it carries."""
    uid: str
    claims: dict[str, Any]


class AuthProvider(ABC):
    """Contract for the identity backend."""

    @abstractmethod
    async def verify_credential(self, token: str) -> VerifiedCredential:
        """Check signature and expiry. Raises AuthenticationError."""

    @abstractmethod
    async def issue_credential(self, uid: str) -> str:
        """Issue a fresh credential carrying the user's current claims."""

    @abstractmethod
    async def set_role_claim(self, uid: str, role: Optional[Role], is_active: Optional[bool] = None) -> None:
        """Replace the role claim (None keeps it) and optionally the isActive claim."""

    @abstractmethod
    async def get_user(self, uid: str) -> AuthUser:
        """Raises NotFoundError when the uid is unknown."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> AuthUser:
        """Raises NotFoundError when no user has this email."""

    @abstractmethod
    async def create_user(self, email: str, password: str, display_name: str = "") -> AuthUser:
        """Raises ConflictError when the email is taken."""

    @abstractmethod
    async def update_user(self, uid: str, patch: dict[str, Any]) -> AuthUser:
        """Patch display_name / email / disabled."""

    @abstractmethod
    async def delete_user(self, uid: str) -> None:
        """Raises NotFoundError when the uid is unknown."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> str:
        """Exchange email and password for a credential. Raises AuthenticationError."""


# =============================================================================
# Helpers
# =============================================================================

def hash_password(password: str) -> str:
    return hasher.hash(password)


def verify_password(password: str, stored: str) -> bool:
    if not stored:
        return False
    return hasher.verify(password, stored)


def derive_uid(email: str) -> str:
    """Stable 28-char uid derived from the email plus a random nonce."""
    seed = f"{email.lower()}:{secrets.token_hex(8)}"
    return hashlib.sha256(seed.encode()).hexdigest()[:28]


# =============================================================================
# Local Provider
# =============================================================================

class LocalAuthProvider(AuthProvider):
    """
    Auth provider backed by the entity store.

    Auth users live in the auth_users collection, next to the records they
    describe. Credentials are signed with the configured secret, so they stay
    valid across restarts as long as the secret does.
    """

    def __init__(self, secret: str, store: Optional[EntityStore] = None, ttl_minutes: int = 60):
        if not secret:
            raise ValueError("LocalAuthProvider requires a signing secret")
        self._secret = secret
        self.store = store or InMemoryEntityStore()
        self.ttl_seconds = ttl_minutes * 60

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    def sign_payload(self, payload: dict[str, Any]) -> str:
        """Encode and sign an arbitrary claims payload."""
        return jwt.encode(payload, self._secret, algorithm=CREDENTIAL_ALGORITHM)

    async def issue_credential(self, uid: str) -> str:
        user = await self.get_user(uid)
        if user.disabled:
            raise AuthenticationError("User account is disabled")
        now = int(time.time())
        payload = {
            "uid": user.uid,
            "email": user.email,
            "role": user.custom_claims.get("role"),
            "isActive": user.custom_claims.get("isActive", True),
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return self.sign_payload(payload)

    async def verify_credential(self, token: str) -> VerifiedCredential:
        if not token:
            raise AuthenticationError("Malformed credential")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[CREDENTIAL_ALGORITHM],
                options={"require": ["uid", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Credential expired") from None
        except jwt.InvalidSignatureError:
            raise AuthenticationError("Invalid credential signature") from None
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Malformed credential") from e

        claims = {k: v for k, v in payload.items() if k != "uid"}
        return VerifiedCredential(uid=payload["uid"], claims=claims)

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def set_role_claim(self, uid: str, role: Optional[Role], is_active: Optional[bool] = None) -> None:
        user = await self.get_user(uid)
        claims = dict(user.custom_claims)
        if role is not None:
            claims["role"] = role.value
        if is_active is not None:
            claims["isActive"] = is_active
        await self.store.update(Collection.AUTH_USERS, uid, {"customClaims": claims})
        logger.info(f"Claims updated for {uid}: {claims}")

    async def get_user(self, uid: str) -> AuthUser:
        record = await self.store.get(Collection.AUTH_USERS, uid)
        if record is None:
            raise NotFoundError(f"No auth user with uid {uid}")
        return AuthUser.from_record(record)

    async def get_user_by_email(self, email: str) -> AuthUser:
        needle = email.strip().lower()
        matches = await self.store.query(Collection.AUTH_USERS, [("emailLower", "==", needle)])
        if not matches:
            raise NotFoundError(f"No auth user with email {email}")
        return AuthUser.from_record(matches[0])

    async def create_user(self, email: str, password: str, display_name: str = "", uid: Optional[str] = None) -> AuthUser:
        try:
            await self.get_user_by_email(email)
        except NotFoundError:
            pass
        else:
            raise ConflictError("User with this email already exists")

        uid = uid or derive_uid(email)
        if await self.store.exists(Collection.AUTH_USERS, uid):
            raise ConflictError(f"User {uid} already exists")
        user = AuthUser(
            uid=uid,
            email=email.strip(),
            display_name=display_name,
            password_hash=hash_password(password),
        )
        await self.store.set(Collection.AUTH_USERS, uid, user.to_record())
        logger.info(f"Auth user created: {uid}")
        return user

    async def update_user(self, uid: str, patch: dict[str, Any]) -> AuthUser:
        await self.get_user(uid)
        fields: dict[str, Any] = {}
        if "display_name" in patch:
            fields["displayName"] = patch["display_name"]
        if "email" in patch:
            fields["email"] = patch["email"]
            fields["emailLower"] = patch["email"].lower()
        if "disabled" in patch:
            fields["disabled"] = bool(patch["disabled"])
        if fields:
            await self.store.update(Collection.AUTH_USERS, uid, fields)
        return await self.get_user(uid)

    async def delete_user(self, uid: str) -> None:
        await self.get_user(uid)
        await self.store.delete(Collection.AUTH_USERS, uid)
        logger.info(f"Auth user deleted: {uid}")

    async def sign_in(self, email: str, password: str) -> str:
        """Exchange email and password for a credential."""
        try:
            user = await self.get_user_by_email(email)
        except NotFoundError:
            raise AuthenticationError("Invalid email or password") from None
        if not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        return await self.issue_credential(user.uid)
