"""
Deedkeeper - Caller Context
Roles and the resolved identity passed to every service call.

Design Principles:
- Role is a closed enum; every dispatch on it is an exhaustive match
- CallerContext is built only by the credential resolver
- Role comes from the signed claim, so it can be stale until refresh
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, assert_never


# =============================================================================
# Roles
# =============================================================================

class Role(str, Enum):
    """The three roles a user can hold."""
    ADMIN = "admin"
    OWNER = "owner"
    TENANT = "tenant"

    @classmethod
    def parse(cls, value: object) -> Optional["Role"]:
        """Return the Role for a raw claim value, or None if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


class DocumentVisibility(str, Enum):
    """Who besides admins may see a document."""
    BOTH = "both"
    OWNER = "owner"
    TENANT = "tenant"


def role_display_name(role: Role) -> str:
    """Human-readable role name."""
    match role:
        case Role.ADMIN:
            return "Administrator"
        case Role.OWNER:
            return "Owner"
        case Role.TENANT:
            return "Tenant"
        case _:
            assert_never(role)


def document_visible_to(role: Role, visibility: DocumentVisibility) -> bool:
    """Whether a role may see a document with the given visibility."""
    match role:
        case Role.ADMIN:
            return True
        case Role.OWNER:
            return visibility in (DocumentVisibility.BOTH, DocumentVisibility.OWNER)
        case Role.TENANT:
            return visibility in (DocumentVisibility.BOTH, DocumentVisibility.TENANT)
        case _:
            assert_never(role)


# =============================================================================
# Caller Context
# =============================================================================

@dataclass(frozen=True)
class CallerContext:
    """
    Identity of the caller as asserted by their credential.

    role is None when the credential carries no role claim yet
    (e.g. a freshly created auth user before bootstrap).
    """
    uid: str
    role: Optional[Role]
    is_active: bool = True
    email: Optional[str] = None
    issued_at: Optional[int] = None
    expires_at: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN and self.is_active

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "role": self.role.value if self.role else None,
            "isActive": self.is_active,
            "email": self.email,
        }
