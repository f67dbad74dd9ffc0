"""
Deedkeeper - Security Module
Credential resolution and capability checks.

Flow:
- A bearer credential is verified by the AuthProvider (signature + expiry)
- The signed claims become a CallerContext (uid, role, isActive)
- Services call the AuthorizationGate before doing anything privileged

Roles are read from the credential, never from the store, so a role change
takes effect for a caller only after they refresh their credential.
"""

import logging
from typing import Optional, assert_never

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from deedkeeper.core.errors import AuthenticationError, AuthorizationError
from deedkeeper.core.user_context import CallerContext, Role
from deedkeeper.services.auth_provider import AuthProvider

logger = logging.getLogger(__name__)


# =============================================================================
# Credential Resolver
# =============================================================================

class CredentialResolver:
    """Turns bearer credentials into CallerContexts and refreshes them."""

    def __init__(self, provider: AuthProvider):
        self.provider = provider

    async def resolve(self, credential: Optional[str]) -> CallerContext:
        """
        Verify a credential and return the caller it identifies.

        Raises:
            AuthenticationError: missing, malformed, expired or badly signed
        """
        if not credential:
            raise AuthenticationError("Authentication required")

        verified = await self.provider.verify_credential(credential)
        claims = verified.claims
        return CallerContext(
            uid=verified.uid,
            role=Role.parse(claims.get("role")),
            is_active=bool(claims.get("isActive", True)),
            email=claims.get("email"),
            issued_at=claims.get("iat"),
            expires_at=claims.get("exp"),
        )

    async def refresh(self, credential: Optional[str]) -> str:
        """
        Exchange a still-valid credential for one carrying current claims.

        This is how a caller picks up a role change.
        """
        caller = await self.resolve(credential)
        token = await self.provider.issue_credential(caller.uid)
        logger.debug(f"Credential refreshed for {caller.uid}")
        return token


# =============================================================================
# Authorization Gate
# =============================================================================

def _grants_admin(role: Optional[Role]) -> bool:
    match role:
        case Role.ADMIN:
            return True
        case Role.OWNER | Role.TENANT | None:
            return False
        case _:
            assert_never(role)


class AuthorizationGate:
    """
    Capability checks. Each check returns None or raises AuthorizationError.

    An inactive caller fails every check, whatever its role claim says.
    """

    @staticmethod
    def _require_active(ctx: CallerContext) -> None:
        if not ctx.is_active:
            raise AuthorizationError("User account is inactive")

    def require_admin(self, ctx: CallerContext) -> None:
        self._require_active(ctx)
        if not _grants_admin(ctx.role):
            raise AuthorizationError("Admin role required")

    def require_self_or_admin(self, ctx: CallerContext, target_uid: str) -> None:
        self._require_active(ctx)
        if ctx.uid == target_uid:
            return
        if not _grants_admin(ctx.role):
            raise AuthorizationError("You can only access your own account")

    def require_role(self, ctx: CallerContext, *roles: Role) -> None:
        self._require_active(ctx)
        if ctx.role is None or ctx.role not in roles:
            allowed = ", ".join(r.value for r in roles)
            raise AuthorizationError(f"This action requires one of these roles: {allowed}")


# =============================================================================
# FastAPI Dependencies
# =============================================================================

security_bearer = HTTPBearer(auto_error=False)


def get_credential_resolver(request: Request) -> CredentialResolver:
    return request.app.state.services.resolver


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_bearer),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")
    return credentials.credentials


async def get_caller(
    token: str = Depends(get_bearer_token),
    resolver: CredentialResolver = Depends(get_credential_resolver),
) -> CallerContext:
    """
    Resolve the bearer credential on the request.

    Usage:
        @router.get("/me")
        async def me(caller: CallerContext = Depends(get_caller)):
            ...
    """
    return await resolver.resolve(token)
