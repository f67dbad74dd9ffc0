"""
Auth Router
Sign-in, credential refresh, role claims and the one-time admin bootstrap.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from deedkeeper.core.container import Services, get_services
from deedkeeper.core.security import get_bearer_token, get_caller
from deedkeeper.core.user_context import CallerContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# =============================================================================
# Request Models
# =============================================================================

class SignInRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str = ""


class SetRoleRequest(BaseModel):
    uid: str = Field(..., min_length=1)
    role: str


class BootstrapRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    secret: str = Field(..., alias="adminSecret")


class CredentialResponse(BaseModel):
    credential: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/token", response_model=CredentialResponse)
async def sign_in(request: SignInRequest, services: Services = Depends(get_services)):
    """Exchange email and password for a bearer credential."""
    credential = await services.auth.sign_in(request.email, request.password)
    return CredentialResponse(
        credential=credential,
        expires_in=services.settings.credential_ttl_minutes * 60,
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, services: Services = Depends(get_services)):
    """
    Create an account without a role.
    The first account becomes admin through /bootstrap; others wait for an
    admin to assign a role.
    """
    return await services.auth.register(request.email, request.password, request.name)


@router.post("/refresh", response_model=CredentialResponse)
async def refresh_credential(
    token: str = Depends(get_bearer_token),
    services: Services = Depends(get_services),
):
    """
    Re-issue the caller's credential with their current claims.
    Call this after a role change to pick up the new role.
    """
    credential = await services.resolver.refresh(token)
    return CredentialResponse(
        credential=credential,
        expires_in=services.settings.credential_ttl_minutes * 60,
    )


@router.post("/claims")
async def set_role_claim(
    request: SetRoleRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Set a user's role (admin only)."""
    return await services.auth.set_role(caller, request.uid, request.role)


@router.get("/claims")
async def get_own_claims(
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Claims currently stored for the caller (may differ from the credential)."""
    return await services.auth.get_claims(caller)


@router.get("/claims/{uid}")
async def get_user_claims(
    uid: str,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return await services.auth.get_claims(caller, uid)


@router.post("/bootstrap")
async def bootstrap_admin(request: BootstrapRequest, services: Services = Depends(get_services)):
    """
    Make an existing user the first admin.

    Requires the configured ADMIN_INIT_SECRET. Once bootstrap has completed,
    further calls change nothing and report the recorded admin.
    """
    result = await services.auth.bootstrap(request.email, request.secret)
    return result.to_dict()


@router.get("/bootstrap/status")
async def bootstrap_status(services: Services = Depends(get_services)):
    return {"completed": await services.auth.is_bootstrap_completed()}
