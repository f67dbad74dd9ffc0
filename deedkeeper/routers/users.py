"""
Users Router
Admin user management; self-service profile edits.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from deedkeeper.core.container import Services, get_services
from deedkeeper.core.security import get_caller
from deedkeeper.core.user_context import CallerContext

router = APIRouter(prefix="/api/users", tags=["Users"])


class UserCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    name: str
    phone: str = ""
    role: str
    is_active: bool = Field(True, alias="isActive")


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = Field(None, alias="isActive")

    def to_patch(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: UserCreateRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Create an auth user and their profile (admin only)."""
    user = await services.auth.create_user(
        caller,
        email=request.email,
        password=request.password,
        name=request.name,
        role=request.role,
        phone=request.phone,
        is_active=request.is_active,
    )
    return {"success": True, "message": f"User {request.name} created successfully", "user": user}


@router.get("")
async def list_users(
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = Query(None),
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    users = await services.auth.list_users(caller, role=role, is_active=is_active, search=search)
    return {"users": users, "total": len(users)}


@router.patch("/{uid}")
async def update_user(
    uid: str,
    request: UserUpdateRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Name and phone: self or admin. Role and isActive: admin only."""
    user = await services.auth.update_user(caller, uid, request.to_patch())
    return {"success": True, "user": user}


@router.delete("/{uid}")
async def delete_user(
    uid: str,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """
    Delete a user (admin only).
    Their properties and documents are marked for cleanup, not deleted.
    """
    result = await services.auth.delete_user(caller, uid)
    return {"success": True, "message": f"User {uid} deleted", **result.to_dict()}
