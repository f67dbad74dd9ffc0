"""
Properties Router
Property records, tenant assignment and ownership transfer.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from deedkeeper.core.container import Services, get_services
from deedkeeper.core.security import get_caller
from deedkeeper.core.user_context import CallerContext
from deedkeeper.models.entities import PropertyEntity, PropertyType

router = APIRouter(prefix="/api/properties", tags=["Properties"])


class PropertyCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str
    type: PropertyType
    owner_id: str = Field(..., alias="ownerId")
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    rental_value: float = Field(0, alias="rentalValue")
    contract_start_date: Optional[datetime] = Field(None, alias="contractStartDate")


class TenantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(..., alias="tenantId")


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_owner_id: str = Field(..., alias="newOwnerId")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_property(
    request: PropertyCreateRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Owners create their own properties; admins create them for any owner."""
    entity = PropertyEntity(**request.model_dump())
    property_id = await services.records.create_property(caller, entity)
    return {"success": True, "id": property_id}


@router.get("")
async def list_properties(
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    properties = await services.records.list_properties(caller)
    return {"properties": properties, "total": len(properties)}


@router.get("/{property_id}/documents")
async def list_property_documents(
    property_id: str,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    documents = await services.records.list_documents(caller, property_id=property_id)
    return {"documents": documents, "total": len(documents)}


@router.put("/{property_id}/tenant")
async def assign_tenant(
    property_id: str,
    request: TenantRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    await services.records.assign_tenant(caller, property_id, request.tenant_id)
    return {"success": True}


@router.delete("/{property_id}/tenant")
async def unassign_tenant(
    property_id: str,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    await services.records.unassign_tenant(caller, property_id)
    return {"success": True}


@router.delete("/{property_id}")
async def delete_property(
    property_id: str,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Delete a property together with its documents."""
    removed = await services.records.delete_property(caller, property_id)
    return {"success": True, "documentsDeleted": removed}


@router.post("/{property_id}/transfer")
async def transfer_ownership(
    property_id: str,
    request: TransferRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """
    Give a property to another owner (admin only).
    Documents attached to the property follow it to the new owner.
    """
    result = await services.ownership.transfer(caller, property_id, request.new_owner_id)
    return {"success": True, **result.to_dict()}
