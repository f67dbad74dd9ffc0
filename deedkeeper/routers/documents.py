"""
Documents Router
Document records and role-scoped reads.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from deedkeeper.core.container import Services, get_services
from deedkeeper.core.security import get_caller
from deedkeeper.core.user_context import CallerContext, DocumentVisibility
from deedkeeper.models.entities import DocumentEntity, DocumentType

router = APIRouter(prefix="/api/documents", tags=["Documents"])


class DocumentCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(..., alias="ownerId")
    property_id: Optional[str] = Field(None, alias="propertyId")
    display_name: str = Field(..., alias="displayName")
    original_name: str = Field("", alias="originalName")
    mime_type: str = Field("application/octet-stream", alias="mimeType")
    size: int = 0
    type: DocumentType = DocumentType.OTHER
    visibility: DocumentVisibility = DocumentVisibility.BOTH
    tags: list[str] = Field(default_factory=list)
    description: Optional[str] = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_document(
    request: DocumentCreateRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    entity = DocumentEntity(**request.model_dump())
    document_id = await services.records.create_document(caller, entity)
    return {"success": True, "id": document_id}


@router.get("")
async def list_documents(
    property_id: Optional[str] = Query(None, alias="propertyId"),
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Documents visible to the caller's role."""
    documents = await services.records.list_documents(caller, property_id=property_id)
    return {"documents": documents, "total": len(documents)}


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return await services.records.get_document(caller, document_id)
