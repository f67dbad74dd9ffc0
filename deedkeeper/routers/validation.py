"""
Validation Router
Server-side checks a client can run before writing a record.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from deedkeeper.core.container import Services, get_services
from deedkeeper.core.security import get_caller
from deedkeeper.core.user_context import CallerContext

router = APIRouter(prefix="/api/validation", tags=["Validation"])


class ValidationRequest(BaseModel):
    collection: str
    data: dict[str, Any]
    operation: str


@router.post("")
async def validate_data(
    request: ValidationRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    result = await services.validation.validate(
        caller, request.collection, request.data, request.operation
    )
    return result.to_dict()
