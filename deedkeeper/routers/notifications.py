"""
Notifications Router
Admin email: single recipient, bulk, and the typed templates available.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from deedkeeper.core.container import Services, get_services
from deedkeeper.core.security import get_caller
from deedkeeper.core.user_context import CallerContext
from deedkeeper.services.notifications import NotificationType

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


class EmailRequest(BaseModel):
    to: str
    subject: Optional[str] = None
    body: Optional[str] = None
    template: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class BulkEmailRequest(BaseModel):
    recipients: list[str] = Field(default_factory=list)
    subject: Optional[str] = None
    body: Optional[str] = None
    template: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


@router.post("/email")
async def send_email(
    request: EmailRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Send one email, either a raw subject/body or a typed template."""
    message_id = await services.notifications.send_email(
        caller,
        request.to,
        subject=request.subject,
        body=request.body,
        template=request.template,
        data=request.data,
    )
    return {"success": True, "message": "Email sent successfully", "messageId": message_id}


@router.post("/bulk-email")
async def send_bulk_email(
    request: BulkEmailRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    result = await services.notifications.send_bulk(
        caller,
        request.recipients,
        subject=request.subject,
        body=request.body,
        template=request.template,
        data=request.data,
    )
    return result.to_dict()


@router.get("/templates")
async def list_templates():
    return {"templates": [kind.value for kind in NotificationType]}
