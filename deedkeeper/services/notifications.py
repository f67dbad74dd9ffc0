"""
Notification Sender

Outgoing notifications: account created or deleted, role changed, property
assigned, plus free-form admin email. Email delivery is someone else's job:
the default sender only logs, and the webhook sender hands the message to an
external relay.

Typed notifications are rendered here from fixed templates; every value put
into a template is HTML-escaped.
"""

import html
import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from deedkeeper.core.config import Settings
from deedkeeper.core.errors import ValidationError, log_context, service_boundary
from deedkeeper.core.security import AuthorizationGate
from deedkeeper.core.user_context import CallerContext
from deedkeeper.core.utc import utc_now
from deedkeeper.services.validation import is_valid_email

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits
SIGNATURE = "<p>Best regards,<br>Deedkeeper</p>"


def generate_message_id() -> str:
    """msg_<epoch ms>_<9 random chars>"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"msg_{int(time.time() * 1000)}_{suffix}"


# =============================================================================
# Senders
# =============================================================================

class NotificationSender(ABC):
    """Contract: send(to, subject, html_body) -> message id."""

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str) -> str:
        ...


class LoggingNotificationSender(NotificationSender):
    """
    Validates the recipient and logs the message. Nothing leaves the process.

    The last `history` messages are kept in `sent` for inspection.
    """

    def __init__(self, history: int = 100) -> None:
        self.sent: deque[dict] = deque(maxlen=history)

    async def send(self, to: str, subject: str, html_body: str) -> str:
        if not is_valid_email(to):
            raise ValidationError("Invalid email address")
        message_id = generate_message_id()
        self.sent.append({"to": to, "subject": subject, "html": html_body, "messageId": message_id})
        logger.info(f"Notification queued for {to}: {subject} ({message_id})")
        return message_id


class WebhookNotificationSender(NotificationSender):
    """POSTs notifications as JSON to a relay URL."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def send(self, to: str, subject: str, html_body: str) -> str:
        if not is_valid_email(to):
            raise ValidationError("Invalid email address")
        message_id = generate_message_id()
        payload = {"to": to, "subject": subject, "html": html_body, "messageId": message_id}

        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
        response.raise_for_status()

        logger.info(f"Notification sent to {to} via webhook ({message_id})")
        return message_id


def build_notification_sender(settings: Settings) -> NotificationSender:
    if settings.notification_webhook_url:
        return WebhookNotificationSender(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingNotificationSender()


# =============================================================================
# Typed Notifications
# =============================================================================

class NotificationType(str, Enum):
    USER_CREATED = "user_created"
    USER_DELETED = "user_deleted"
    ROLE_CHANGED = "role_changed"
    PROPERTY_ASSIGNED = "property_assigned"


def _details(rows: dict[str, Any]) -> str:
    items = "".join(
        f"<li><strong>{label}:</strong> {html.escape(str(value))}</li>"
        for label, value in rows.items()
    )
    return f"<ul>{items}</ul>"


def render_notification(kind: NotificationType, data: dict[str, Any]) -> tuple[str, str]:
    """Return (subject, html body) for a typed notification."""
    today = utc_now().strftime("%Y-%m-%d")
    name = html.escape(str(data.get("name") or data.get("email") or ""))

    match kind:
        case NotificationType.USER_CREATED:
            subject = "Welcome to Deedkeeper"
            body = (
                f"<h2>Welcome to Deedkeeper</h2><p>Hello {name},</p>"
                "<p>Your account has been created with the following details:</p>"
                + _details({"Email": data.get("email", ""), "Role": data.get("role", ""), "Created": today})
                + "<p>You can now sign in with your email and the password provided by your administrator.</p>"
            )
        case NotificationType.USER_DELETED:
            subject = "Account Deletion Notification"
            body = (
                f"<h2>Account Deletion Notification</h2><p>Hello {name},</p>"
                "<p>Your Deedkeeper account has been deleted.</p>"
                + _details({"Email": data.get("email", ""), "Deleted on": today})
                + "<p>If you believe this was done in error, please contact your administrator.</p>"
            )
        case NotificationType.ROLE_CHANGED:
            subject = "Role Update Notification"
            body = (
                f"<h2>Role Update Notification</h2><p>Hello {name},</p>"
                "<p>Your Deedkeeper role has been updated.</p>"
                + _details({
                    "Previous Role": data.get("previousRole") or "None",
                    "New Role": data.get("newRole", ""),
                    "Updated on": today,
                })
                + "<p>Sign in again to use your new permissions.</p>"
            )
        case NotificationType.PROPERTY_ASSIGNED:
            subject = "Property Assignment Notification"
            body = (
                f"<h2>Property Assignment Notification</h2><p>Hello {name},</p>"
                "<p>A property has been assigned to you. You are now its owner.</p>"
                + _details({
                    "Address": data.get("address", ""),
                    "Type": data.get("type", ""),
                    "Value": data.get("value", ""),
                    "Assigned on": today,
                })
                + "<p>You can now view and manage documents for this property.</p>"
            )
        case _:
            raise ValidationError(f"Invalid notification type: {kind}")

    return subject, body + SIGNATURE


async def notify(
    sender: Optional[NotificationSender],
    kind: NotificationType,
    to: Optional[str],
    data: dict[str, Any],
) -> Optional[str]:
    """
    Send a typed notification as a side effect of another operation.
    Failures are logged and swallowed; returns the message id or None.
    """
    if sender is None or not to:
        return None
    subject, body = render_notification(kind, data)
    try:
        return await sender.send(to, subject, body)
    except Exception as e:
        logger.warning(f"{kind.value} notification to {to} failed: {e}")
        return None


# =============================================================================
# Notification Service
# =============================================================================

@dataclass
class BulkSendResult:
    results: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        sent = sum(1 for r in self.results if r["status"] == "sent")
        return {
            "message": "Bulk email processing completed",
            "results": self.results,
            "summary": {
                "total": len(self.results),
                "sent": sent,
                "failed": len(self.results) - sent,
            },
        }


class NotificationService:
    """Admin-initiated email, free-form or from a typed template."""

    def __init__(self, sender: NotificationSender, gate: Optional[AuthorizationGate] = None):
        self.sender = sender
        self.gate = gate or AuthorizationGate()

    def _compose(
        self,
        subject: Optional[str],
        body: Optional[str],
        template: Optional[str],
        data: Optional[dict[str, Any]],
    ) -> tuple[str, str]:
        if template:
            try:
                kind = NotificationType(template)
            except ValueError:
                raise ValidationError(f"Invalid notification type: {template}") from None
            template_subject, html_body = render_notification(kind, data or {})
            return subject or template_subject, html_body
        if not subject or not body:
            raise ValidationError("Subject and body (or a template) are required")
        return subject, body

    async def _send_one(self, to: str, subject: str, html_body: str) -> str:
        if not is_valid_email(to):
            raise ValidationError("Invalid email address format")
        return await self.sender.send(to, subject, html_body)

    @service_boundary("sendEmailNotification", "Failed to send email notification")
    async def send_email(
        self,
        caller: CallerContext,
        to: str,
        subject: Optional[str] = None,
        body: Optional[str] = None,
        template: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> str:
        self.gate.require_admin(caller)
        subject, html_body = self._compose(subject, body, template, data)
        message_id = await self._send_one(to, subject, html_body)
        logger.info(
            "Email notification sent",
            extra={"context": log_context("sendEmailNotification", caller.uid, to=to, messageId=message_id)},
        )
        return message_id

    @service_boundary("sendBulkEmail", "Failed to send bulk email notifications")
    async def send_bulk(
        self,
        caller: CallerContext,
        recipients: list[str],
        subject: Optional[str] = None,
        body: Optional[str] = None,
        template: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> BulkSendResult:
        """Send to each recipient; one failure does not stop the rest."""
        self.gate.require_admin(caller)
        if not recipients:
            raise ValidationError("Missing or invalid recipients array")
        subject, html_body = self._compose(subject, body, template, data)

        result = BulkSendResult()
        for recipient in recipients:
            try:
                message_id = await self._send_one(recipient, subject, html_body)
                result.results.append({"recipient": recipient, "status": "sent", "messageId": message_id})
            except Exception as e:
                logger.warning(f"Bulk email to {recipient} failed: {e}")
                result.results.append({"recipient": recipient, "status": "failed", "error": str(e)})

        summary = result.to_dict()["summary"]
        logger.info(
            "Bulk email processing completed",
            extra={"context": log_context("sendBulkEmail", caller.uid, **summary)},
        )
        return result
