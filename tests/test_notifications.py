"""
Deedkeeper - Notification Sender Tests
"""

import json
import logging
import re

import httpx
import pytest

from deedkeeper.core.errors import AuthorizationError, ValidationError
from deedkeeper.services.notifications import (
    LoggingNotificationSender,
    NotificationService,
    NotificationType,
    WebhookNotificationSender,
    build_notification_sender,
    generate_message_id,
    notify,
    render_notification,
)


def test_message_id_format():
    assert re.fullmatch(r"msg_\d+_[a-z0-9]{9}", generate_message_id())


@pytest.mark.anyio
async def test_logging_sender_records_message():
    sender = LoggingNotificationSender()

    message_id = await sender.send("owner@example.com", "Hello", "<p>Hi</p>")

    assert list(sender.sent) == [{
        "to": "owner@example.com",
        "subject": "Hello",
        "html": "<p>Hi</p>",
        "messageId": message_id,
    }]


@pytest.mark.anyio
async def test_invalid_recipient_rejected():
    with pytest.raises(ValidationError, match="Invalid email address"):
        await LoggingNotificationSender().send("not-an-email", "Hello", "")


@pytest.mark.anyio
async def test_webhook_sender_posts_json():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sender = WebhookNotificationSender("https://relay.example.com/send", client=client)
        message_id = await sender.send("owner@example.com", "Transfer", "<p>Done</p>")

    assert received == [{
        "to": "owner@example.com",
        "subject": "Transfer",
        "html": "<p>Done</p>",
        "messageId": message_id,
    }]


@pytest.mark.anyio
async def test_webhook_sender_raises_on_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    async with httpx.AsyncClient(transport=transport) as client:
        sender = WebhookNotificationSender("https://relay.example.com/send", client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await sender.send("owner@example.com", "Transfer", "")


def test_build_sender_from_settings(settings):
    assert isinstance(build_notification_sender(settings), LoggingNotificationSender)

    webhook = settings.model_copy(update={"notification_webhook_url": "https://relay.example.com"})
    assert isinstance(build_notification_sender(webhook), WebhookNotificationSender)


@pytest.mark.anyio
async def test_logging_sender_keeps_bounded_history():
    sender = LoggingNotificationSender(history=2)

    for n in range(5):
        await sender.send(f"owner{n}@example.com", "Hello", "")

    assert [m["to"] for m in sender.sent] == ["owner3@example.com", "owner4@example.com"]


# =============================================================================
# Typed Notifications
# =============================================================================

def test_role_changed_template_escapes_values():
    subject, body = render_notification(NotificationType.ROLE_CHANGED, {
        "name": "<script>x</script>",
        "previousRole": None,
        "newRole": "Owner",
    })

    assert subject == "Role Update Notification"
    assert "&lt;script&gt;" in body
    assert "<script>" not in body
    assert "<strong>Previous Role:</strong> None" in body
    assert "<strong>New Role:</strong> Owner" in body


@pytest.mark.anyio
async def test_notify_swallows_delivery_failures(caplog):
    class BrokenSender(LoggingNotificationSender):
        async def send(self, to, subject, html_body):
            raise RuntimeError("relay down")

    with caplog.at_level(logging.WARNING, logger="deedkeeper.services.notifications"):
        message_id = await notify(BrokenSender(), NotificationType.USER_CREATED, "new@example.com", {"name": "New"})

    assert message_id is None
    assert "user_created notification to new@example.com failed" in caplog.text


@pytest.mark.anyio
async def test_notify_without_recipient_sends_nothing(notifier):
    assert await notify(notifier, NotificationType.USER_DELETED, None, {}) is None
    assert len(notifier.sent) == 0


# =============================================================================
# Notification Service
# =============================================================================

@pytest.fixture
def notifications(notifier) -> NotificationService:
    return NotificationService(notifier)


@pytest.mark.anyio
async def test_send_email_from_template(notifications, notifier, admin):
    message_id = await notifications.send_email(
        admin, "owner@example.com", template="property_assigned", data={"address": "1 Elm Street"},
    )

    assert notifier.sent[0]["messageId"] == message_id
    assert notifier.sent[0]["subject"] == "Property Assignment Notification"
    assert "1 Elm Street" in notifier.sent[0]["html"]


@pytest.mark.anyio
async def test_send_email_validation(notifications, admin, owner_ctx):
    with pytest.raises(ValidationError, match="Subject and body"):
        await notifications.send_email(admin, "owner@example.com", subject="Hi")
    with pytest.raises(ValidationError, match="Invalid notification type"):
        await notifications.send_email(admin, "owner@example.com", template="welcome")
    with pytest.raises(ValidationError, match="Invalid email address format"):
        await notifications.send_email(admin, "nobody", subject="Hi", body="<p>Hi</p>")
    with pytest.raises(AuthorizationError):
        await notifications.send_email(owner_ctx, "owner@example.com", subject="Hi", body="<p>Hi</p>")


@pytest.mark.anyio
async def test_bulk_email_reports_each_recipient(notifications, notifier, admin):
    result = await notifications.send_bulk(
        admin, ["a@example.com", "not-an-email", "b@example.com"], subject="Notice", body="<p>Hi</p>",
    )

    body = result.to_dict()
    assert body["summary"] == {"total": 3, "sent": 2, "failed": 1}
    assert [r["status"] for r in body["results"]] == ["sent", "failed", "sent"]
    assert len(notifier.sent) == 2

    with pytest.raises(ValidationError):
        await notifications.send_bulk(admin, [], subject="Notice", body="<p>Hi</p>")
