"""
Deedkeeper - Error Handling Tests
Service boundary wrapping and structured log context.
"""

import json
import logging

import pytest

from deedkeeper.core.errors import (
    AuthorizationError,
    DeedkeeperError,
    InternalError,
    NotFoundError,
    log_context,
    service_boundary,
)
from deedkeeper.core.logging_config import JsonFormatter


class Widgets:
    @service_boundary("doWidget", "Widget operation failed")
    async def explode(self, caller, message: str):
        raise RuntimeError(message)

    @service_boundary("doWidget", "Widget operation failed")
    async def deny(self, caller):
        raise AuthorizationError("Admin role required")

    @service_boundary("doWidget", "Widget operation failed")
    async def ok(self, caller):
        return "done"


@pytest.mark.anyio
async def test_unexpected_error_becomes_internal(admin):
    with pytest.raises(InternalError) as exc_info:
        await Widgets().explode(admin, "db password is hunter2")

    assert exc_info.value.message == "Widget operation failed"
    assert "hunter2" not in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.anyio
async def test_unexpected_error_is_logged_with_context(admin, caplog):
    with caplog.at_level(logging.ERROR, logger="deedkeeper.core.errors"):
        with pytest.raises(InternalError):
            await Widgets().explode(admin, "boom")

    record = caplog.records[-1]
    assert record.context == {"functionName": "doWidget", "userId": "admin-1"}


@pytest.mark.anyio
async def test_domain_errors_pass_through(admin):
    with pytest.raises(AuthorizationError):
        await Widgets().deny(admin)
    assert await Widgets().ok(admin) == "done"


def test_error_envelope():
    assert NotFoundError("Backup b1 not found").to_dict() == {
        "code": "not-found",
        "message": "Backup b1 not found",
    }
    assert issubclass(InternalError, DeedkeeperError)


def test_log_context_merges_extra():
    assert log_context("createDataBackup", "u1", backupId="b1") == {
        "functionName": "createDataBackup",
        "userId": "u1",
        "backupId": "b1",
    }


def test_json_formatter_includes_context():
    record = logging.LogRecord("deedkeeper.test", logging.INFO, __file__, 1, "Backup done", None, None)
    record.context = log_context("createDataBackup", "u1", backupId="b1")

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Backup done"
    assert payload["level"] == "INFO"
    assert payload["functionName"] == "createDataBackup"
    assert payload["backupId"] == "b1"
