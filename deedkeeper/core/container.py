"""
Service wiring.

Everything a request handler needs is built once here and hung on
app.state.services, so tests can swap in an in-memory store, a fixed
settings object or a recording notifier without patching globals.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from deedkeeper.core.config import Settings
from deedkeeper.core.database import get_session_factory
from deedkeeper.core.security import AuthorizationGate, CredentialResolver
from deedkeeper.services.auth_provider import AuthProvider, LocalAuthProvider
from deedkeeper.services.auth_service import AuthService
from deedkeeper.services.backup import BackupService
from deedkeeper.services.integrity import IntegrityChecker
from deedkeeper.services.lifecycle import UserLifecycleService
from deedkeeper.services.notifications import (
    NotificationSender,
    NotificationService,
    build_notification_sender,
)
from deedkeeper.services.ownership import OwnershipTransferService
from deedkeeper.services.reclamation import ReclamationService
from deedkeeper.services.records import RecordService
from deedkeeper.services.validation import ValidationService
from deedkeeper.store.base import EntityStore
from deedkeeper.store.memory import InMemoryEntityStore
from deedkeeper.store.sql import SqlEntityStore


@dataclass
class Services:
    settings: Settings
    store: EntityStore
    auth_provider: AuthProvider
    notifier: NotificationSender
    notifications: NotificationService
    gate: AuthorizationGate
    resolver: CredentialResolver
    lifecycle: UserLifecycleService
    auth: AuthService
    integrity: IntegrityChecker
    reclamation: ReclamationService
    backup: BackupService
    ownership: OwnershipTransferService
    records: RecordService
    validation: ValidationService


def build_store(settings: Settings) -> EntityStore:
    if settings.store_backend == "sql":
        return SqlEntityStore(get_session_factory())
    return InMemoryEntityStore()


def build_services(
    settings: Settings,
    store: Optional[EntityStore] = None,
    auth_provider: Optional[AuthProvider] = None,
    notifier: Optional[NotificationSender] = None,
) -> Services:
    store = store or build_store(settings)
    auth_provider = auth_provider or LocalAuthProvider(
        settings.credential_secret,
        store,
        ttl_minutes=settings.credential_ttl_minutes,
    )
    notifier = notifier or build_notification_sender(settings)
    gate = AuthorizationGate()
    lifecycle = UserLifecycleService(store)

    return Services(
        settings=settings,
        store=store,
        auth_provider=auth_provider,
        notifier=notifier,
        notifications=NotificationService(notifier, gate=gate),
        gate=gate,
        resolver=CredentialResolver(auth_provider),
        lifecycle=lifecycle,
        auth=AuthService(store, auth_provider, lifecycle, settings=settings, gate=gate, notifier=notifier),
        integrity=IntegrityChecker(store, gate=gate),
        reclamation=ReclamationService(store, settings=settings, gate=gate),
        backup=BackupService(store, settings=settings, gate=gate),
        ownership=OwnershipTransferService(store, lifecycle, notifier, gate=gate),
        records=RecordService(store, gate=gate),
        validation=ValidationService(store, auth_provider),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the services built at startup."""
    return request.app.state.services
