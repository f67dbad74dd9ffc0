"""
Referential Integrity Checker

Read-only scan of users, properties and documents for missing fields and
references that no longer resolve. The store enforces no foreign keys, so
this is the only place dangling references become visible.

Each issue is a plain sentence naming the record and the reference, e.g.
"Property p1 references non-existent owner u1". Records are scanned in id
order and lookups are memoized per run, so two runs over unchanged data
produce identical reports.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from deedkeeper.core.collections import ENTITY_COLLECTIONS, Collection
from deedkeeper.core.errors import ValidationError, log_context, service_boundary
from deedkeeper.core.security import AuthorizationGate
from deedkeeper.core.user_context import CallerContext, Role
from deedkeeper.models.entities import PropertyType
from deedkeeper.store.base import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    issues: list[str] = field(default_factory=list)
    checked_counts: dict[str, int] = field(
        default_factory=lambda: {c.value: 0 for c in ENTITY_COLLECTIONS}
    )

    @property
    def issues_found(self) -> int:
        return len(self.issues)

    @property
    def is_clean(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict:
        return {
            "issues": list(self.issues),
            "summary": {
                "checkedCounts": dict(self.checked_counts),
                "issuesFound": self.issues_found,
            },
        }


def is_pending_deletion(record: dict) -> bool:
    """Detached by a user deletion and waiting for reclamation."""
    return bool(record.get("markedForCleanup")) and record.get("ownerId") is None


class _LookupCache:
    """Memoized point lookups for one scan."""

    def __init__(self, store: EntityStore):
        self.store = store
        self._cache: dict[tuple[Collection, str], Optional[dict]] = {}

    async def get(self, collection: Collection, doc_id: str) -> Optional[dict]:
        key = (collection, doc_id)
        if key not in self._cache:
            self._cache[key] = await self.store.get(collection, doc_id)
        return self._cache[key]

    def seed(self, collection: Collection, records: Iterable[dict]) -> None:
        for record in records:
            self._cache[(collection, record["id"])] = record


def parse_collections(collections: Optional[Iterable[str]]) -> list[Collection]:
    """Resolve a requested subset to entity collections, in scan order."""
    if collections is None:
        return list(ENTITY_COLLECTIONS)
    requested = set()
    for name in collections:
        try:
            coll = Collection(name)
        except ValueError:
            coll = None
        if coll not in ENTITY_COLLECTIONS:
            raise ValidationError(f"Invalid collection for integrity check: {name}")
        requested.add(coll)
    if not requested:
        raise ValidationError("At least one collection is required")
    return [c for c in ENTITY_COLLECTIONS if c in requested]


class IntegrityChecker:
    def __init__(self, store: EntityStore, gate: Optional[AuthorizationGate] = None):
        self.store = store
        self.gate = gate or AuthorizationGate()

    @service_boundary("checkDataIntegrity", "Data integrity check failed")
    async def check(
        self,
        caller: CallerContext,
        collections: Optional[Iterable[str]] = None,
    ) -> IntegrityReport:
        """Scan the requested collections (default: all three)."""
        self.gate.require_admin(caller)
        targets = parse_collections(collections)
        logger.info(
            "Starting data integrity check",
            extra={"context": log_context("checkDataIntegrity", caller.uid)},
        )

        report = await self.scan(targets)

        logger.info(
            "Data integrity check completed",
            extra={"context": log_context(
                "checkDataIntegrity",
                caller.uid,
                issuesFound=report.issues_found,
                checkedCounts=report.checked_counts,
            )},
        )
        return report

    async def scan(self, targets: list[Collection]) -> IntegrityReport:
        """The scan itself, without authorization or logging."""
        report = IntegrityReport()
        lookups = _LookupCache(self.store)

        for collection in targets:
            try:
                records = await self.store.query(collection)
            except Exception as e:
                report.issues.append(f"Error reading {collection.value}: {e}")
                continue
            report.checked_counts[collection.value] = len(records)
            lookups.seed(collection, records)

            for record in records:
                if collection is Collection.USERS:
                    self._check_user(record, report)
                elif collection is Collection.PROPERTIES:
                    await self._check_property(record, report, lookups)
                else:
                    await self._check_document(record, report, lookups)

        return report

    # -------------------------------------------------------------------------
    # Per-collection rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_user(user: dict, report: IntegrityReport) -> None:
        uid = user["id"]
        if not user.get("email"):
            report.issues.append(f"User {uid} missing email")
        if not user.get("name"):
            report.issues.append(f"User {uid} missing name")
        if user.get("role") not in {r.value for r in Role}:
            report.issues.append(f"User {uid} has invalid role: {user.get('role')}")

    async def _check_property(self, prop: dict, report: IntegrityReport, lookups: _LookupCache) -> None:
        pid = prop["id"]
        if not prop.get("address"):
            report.issues.append(f"Property {pid} missing address")
        if prop.get("type") not in {t.value for t in PropertyType}:
            report.issues.append(f"Property {pid} has invalid type: {prop.get('type')}")

        owner_id = prop.get("ownerId")
        if owner_id:
            try:
                owner = await lookups.get(Collection.USERS, owner_id)
            except Exception as e:
                logger.warning(f"Owner lookup failed for property {pid}: {e}")
                report.issues.append(f"Error checking owner {owner_id} for property {pid}")
            else:
                if owner is None:
                    report.issues.append(f"Property {pid} references non-existent owner {owner_id}")
                elif owner.get("role") != Role.OWNER.value:
                    report.issues.append(
                        f"Property {pid} owner {owner_id} has role {owner.get('role')}, expected owner"
                    )

        tenant_id = prop.get("tenantId")
        if tenant_id:
            try:
                tenant = await lookups.get(Collection.USERS, tenant_id)
            except Exception as e:
                logger.warning(f"Tenant lookup failed for property {pid}: {e}")
                report.issues.append(f"Error checking tenant {tenant_id} for property {pid}")
            else:
                if tenant is None:
                    report.issues.append(f"Property {pid} references non-existent tenant {tenant_id}")

    async def _check_document(self, doc: dict, report: IntegrityReport, lookups: _LookupCache) -> None:
        did = doc["id"]
        pending = is_pending_deletion(doc)
        if not doc.get("displayName"):
            report.issues.append(f"Document {did} missing displayName")
        if not doc.get("ownerId") and not pending:
            report.issues.append(f"Document {did} missing ownerId")

        prop = None
        property_id = doc.get("propertyId")
        if property_id:
            try:
                prop = await lookups.get(Collection.PROPERTIES, property_id)
            except Exception as e:
                logger.warning(f"Property lookup failed for document {did}: {e}")
                report.issues.append(f"Error checking property {property_id} for document {did}")
            else:
                if prop is None:
                    report.issues.append(f"Document {did} references non-existent property {property_id}")

        owner_id = doc.get("ownerId")
        if owner_id:
            try:
                owner = await lookups.get(Collection.USERS, owner_id)
            except Exception as e:
                logger.warning(f"Owner lookup failed for document {did}: {e}")
                report.issues.append(f"Error checking owner {owner_id} for document {did}")
            else:
                if owner is None:
                    report.issues.append(f"Document {did} references non-existent owner {owner_id}")

        if prop is not None and owner_id and prop.get("ownerId") and prop["ownerId"] != owner_id:
            report.issues.append(
                f"Document {did} owner {owner_id} differs from property {property_id} owner {prop['ownerId']}"
            )
