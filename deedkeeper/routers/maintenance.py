"""
Maintenance Router
Backups, integrity checks and orphan cleanup. Admin only.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from deedkeeper.core.container import Services, get_services
from deedkeeper.core.security import get_caller
from deedkeeper.core.user_context import CallerContext

router = APIRouter(prefix="/api/maintenance", tags=["Maintenance"])


# =============================================================================
# Request Models
# =============================================================================

class BackupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    collections: list[str] = Field(default_factory=list)
    include_subcollections: bool = Field(False, alias="includeSubcollections")


class IntegrityRequest(BaseModel):
    collections: Optional[list[str]] = None


class CleanupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = ""
    dry_run: bool = Field(False, alias="dryRun")


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/backup")
async def create_backup(
    request: BackupRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    result = await services.backup.create_backup(
        caller,
        request.collections,
        include_subcollections=request.include_subcollections,
    )
    return {"success": True, **result.to_dict()}


@router.get("/backup")
async def list_backups(
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    backups = await services.backup.list_backups(caller)
    return {"backups": backups, "total": len(backups)}


@router.get("/backup/{backup_id}")
async def get_backup(
    backup_id: str,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Backup metadata (status, error) and which snapshots were written."""
    return await services.backup.get_backup(caller, backup_id)


@router.post("/integrity")
async def check_integrity(
    request: Optional[IntegrityRequest] = None,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    collections = request.collections if request else None
    report = await services.integrity.check(caller, collections)
    message = (
        "No integrity issues found"
        if report.is_clean
        else f"Found {report.issues_found} integrity issues"
    )
    return {"success": True, "message": message, **report.to_dict()}


@router.post("/cleanup")
async def cleanup_orphaned_data(
    request: CleanupRequest,
    caller: CallerContext = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """
    Remove orphaned documents and properties.

    itemsEligible counts what qualifies for deletion; itemsDeleted counts
    what was actually removed and is always 0 for a dry run.
    """
    result = await services.reclamation.reclaim(caller, request.type, dry_run=request.dry_run)
    message = (
        "Dry run completed - no data was deleted"
        if request.dry_run
        else "Cleanup completed successfully"
    )
    return {
        "success": True,
        "message": message,
        "dryRun": request.dry_run,
        "itemsProcessed": result.processed,
        "itemsEligible": result.deleted,
        "itemsDeleted": result.committed,
        "eligibleIds": result.eligible_ids,
        "errors": result.errors or None,
    }
