"""Owner-only maintenance, role and permission endpoints."""

from typing import Callable, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from galleria import albums as album_service
from galleria import roles as role_service
from galleria.auth.dependencies import Viewer, require_owner
from galleria.database import get_db
from galleria.dedup import run_deduplication
from galleria.dependencies import get_backend_resolver
from galleria.metadata import PROVIDER_R2
from galleria.storage import StorageBackend, measure_storage_usage
from galleria.sync_pipeline import sync_bucket

router = APIRouter(prefix="/api/v1", tags=["admin"])


class SyncBody(BaseModel):
    provider: str = PROVIDER_R2


class RoleCreateBody(BaseModel):
    name: str
    color: Optional[str] = None


class IdBody(BaseModel):
    id: str


class RoleAssignBody(BaseModel):
    role_id: str
    user_email: str


class RoleAlbumBody(BaseModel):
    role_id: str
    album_id: str


class AlbumPermissionBody(BaseModel):
    email: str


def _serialize_role(role) -> dict:
    return {
        "id": role.id,
        "name": role.name,
        "color": role.color,
        "is_system": role.is_system,
        "created_at": role.created_at.isoformat() if role.created_at else None,
    }


@router.post("/sync")
async def sync_storage(
    body: Optional[SyncBody] = None,
    db: Session = Depends(get_db),
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    _owner: Viewer = Depends(require_owner),
):
    """Reconcile a bucket listing into albums and photos."""
    provider = (body.provider if body else PROVIDER_R2)
    result = sync_bucket(db, backend_for(provider))
    return {
        "success": True,
        "message": f"Sync successful. Processed {result.photos_processed} photos.",
        **result.to_dict(),
    }


@router.post("/admin/deduplicate")
async def deduplicate(
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    return {"success": True, **run_deduplication(db).to_dict()}


@router.post("/admin/storage-usage")
async def storage_usage(
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    _owner: Viewer = Depends(require_owner),
):
    usage = measure_storage_usage(backend_for)
    return {"r2_bytes": usage["r2"], "oracle_bytes": usage["oracle"]}


@router.delete("/admin/albums/empty")
async def delete_empty_albums(
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    """Delete every album with no photos anywhere beneath it."""
    return {"success": True, "deleted": album_service.delete_empty_albums(db)}


@router.get("/admin/roles")
async def list_roles(
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    return role_service.list_roles(db)


@router.post("/admin/roles")
async def create_role(
    body: RoleCreateBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    return _serialize_role(role_service.create_role(db, body.name, body.color))


@router.delete("/admin/roles")
async def delete_role(
    body: IdBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    role_service.delete_role(db, body.id)
    return {"success": True}


@router.post("/admin/roles/assign")
async def assign_role(
    body: RoleAssignBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    assignment = role_service.assign_role(db, body.role_id, body.user_email)
    return {"id": assignment.id, "role_id": assignment.role_id, "user_id": assignment.user_id}


@router.delete("/admin/roles/assign")
async def unassign_role(
    body: IdBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    role_service.unassign_role(db, body.id)
    return {"success": True}


@router.post("/admin/roles/albums")
async def grant_role_album(
    body: RoleAlbumBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    access = role_service.grant_role_album(db, body.role_id, body.album_id)
    return {"id": access.id, "role_id": access.role_id, "album_id": access.album_id}


@router.delete("/admin/roles/albums")
async def revoke_role_album(
    body: IdBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    role_service.revoke_role_album(db, body.id)
    return {"success": True}


@router.post("/admin/albums/{album_id}/permissions")
async def grant_album_permission(
    album_id: str,
    body: AlbumPermissionBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    permission = role_service.grant_album_permission(db, album_id, body.email)
    return {"id": permission.id, "album_id": permission.album_id, "user_id": permission.user_id}


@router.delete("/admin/albums/{album_id}/permissions")
async def revoke_album_permission(
    album_id: str,
    body: AlbumPermissionBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    removed = role_service.revoke_album_permission(db, album_id, body.email)
    return {"success": True, "removed": removed}
