"""Album browsing and album management endpoints."""

from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from galleria import albums as album_service
from galleria import photos as photo_service
from galleria.auth.dependencies import Viewer, get_current_viewer, require_owner
from galleria.database import get_db
from galleria.dependencies import get_backend_resolver
from galleria.errors import Forbidden, ValidationError
from galleria.metadata import ALBUM_VISIBILITY_PRIVATE
from galleria.storage import StorageBackend

router = APIRouter(prefix="/api/v1", tags=["albums"])


class AlbumCreateBody(BaseModel):
    name: str
    parent_id: Optional[str] = None
    visibility: str = ALBUM_VISIBILITY_PRIVATE


class AlbumUpdateBody(BaseModel):
    name: Optional[str] = None
    visibility: Optional[str] = None
    archived: Optional[bool] = None


class AlbumCoverBody(BaseModel):
    photo_id: Optional[str] = None


def _serialize_album(album) -> dict:
    return {
        "id": album.id,
        "name": album.name,
        "slug": album.slug,
        "parent_id": album.parent_id,
        "visibility": album.visibility,
        "cover_photo_id": album.cover_photo_id,
        "created_at": album.created_at.isoformat() if album.created_at else None,
    }


def _attach_delivery_urls(photos: list[dict], backend_for: Callable[[str], StorageBackend]) -> list[dict]:
    for photo in photos:
        photo.update(photo_service.delivery_urls(photo["key"], photo["provider"], photo["filename"], backend_for))
    return photos


@router.get("/albums")
async def list_albums(
    archived: bool = Query(False),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_current_viewer),
):
    """Top-level albums visible to the caller, with covers."""
    summaries = album_service.list_root_albums(
        db,
        is_owner=viewer.is_owner,
        want_archived=archived and viewer.is_owner,
        viewer=viewer,
    )
    return album_service.summaries_to_dicts(summaries)


@router.get("/albums/all")
async def list_all_albums(
    db: Session = Depends(get_db),
    _viewer: Viewer = Depends(get_current_viewer),
):
    return album_service.list_all_albums(db)


@router.get("/albums/by-path/{album_path:path}")
async def get_album_by_path(
    album_path: str,
    archived: bool = Query(False),
    db: Session = Depends(get_db),
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    viewer: Viewer = Depends(get_current_viewer),
):
    """Resolve a slug path such as ``travel/japan`` and return the album view."""
    segments = [segment for segment in album_path.split("/") if segment]
    view = album_service.resolve_album_path(
        db,
        segments,
        is_owner=viewer.is_owner,
        want_archived=archived and viewer.is_owner,
    )
    if not album_service.can_view_album(view, viewer):
        raise Forbidden(f"Not allowed to view {album_path}")

    payload = view.to_dict()
    _attach_delivery_urls(payload["photos"], backend_for)
    if not viewer.is_owner:
        payload.pop("permitted_emails", None)
        payload.pop("permitted_role_ids", None)
    return payload


@router.post("/albums")
async def create_album(
    body: AlbumCreateBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    album = album_service.create_album(db, body.name, parent_id=body.parent_id, visibility=body.visibility)
    return _serialize_album(album)


@router.patch("/albums/{album_id}")
async def update_album(
    album_id: str,
    body: AlbumUpdateBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    """Rename, change visibility, archive or unarchive an album."""
    if body.archived is not None and body.visibility is not None:
        raise ValidationError("Send either archived or visibility, not both")

    album = None
    if body.name is not None or body.visibility is not None:
        album = album_service.update_album(db, album_id, name=body.name, visibility=body.visibility)
    if body.archived is True:
        album = album_service.archive_album(db, album_id)
    elif body.archived is False:
        album = album_service.unarchive_album(db, album_id)
    if album is None:
        raise ValidationError("Nothing to update")
    return {"success": True, "album": _serialize_album(album)}


@router.post("/albums/{album_id}/cover")
async def set_album_cover(
    album_id: str,
    body: AlbumCoverBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    album = album_service.set_album_cover(db, album_id, body.photo_id)
    return _serialize_album(album)


@router.delete("/albums/{album_id}")
async def delete_album(
    album_id: str,
    db: Session = Depends(get_db),
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    _owner: Viewer = Depends(require_owner),
):
    """Delete an album with all sub-albums and photos."""
    result = album_service.delete_album_recursive(db, album_id, backend_for)
    return {
        "success": True,
        "count": result.photos_deleted,
        "albums_deleted": result.albums_deleted,
        "storage_failures": result.storage_failures,
    }


@router.get("/albums/{album_id}/photos/recursive")
async def list_recursive_photos(
    album_id: str,
    db: Session = Depends(get_db),
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    _owner: Viewer = Depends(require_owner),
):
    """Photos from the album and every descendant, for the cover picker."""
    photos = [photo.to_dict() for photo in album_service.collect_recursive_photos(db, album_id)]
    return _attach_delivery_urls(photos, backend_for)
