"""Photo upload, delivery and editing endpoints."""

from typing import Callable, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from galleria import photos as photo_service
from galleria.auth.dependencies import Viewer, get_current_viewer, require_owner
from galleria.database import get_db
from galleria.dependencies import get_backend_resolver, get_thumbnail_pipeline
from galleria.errors import ValidationError
from galleria.image import ThumbnailPipeline
from galleria.metadata import PROVIDER_ORACLE, PROVIDER_R2
from galleria.ratelimit import LIKE_RATE_LIMIT, THUMBNAIL_RATE_LIMIT, limiter
from galleria.storage import StorageBackend

router = APIRouter(prefix="/api/v1", tags=["photos"])


class SignUploadBody(BaseModel):
    album_id: str
    filename: str
    content_type: str


class RegisterPhotoBody(BaseModel):
    album_id: str
    filename: str
    key: str
    file_size: int
    width: Optional[int] = None
    height: Optional[int] = None


class MovePhotoBody(BaseModel):
    photo_id: str
    album_id: str


class CaptionBody(BaseModel):
    caption: Optional[str] = None


class ReorderBody(BaseModel):
    photo_ids: list[str]


def _serialize_photo(photo) -> dict:
    return {
        "id": photo.id,
        "album_id": photo.album_id,
        "filename": photo.filename,
        "key": photo.r2_key,
        "provider": photo.storage_provider,
        "file_size": int(photo.file_size or 0),
        "width": photo.width,
        "height": photo.height,
        "visibility": photo.visibility,
        "caption": photo.caption,
        "sort_order": photo.sort_order,
        "uploaded_at": photo.uploaded_at.isoformat() if photo.uploaded_at else None,
    }


@router.post("/photos/sign")
async def sign_upload(
    body: SignUploadBody,
    db: Session = Depends(get_db),
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    _owner: Viewer = Depends(require_owner),
):
    """Presigned PUT URL for a direct upload to the private bucket."""
    return photo_service.sign_upload(db, body.album_id, body.filename, body.content_type, backend_for)


@router.post("/photos")
async def register_photo(
    body: RegisterPhotoBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    """Record a photo uploaded through a presigned URL."""
    photo = photo_service.register_photo(
        db,
        album_id=body.album_id,
        filename=body.filename,
        key=body.key,
        file_size=body.file_size,
        width=body.width,
        height=body.height,
    )
    return _serialize_photo(photo)


@router.post("/photos/upload")
async def upload_photo(
    file: UploadFile = File(...),
    album_id: str = Form(...),
    provider: str = Form(PROVIDER_R2),
    db: Session = Depends(get_db),
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    _owner: Viewer = Depends(require_owner),
):
    """Proxied multipart upload into either bucket."""
    data = await file.read()
    photo = photo_service.upload_photo(
        db,
        album_id=album_id,
        filename=file.filename or "",
        data=data,
        content_type=file.content_type or "application/octet-stream",
        provider=provider,
        backend_for=backend_for,
    )
    return {"success": True, "photo": _serialize_photo(photo)}


@router.post("/photos/move")
async def move_photo(
    body: MovePhotoBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    return _serialize_photo(photo_service.move_photo(db, body.photo_id, body.album_id))


@router.delete("/photos/{photo_id}")
async def delete_photo(
    photo_id: str,
    db: Session = Depends(get_db),
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    _owner: Viewer = Depends(require_owner),
):
    photo_service.delete_photo(db, photo_id, backend_for)
    return {"success": True, "id": photo_id}


@router.patch("/photos/{photo_id}/caption")
async def update_caption(
    photo_id: str,
    body: CaptionBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    return _serialize_photo(photo_service.update_caption(db, photo_id, body.caption))


@router.post("/photos/{photo_id}/like")
@limiter.limit(LIKE_RATE_LIMIT)
async def toggle_like(
    request: Request,
    photo_id: str,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_current_viewer),
):
    return photo_service.toggle_like(db, photo_id, viewer.user_id)


@router.post("/albums/{album_id}/reorder")
async def reorder_photos(
    album_id: str,
    body: ReorderBody,
    db: Session = Depends(get_db),
    _owner: Viewer = Depends(require_owner),
):
    updated = photo_service.reorder_photos(db, album_id, body.photo_ids)
    return {"success": True, "updated": updated}


@router.get("/photos/thumbnail")
@limiter.limit(THUMBNAIL_RATE_LIMIT)
async def get_thumbnail(
    request: Request,
    key: Optional[str] = Query(None),
    w: Optional[int] = Query(None),
    full: bool = Query(False),
    db: Session = Depends(get_db),
    backend_for: Callable[[str], StorageBackend] = Depends(get_backend_resolver),
    pipeline: ThumbnailPipeline = Depends(get_thumbnail_pipeline),
    _viewer: Viewer = Depends(get_current_viewer),
):
    """Resized JPEG for private objects; redirect for public ones."""
    if not key:
        raise ValidationError("Missing key")

    provider = photo_service.lookup_provider(db, key)
    if provider == PROVIDER_ORACLE:
        return RedirectResponse(url=backend_for(PROVIDER_ORACLE).public_read_url(key), status_code=307)

    rendered = pipeline.render(key, provider, requested_width=w, full_quality=full)
    return Response(
        content=rendered.body,
        media_type=rendered.content_type,
        headers={"Cache-Control": rendered.cache_control},
    )
