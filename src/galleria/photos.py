"""Photo uploads, moves, deletes, captions, likes and ordering."""

import logging
from typing import Callable, Optional, Sequence
from urllib.parse import quote

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from galleria.albums import get_album, slug_chain
from galleria.cache import PROVIDER_LOOKUP_TTL_SECONDS, TAG_PHOTOS, cache, invalidate_for
from galleria.errors import ConsistencyConflict, NotFound, StorageError, ValidationError
from galleria.image import is_heic, read_dimensions
from galleria.metadata import Photo, PhotoLike, PHOTO_VISIBLE, PROVIDER_R2, STORAGE_PROVIDERS
from galleria.settings import settings
from galleria.storage import StorageBackend, build_object_key, get_storage_backend

logger = logging.getLogger(__name__)

THUMBNAIL_PATH = "/api/v1/photos/thumbnail"


def _require_provider(provider: str) -> str:
    normalized = str(provider or PROVIDER_R2).strip().lower()
    if normalized not in STORAGE_PROVIDERS:
        raise ValidationError(f"Unknown storage provider: {provider}")
    return normalized


def get_photo(db: Session, photo_id: str) -> Photo:
    photo = db.query(Photo).filter(Photo.id == photo_id).first() if photo_id else None
    if not photo:
        raise NotFound(f"Photo {photo_id} not found")
    return photo


def sign_upload(
    db: Session,
    album_id: str,
    filename: str,
    content_type: str,
    backend_for: Callable[[str], StorageBackend] = get_storage_backend,
) -> dict:
    """Issue a presigned PUT for a direct upload into the private bucket."""
    if not filename or not content_type or not album_id:
        raise ValidationError("Missing required fields")
    backend = backend_for(PROVIDER_R2)
    if not backend.presigns_uploads:
        raise ValidationError(f"{backend.provider_name} does not accept direct uploads")
    get_album(db, album_id)
    key = build_object_key(slug_chain(db, album_id), filename)
    upload_url = backend.issue_upload_handle(key, content_type)
    return {"upload_url": upload_url, "key": key, "provider": PROVIDER_R2}


def _insert_photo(db: Session, **fields) -> Photo:
    photo = Photo(visibility=PHOTO_VISIBLE, **fields)
    db.add(photo)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConsistencyConflict(f"Photo {fields.get('r2_key')} is already registered")
    db.refresh(photo)
    return photo


def register_photo(
    db: Session,
    *,
    album_id: str,
    filename: str,
    key: str,
    file_size: int,
    width: Optional[int] = None,
    height: Optional[int] = None,
    provider: str = PROVIDER_R2,
) -> Photo:
    """Record an object the client already uploaded with a presigned URL."""
    if not album_id or not filename or not key or not file_size:
        raise ValidationError("Missing required fields")
    provider = _require_provider(provider)
    get_album(db, album_id)
    photo = _insert_photo(
        db,
        album_id=album_id,
        filename=filename,
        r2_key=key,
        file_size=int(file_size),
        width=width,
        height=height,
        storage_provider=provider,
    )
    invalidate_for("photo.create")
    return photo


def upload_photo(
    db: Session,
    *,
    album_id: str,
    filename: str,
    data: bytes,
    content_type: str,
    provider: str = PROVIDER_R2,
    backend_for: Callable[[str], StorageBackend] = get_storage_backend,
) -> Photo:
    """Store uploaded bytes in the chosen bucket, then record the photo.

    Nothing is written to the database unless the storage put succeeded.
    If the row insert fails the stored object is removed again.
    """
    if not album_id or not filename or not data:
        raise ValidationError("Missing file or albumId")
    provider = _require_provider(provider)
    get_album(db, album_id)

    key = build_object_key(slug_chain(db, album_id), filename)
    backend = backend_for(provider)
    backend.put(key, data, content_type or "application/octet-stream")
    width, height = read_dimensions(data)

    try:
        photo = _insert_photo(
            db,
            album_id=album_id,
            filename=filename,
            r2_key=key,
            file_size=len(data),
            width=width,
            height=height,
            storage_provider=provider,
        )
    except Exception:
        try:
            backend.delete(key)
        except StorageError:
            logger.exception("Failed to remove orphaned upload %s from %s", key, provider)
        raise

    invalidate_for("photo.create")
    logger.info("Uploaded %s to %s (%s bytes)", key, provider, len(data))
    return photo


def move_photo(db: Session, photo_id: str, album_id: str) -> Photo:
    """Move a photo to another album. The storage key is left unchanged."""
    if not photo_id or not album_id:
        raise ValidationError("Missing photoId or albumId")
    photo = get_photo(db, photo_id)
    get_album(db, album_id)
    photo.album_id = album_id
    db.commit()
    db.refresh(photo)
    invalidate_for("photo.move")
    return photo


def delete_photo(
    db: Session,
    photo_id: str,
    backend_for: Callable[[str], StorageBackend] = get_storage_backend,
) -> None:
    """Delete a photo from its bucket and the database.

    A failed storage delete is logged and the row is removed anyway.
    """
    photo = get_photo(db, photo_id)
    try:
        backend_for(photo.storage_provider).delete(photo.r2_key)
    except StorageError:
        logger.exception("Failed to delete %s from %s", photo.r2_key, photo.storage_provider)

    db.query(PhotoLike).filter(PhotoLike.photo_id == photo.id).delete(synchronize_session=False)
    db.delete(photo)
    db.commit()
    invalidate_for("photo.delete")


def update_caption(db: Session, photo_id: str, caption: Optional[str]) -> Photo:
    photo = get_photo(db, photo_id)
    photo.caption = (caption or "").strip() or None
    db.commit()
    db.refresh(photo)
    invalidate_for("photo.caption")
    return photo


def toggle_like(db: Session, photo_id: str, user_id: str) -> dict:
    """Like or unlike a photo for one user. Returns the new state and total count."""
    if not user_id:
        raise ValidationError("A signed-in user is required to like photos")
    get_photo(db, photo_id)

    existing = db.query(PhotoLike).filter(
        PhotoLike.photo_id == photo_id,
        PhotoLike.user_id == user_id,
    ).first()
    if existing:
        db.delete(existing)
    else:
        db.add(PhotoLike(photo_id=photo_id, user_id=user_id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConsistencyConflict("Like changed concurrently")

    count = db.query(PhotoLike).filter(PhotoLike.photo_id == photo_id).count()
    invalidate_for("photo.like")
    return {"liked": existing is None, "count": count}


def reorder_photos(db: Session, album_id: str, photo_ids: Sequence[str]) -> int:
    """Set sort_order to each photo's position in photo_ids."""
    get_album(db, album_id)
    ordered = list(photo_ids or [])
    if not ordered:
        raise ValidationError("photoIds required")
    if len(set(ordered)) != len(ordered):
        raise ValidationError("photoIds contains duplicates")

    photos = {
        photo.id: photo
        for photo in db.query(Photo).filter(Photo.album_id == album_id, Photo.id.in_(ordered)).all()
    }
    missing = [photo_id for photo_id in ordered if photo_id not in photos]
    if missing:
        raise ValidationError(f"Photos not in album {album_id}: {', '.join(missing)}")

    for position, photo_id in enumerate(ordered):
        photos[photo_id].sort_order = position
    db.commit()
    invalidate_for("photo.reorder")
    return len(ordered)


def delivery_urls(
    key: str,
    provider: str,
    filename: Optional[str] = None,
    backend_for: Callable[[str], StorageBackend] = get_storage_backend,
) -> dict:
    """Thumbnail and full-view URLs for one photo.

    Thumbnails always go through the thumbnail endpoint, which redirects for
    public objects. The full view is the public URL for public-bucket photos,
    the thumbnail endpoint in full mode for HEIC, and a signed read URL for
    everything else in the private bucket.
    """
    quoted = quote(key, safe="")
    backend = backend_for(provider)
    if backend.serves_public_urls:
        full_url = backend.public_read_url(key)
    elif is_heic(filename or key):
        full_url = f"{THUMBNAIL_PATH}?key={quoted}&full=1"
    else:
        full_url = backend.signed_read_url(key)
    return {
        "thumbnail_url": f"{THUMBNAIL_PATH}?key={quoted}&w={settings.thumbnail_default_width}",
        "full_url": full_url,
    }


def lookup_provider(db: Session, key: str) -> str:
    """Storage provider recorded for an object key; r2 when no row matches.

    Only matches are cached, so unknown keys never add entries.
    """

    def load():
        row = db.query(Photo.storage_provider).filter(Photo.r2_key == key).first()
        if row is None:
            raise NotFound(f"No photo recorded for {key}")
        return row[0]

    try:
        return cache.cached(("provider", key), PROVIDER_LOOKUP_TTL_SECONDS, (TAG_PHOTOS,), load)
    except NotFound:
        return PROVIDER_R2
