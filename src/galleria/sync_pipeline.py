"""Bucket-to-database reconciliation.

Object keys are read as ``<album>/<sub-album>/.../<filename>``. Each key
ends up as exactly one photo row under the album chain its path names;
running the same listing twice changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Iterable, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from galleria.cache import invalidate_for
from galleria.metadata import (
    ALBUM_VISIBILITY_PRIVATE,
    Album,
    Photo,
    PHOTO_VISIBLE,
    PROVIDER_R2,
    STORAGE_PROVIDERS,
)
from galleria.errors import ValidationError
from galleria.storage import BucketObject, StorageBackend

logger = logging.getLogger(__name__)

GENERAL_ALBUM_NAME = "General"
GENERAL_ALBUM_SLUG = "general"

_WHITESPACE = re.compile(r"\s+")


@dataclass
class SyncResult:
    photos_processed: int = 0
    albums_created: int = 0
    photos_created: int = 0
    photos_updated: int = 0

    def to_dict(self) -> dict:
        return {
            "photos_processed": self.photos_processed,
            "albums_created": self.albums_created,
            "photos_created": self.photos_created,
            "photos_updated": self.photos_updated,
        }


def sync_slug(segment: str) -> str:
    """Slug for a bucket path segment: lowercase, whitespace runs become '-'."""
    return _WHITESPACE.sub("-", str(segment or "").lower())


def split_key(key: str) -> tuple[list[str], str]:
    """Split an object key into its album segments and filename."""
    parts = key.split("/")
    filename = parts.pop()
    return [part for part in parts if part.strip()], filename


def _find_or_create_album(db: Session, name: str, slug: str, parent_id: Optional[str]) -> tuple[Album, bool]:
    parent_filter = Album.parent_id.is_(None) if parent_id is None else Album.parent_id == parent_id
    album = db.query(Album).filter(Album.slug == slug, parent_filter).first()
    if album:
        return album, False

    album = Album(name=name, slug=slug, parent_id=parent_id, visibility=ALBUM_VISIBILITY_PRIVATE)
    db.add(album)
    try:
        db.commit()
    except IntegrityError:
        # Created by a concurrent sync or upload.
        db.rollback()
        album = db.query(Album).filter(Album.slug == slug, parent_filter).first()
        if album is None:
            raise
        return album, False
    db.refresh(album)
    return album, True


def ensure_album_chain(db: Session, segments: Sequence[str]) -> tuple[Album, int]:
    """Find or create each level of an album path; returns (leaf, albums created)."""
    if not segments:
        album, was_created = _find_or_create_album(db, GENERAL_ALBUM_NAME, GENERAL_ALBUM_SLUG, None)
        return album, int(was_created)

    created = 0
    parent_id = None
    album = None
    for segment in segments:
        album, was_created = _find_or_create_album(db, segment, sync_slug(segment), parent_id)
        created += int(was_created)
        parent_id = album.id
    return album, created


def reconcile(db: Session, listing: Iterable[BucketObject], *, provider: str = PROVIDER_R2) -> SyncResult:
    """Upsert one photo row per listed object.

    Existing rows only get ``file_size`` and ``album_id`` updated, and only
    when they changed. Each object commits on its own, so a failure part way
    through keeps everything before it. The cache is invalidated either way.
    """
    if provider not in STORAGE_PROVIDERS:
        raise ValidationError(f"Unknown storage provider: {provider}")

    result = SyncResult()
    try:
        for obj in listing:
            key = obj.key
            if not key or key.endswith("/"):
                continue

            segments, filename = split_key(key)
            album, created = ensure_album_chain(db, segments)
            result.albums_created += created

            size = int(obj.size or 0)
            photo = db.query(Photo).filter(
                Photo.storage_provider == provider,
                Photo.r2_key == key,
            ).first()
            if photo is None:
                db.add(Photo(
                    album_id=album.id,
                    filename=filename,
                    r2_key=key,
                    file_size=size,
                    storage_provider=provider,
                    visibility=PHOTO_VISIBLE,
                ))
                result.photos_created += 1
            elif photo.file_size != size or photo.album_id != album.id:
                photo.file_size = size
                photo.album_id = album.id
                result.photos_updated += 1

            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            result.photos_processed += 1
    finally:
        invalidate_for("sync")

    logger.info(
        "Sync of %s complete: %s processed, %s albums created, %s photos created, %s updated",
        provider,
        result.photos_processed,
        result.albums_created,
        result.photos_created,
        result.photos_updated,
    )
    return result


def sync_bucket(db: Session, backend: StorageBackend) -> SyncResult:
    """Reconcile the whole bucket behind a backend."""
    logger.info("Starting %s sync of bucket %s", backend.provider_name, getattr(backend, "bucket_name", ""))
    return reconcile(db, backend.list_objects(), provider=backend.provider_name)
