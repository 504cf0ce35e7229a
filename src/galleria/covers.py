"""Album cover derivation.

A cover is the album's explicit cover photo when that photo still exists and
is not hidden; otherwise the earliest-uploaded visible photo among the album's
own photos and its direct children's photos. Nothing deeper is considered.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from galleria.metadata import Album, Photo, PHOTO_HIDDEN


@dataclass(frozen=True)
class CoverRef:
    """Storage location of the photo that represents an album."""

    key: str
    provider: str

    def to_dict(self) -> dict:
        return {"key": self.key, "provider": self.provider}


def resolve_covers(db: Session, albums: Iterable[Album]) -> dict[str, Optional[CoverRef]]:
    """Resolve covers for many albums with two queries in total.

    Returns a mapping of album id to CoverRef, or None for albums with no
    visible photo in scope.
    """
    albums = list(albums)
    if not albums:
        return {}

    covers: dict[str, Optional[CoverRef]] = {album.id: None for album in albums}

    explicit_ids = {album.cover_photo_id for album in albums if album.cover_photo_id}
    explicit: dict[str, CoverRef] = {}
    if explicit_ids:
        rows = db.query(Photo.id, Photo.r2_key, Photo.storage_provider).filter(
            Photo.id.in_(explicit_ids),
            Photo.visibility != PHOTO_HIDDEN,
        ).all()
        explicit = {photo_id: CoverRef(key, provider) for photo_id, key, provider in rows}

    needs_fallback = set()
    for album in albums:
        ref = explicit.get(album.cover_photo_id) if album.cover_photo_id else None
        if ref is not None:
            covers[album.id] = ref
        else:
            needs_fallback.add(album.id)

    if not needs_fallback:
        return covers

    rows = db.query(
        Photo.album_id,
        Album.parent_id,
        Photo.r2_key,
        Photo.storage_provider,
    ).join(
        Album, Album.id == Photo.album_id,
    ).filter(
        Photo.visibility != PHOTO_HIDDEN,
        or_(
            Photo.album_id.in_(needs_fallback),
            Album.parent_id.in_(needs_fallback),
        ),
    ).order_by(
        Photo.uploaded_at.asc(),
        Photo.id.asc(),
    ).all()

    remaining = set(needs_fallback)
    for album_id, parent_id, key, provider in rows:
        if not remaining:
            break
        # A photo counts for its own album and for its parent album.
        for target in (album_id, parent_id):
            if target in remaining:
                covers[target] = CoverRef(key, provider)
                remaining.discard(target)

    return covers


def cover_for(db: Session, album: Album) -> Optional[CoverRef]:
    """Single-album form of resolve_covers."""
    return resolve_covers(db, [album]).get(album.id)
