"""Album tree resolution, access checks and album mutations.

Albums form a tree through ``parent_id``. Paths are resolved one slug at a
time under the previous level, with exact matching only. Read paths go
through the process cache; every mutation calls ``invalidate_for`` before it
returns.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
import logging
import re
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from galleria.auth.models import AlbumPermission, RoleAlbumAccess, User
from galleria.cache import ALBUM_VIEW_TTL_SECONDS, TAG_ALBUMS, TAG_PHOTOS, TAG_ROLES, cache, invalidate_for
from galleria.covers import CoverRef, resolve_covers
from galleria.errors import ConsistencyConflict, NotFound, ValidationError
from galleria.metadata import (
    ALBUM_VISIBILITIES,
    ALBUM_VISIBILITY_ARCHIVED,
    ALBUM_VISIBILITY_PRIVATE,
    ALBUM_VISIBILITY_PUBLIC,
    Album,
    Photo,
    PhotoLike,
    PHOTO_HIDDEN,
)
from galleria.storage import StorageBackend, delete_stored_objects, get_storage_backend

logger = logging.getLogger(__name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_VIEW_TAGS = (TAG_ALBUMS, TAG_PHOTOS, TAG_ROLES)


@dataclass
class AlbumSummary:
    id: str
    name: str
    slug: str
    parent_id: Optional[str]
    visibility: str
    cover: Optional[CoverRef] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "parent_id": self.parent_id,
            "visibility": self.visibility,
            "cover": self.cover.to_dict() if self.cover else None,
        }


@dataclass
class PhotoView:
    id: str
    album_id: str
    filename: str
    key: str
    provider: str
    file_size: int
    width: Optional[int]
    height: Optional[int]
    caption: Optional[str]
    sort_order: Optional[int]
    uploaded_at: Optional[datetime]
    liked_by: list[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, photo: Photo, liked_by: Optional[list[str]] = None) -> "PhotoView":
        return cls(
            id=photo.id,
            album_id=photo.album_id,
            filename=photo.filename,
            key=photo.r2_key,
            provider=photo.storage_provider,
            file_size=int(photo.file_size or 0),
            width=photo.width,
            height=photo.height,
            caption=photo.caption,
            sort_order=photo.sort_order,
            uploaded_at=photo.uploaded_at,
            liked_by=list(liked_by or []),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "album_id": self.album_id,
            "filename": self.filename,
            "key": self.key,
            "provider": self.provider,
            "file_size": self.file_size,
            "width": self.width,
            "height": self.height,
            "caption": self.caption,
            "sort_order": self.sort_order,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "liked_by": list(self.liked_by),
            "like_count": len(self.liked_by),
        }


@dataclass
class AlbumView:
    """A resolved album with its children, photos and grants."""

    id: str
    name: str
    slug: str
    parent_id: Optional[str]
    visibility: str
    cover_photo_id: Optional[str]
    path: list[str]
    breadcrumbs: list[dict]
    children: list[AlbumSummary]
    photos: list[PhotoView]
    permitted_emails: frozenset = frozenset()
    permitted_role_ids: frozenset = frozenset()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "parent_id": self.parent_id,
            "visibility": self.visibility,
            "cover_photo_id": self.cover_photo_id,
            "path": list(self.path),
            "breadcrumbs": list(self.breadcrumbs),
            "children": [child.to_dict() for child in self.children],
            "photos": [photo.to_dict() for photo in self.photos],
            "permitted_emails": sorted(self.permitted_emails),
            "permitted_role_ids": sorted(self.permitted_role_ids),
        }


@dataclass
class DeleteResult:
    albums_deleted: int
    photos_deleted: int
    storage_failures: int = 0


def slugify(name: str) -> str:
    """URL slug for an owner-created album name."""
    slug = _SLUG_STRIP.sub("-", str(name or "").strip().lower()).strip("-")
    if not slug:
        raise ValidationError("Album name must contain letters or digits")
    return slug


def _parent_filter(parent_id: Optional[str]):
    if parent_id is None:
        return Album.parent_id.is_(None)
    return Album.parent_id == parent_id


def _apply_visibility_filter(query, *, is_owner: bool, want_archived: bool):
    if is_owner:
        if want_archived:
            return query.filter(Album.visibility == ALBUM_VISIBILITY_ARCHIVED)
        return query.filter(Album.visibility != ALBUM_VISIBILITY_ARCHIVED)
    return query.filter(Album.visibility == ALBUM_VISIBILITY_PUBLIC)


def _summaries(db: Session, albums: Sequence[Album]) -> list[AlbumSummary]:
    covers = resolve_covers(db, albums)
    return [
        AlbumSummary(
            id=album.id,
            name=album.name,
            slug=album.slug,
            parent_id=album.parent_id,
            visibility=album.visibility,
            cover=covers.get(album.id),
        )
        for album in albums
    ]


def _load_album_view(db: Session, segments: Sequence[str], is_owner: bool, want_archived: bool) -> AlbumView:
    album = None
    parent_id = None
    breadcrumbs = []
    for segment in segments:
        album = db.query(Album).filter(Album.slug == segment, _parent_filter(parent_id)).first()
        if album is None:
            raise NotFound(f"Album not found: {'/'.join(segments)}")
        breadcrumbs.append({"name": album.name, "slug": album.slug})
        parent_id = album.id

    children_query = db.query(Album).filter(Album.parent_id == album.id)
    children_query = _apply_visibility_filter(children_query, is_owner=is_owner, want_archived=want_archived)
    children = children_query.order_by(Album.name.asc()).all()

    photos = db.query(Photo).filter(
        Photo.album_id == album.id,
        Photo.visibility != PHOTO_HIDDEN,
    ).order_by(
        Photo.sort_order.is_(None),
        Photo.sort_order.asc(),
        Photo.uploaded_at.desc(),
        Photo.id.asc(),
    ).all()

    likes = defaultdict(list)
    if photos:
        rows = db.query(PhotoLike.photo_id, PhotoLike.user_id).filter(
            PhotoLike.photo_id.in_([photo.id for photo in photos])
        ).all()
        for photo_id, user_id in rows:
            likes[photo_id].append(user_id)

    emails = db.query(User.email).join(
        AlbumPermission, AlbumPermission.user_id == User.id,
    ).filter(AlbumPermission.album_id == album.id).all()
    role_ids = db.query(RoleAlbumAccess.role_id).filter(RoleAlbumAccess.album_id == album.id).all()

    return AlbumView(
        id=album.id,
        name=album.name,
        slug=album.slug,
        parent_id=album.parent_id,
        visibility=album.visibility,
        cover_photo_id=album.cover_photo_id,
        path=list(segments),
        breadcrumbs=breadcrumbs,
        children=_summaries(db, children),
        photos=[PhotoView.from_row(photo, likes.get(photo.id)) for photo in photos],
        permitted_emails=frozenset(str(row[0]).lower() for row in emails),
        permitted_role_ids=frozenset(row[0] for row in role_ids),
    )


def resolve_album_path(
    db: Session,
    path_segments: Sequence[str],
    *,
    is_owner: bool,
    want_archived: bool = False,
) -> AlbumView:
    """Resolve a slug path to an album view.

    Raises:
        NotFound: Any segment does not match a child slug of the previous level.
    """
    segments = tuple(segment for segment in path_segments if segment)
    if not segments:
        raise NotFound("Album path is empty")
    return cache.cached(
        ("album_view", segments, bool(is_owner), bool(want_archived)),
        ALBUM_VIEW_TTL_SECONDS,
        _VIEW_TAGS,
        lambda: _load_album_view(db, segments, bool(is_owner), bool(want_archived)),
    )


def can_view_album(view: AlbumView, viewer) -> bool:
    """Access check for a resolved album; grants on ancestors do not apply."""
    if viewer is None:
        return False
    if viewer.is_owner:
        return True
    if view.visibility == ALBUM_VISIBILITY_ARCHIVED:
        return False
    if view.visibility == ALBUM_VISIBILITY_PUBLIC:
        return True
    if str(viewer.email or "").lower() in view.permitted_emails:
        return True
    return bool(set(viewer.role_ids or ()) & view.permitted_role_ids)


def list_root_albums(db: Session, *, is_owner: bool, want_archived: bool = False, viewer=None) -> list[AlbumSummary]:
    """Top-level albums the caller may see, ordered by name, with covers."""
    user_id = getattr(viewer, "user_id", None)
    role_ids = tuple(sorted(getattr(viewer, "role_ids", None) or ()))

    def load():
        query = db.query(Album).filter(Album.parent_id.is_(None))
        if is_owner:
            query = _apply_visibility_filter(query, is_owner=True, want_archived=want_archived)
        else:
            clauses = [Album.visibility == ALBUM_VISIBILITY_PUBLIC]
            if user_id:
                clauses.append(Album.id.in_(
                    select(AlbumPermission.album_id).where(AlbumPermission.user_id == user_id)
                ))
            if role_ids:
                clauses.append(Album.id.in_(
                    select(RoleAlbumAccess.album_id).where(RoleAlbumAccess.role_id.in_(role_ids))
                ))
            query = query.filter(Album.visibility != ALBUM_VISIBILITY_ARCHIVED, or_(*clauses))
        return _summaries(db, query.order_by(Album.name.asc()).all())

    return cache.cached(
        ("root_albums", bool(is_owner), bool(want_archived), user_id, role_ids),
        ALBUM_VIEW_TTL_SECONDS,
        _VIEW_TAGS,
        load,
    )


def list_all_albums(db: Session) -> list[dict]:
    """Flat list of every album, ordered by name. Used by move and admin pickers."""

    def load():
        rows = db.query(Album.id, Album.name, Album.slug, Album.parent_id, Album.visibility).order_by(
            Album.name.asc()
        ).all()
        return [
            {"id": row[0], "name": row[1], "slug": row[2], "parent_id": row[3], "visibility": row[4]}
            for row in rows
        ]

    return cache.cached(("all_albums",), ALBUM_VIEW_TTL_SECONDS, (TAG_ALBUMS,), load)


def get_album(db: Session, album_id: str) -> Album:
    album = db.query(Album).filter(Album.id == album_id).first() if album_id else None
    if not album:
        raise NotFound(f"Album {album_id} not found")
    return album


def slug_chain(db: Session, album_id: str) -> list[str]:
    """Slugs from the root down to album_id, inclusive."""
    chain = []
    seen = set()
    current = album_id
    while current and current not in seen:
        seen.add(current)
        row = db.query(Album.slug, Album.parent_id).filter(Album.id == current).first()
        if row is None:
            raise NotFound(f"Album {current} not found")
        chain.append(row[0])
        current = row[1]
    chain.reverse()
    return chain


def descendant_levels(db: Session, album_id: str) -> list[list[str]]:
    """Album ids by depth, starting with [album_id]. One query per level."""
    levels = [[album_id]]
    seen = {album_id}
    frontier = [album_id]
    while frontier:
        rows = db.query(Album.id).filter(Album.parent_id.in_(frontier)).all()
        frontier = [row[0] for row in rows if row[0] not in seen]
        if frontier:
            seen.update(frontier)
            levels.append(frontier)
    return levels


def _unique_slug(db: Session, base: str, parent_id: Optional[str]) -> str:
    taken = {
        row[0]
        for row in db.query(Album.slug).filter(
            _parent_filter(parent_id),
            or_(Album.slug == base, Album.slug.like(f"{base}-%")),
        ).all()
    }
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def create_album(
    db: Session,
    name: str,
    parent_id: Optional[str] = None,
    visibility: str = ALBUM_VISIBILITY_PRIVATE,
) -> Album:
    """Create an album, suffixing the slug with -2, -3, ... on sibling collisions.

    Raises:
        ValidationError: Empty name, unknown visibility or missing parent.
        ConsistencyConflict: A concurrent create claimed the same slug.
    """
    display_name = str(name or "").strip()
    if not display_name:
        raise ValidationError("Album name required")
    if visibility not in ALBUM_VISIBILITIES:
        raise ValidationError(f"Invalid visibility: {visibility}")
    if parent_id and not db.query(Album.id).filter(Album.id == parent_id).first():
        raise ValidationError(f"Parent album {parent_id} not found")

    slug = _unique_slug(db, slugify(display_name), parent_id or None)
    album = Album(name=display_name, slug=slug, parent_id=parent_id or None, visibility=visibility)
    db.add(album)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConsistencyConflict(f"Album slug {slug} was taken concurrently")
    db.refresh(album)
    invalidate_for("album.create")
    logger.info("Created album %s (%s)", album.id, "/".join(slug_chain(db, album.id)))
    return album


def update_album(
    db: Session,
    album_id: str,
    *,
    name: Optional[str] = None,
    visibility: Optional[str] = None,
) -> Album:
    """Rename and/or change visibility. Renaming never changes the slug."""
    album = get_album(db, album_id)
    if name is not None:
        display_name = str(name).strip()
        if not display_name:
            raise ValidationError("Album name required")
        album.name = display_name
    if visibility is not None:
        if visibility not in ALBUM_VISIBILITIES:
            raise ValidationError(f"Invalid visibility: {visibility}")
        album.visibility = visibility
    db.commit()
    db.refresh(album)
    invalidate_for("album.update")
    return album


def archive_album(db: Session, album_id: str) -> Album:
    return update_album(db, album_id, visibility=ALBUM_VISIBILITY_ARCHIVED)


def unarchive_album(db: Session, album_id: str) -> Album:
    """Unarchiving always reverts to private."""
    return update_album(db, album_id, visibility=ALBUM_VISIBILITY_PRIVATE)


def set_album_cover(db: Session, album_id: str, photo_id: Optional[str]) -> Album:
    """Set or clear the explicit cover photo."""
    album = get_album(db, album_id)
    if photo_id:
        photo = db.query(Photo.id, Photo.visibility).filter(Photo.id == photo_id).first()
        if photo is None:
            raise NotFound(f"Photo {photo_id} not found")
        if photo[1] == PHOTO_HIDDEN:
            raise ValidationError("Hidden photos cannot be album covers")
    album.cover_photo_id = photo_id or None
    db.commit()
    db.refresh(album)
    invalidate_for("album.cover")
    return album


def _delete_album_rows(db: Session, levels: Sequence[Sequence[str]]) -> None:
    album_ids = [album_id for level in levels for album_id in level]
    photo_ids = select(Photo.id).where(Photo.album_id.in_(album_ids))
    db.query(PhotoLike).filter(PhotoLike.photo_id.in_(photo_ids)).delete(synchronize_session=False)
    db.query(Photo).filter(Photo.album_id.in_(album_ids)).delete(synchronize_session=False)
    db.query(AlbumPermission).filter(AlbumPermission.album_id.in_(album_ids)).delete(synchronize_session=False)
    db.query(RoleAlbumAccess).filter(RoleAlbumAccess.album_id.in_(album_ids)).delete(synchronize_session=False)
    for level in reversed(levels):
        db.query(Album).filter(Album.id.in_(list(level))).delete(synchronize_session=False)


def delete_album_recursive(
    db: Session,
    album_id: str,
    backend_for: Callable[[str], StorageBackend] = get_storage_backend,
) -> DeleteResult:
    """Delete an album, every descendant album and every photo inside them.

    Storage objects are deleted first and concurrently; failures are logged
    and do not stop the row deletes. Rows go in one transaction, dependents
    before albums and children before parents.
    """
    get_album(db, album_id)
    levels = descendant_levels(db, album_id)
    album_ids = [aid for level in levels for aid in level]
    targets = db.query(Photo.storage_provider, Photo.r2_key).filter(Photo.album_id.in_(album_ids)).all()

    logger.info(
        "Deleting album %s with %s sub-albums and %s photos",
        album_id,
        len(album_ids) - 1,
        len(targets),
    )
    failures = delete_stored_objects([(provider, key) for provider, key in targets], backend_for)

    try:
        _delete_album_rows(db, levels)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        invalidate_for("album.delete")

    return DeleteResult(
        albums_deleted=len(album_ids),
        photos_deleted=len(targets),
        storage_failures=len(failures),
    )


def find_empty_album_levels(db: Session) -> list[list[str]]:
    """Recursively empty albums grouped by depth (no photos anywhere beneath)."""
    albums = db.query(Album.id, Album.parent_id).all()
    with_photos = {row[0] for row in db.query(Photo.album_id).distinct().all()}

    children = defaultdict(list)
    for aid, parent_id in albums:
        children[parent_id].append(aid)

    empty = set()
    depth = {}

    def visit(aid: str, level: int) -> bool:
        depth[aid] = level
        kids_empty = [visit(child, level + 1) for child in children.get(aid, [])]
        is_empty = aid not in with_photos and all(kids_empty)
        if is_empty:
            empty.add(aid)
        return is_empty

    for root in list(children.get(None, [])):
        visit(root, 0)

    by_depth = defaultdict(list)
    for aid in empty:
        by_depth[depth[aid]].append(aid)
    return [sorted(by_depth[level]) for level in sorted(by_depth)]


def delete_empty_albums(db: Session) -> int:
    """Delete every album with no photos in its whole subtree. Returns albums removed."""
    levels = find_empty_album_levels(db)
    count = sum(len(level) for level in levels)
    if not count:
        return 0
    try:
        _delete_album_rows(db, levels)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        invalidate_for("album.delete_empty")
    logger.info("Deleted %s empty albums", count)
    return count


def collect_recursive_photos(db: Session, album_id: str) -> list[PhotoView]:
    """Visible photos in an album and all its descendants, newest first."""
    get_album(db, album_id)
    album_ids = [aid for level in descendant_levels(db, album_id) for aid in level]
    photos = db.query(Photo).filter(
        Photo.album_id.in_(album_ids),
        Photo.visibility != PHOTO_HIDDEN,
    ).order_by(Photo.uploaded_at.desc(), Photo.id.asc()).all()
    return [PhotoView.from_row(photo) for photo in photos]


def summaries_to_dicts(summaries: Iterable[AlbumSummary]) -> list[dict]:
    return [summary.to_dict() for summary in summaries]
