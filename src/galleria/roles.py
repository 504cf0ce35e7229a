"""Role management, role assignment and album grants."""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from galleria.auth.dependencies import get_or_create_user
from galleria.auth.models import (
    AlbumPermission,
    DEFAULT_ROLE_COLOR,
    Role,
    RoleAlbumAccess,
    RoleAssignment,
    User,
    VIEWER_ROLE_COLOR,
    VIEWER_ROLE_NAME,
)
from galleria.cache import ALBUM_VIEW_TTL_SECONDS, TAG_ROLES, cache, invalidate_for
from galleria.errors import ConsistencyConflict, NotFound, ValidationError
from galleria.metadata import Album

logger = logging.getLogger(__name__)


def ensure_viewer_role(db: Session) -> Role:
    """Return the built-in viewer role, creating it on first use."""
    viewer = db.query(Role).filter(Role.name == VIEWER_ROLE_NAME).first()
    if viewer:
        return viewer

    viewer = Role(name=VIEWER_ROLE_NAME, color=VIEWER_ROLE_COLOR)
    db.add(viewer)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        viewer = db.query(Role).filter(Role.name == VIEWER_ROLE_NAME).first()
        if viewer is None:
            raise
        return viewer
    db.refresh(viewer)
    logger.info("Created built-in %s role", VIEWER_ROLE_NAME)
    return viewer


def effective_role_ids(db: Session, user_id: Optional[str]) -> frozenset:
    """Role ids that apply to a signed-in non-owner: assigned roles plus viewer."""
    def load():
        viewer_role_id = ensure_viewer_role(db).id
        if not user_id:
            return frozenset({viewer_role_id})
        rows = db.query(RoleAssignment.role_id).filter(RoleAssignment.user_id == user_id).all()
        return frozenset({viewer_role_id, *(row[0] for row in rows)})

    return cache.cached(("role_ids", user_id), ALBUM_VIEW_TTL_SECONDS, (TAG_ROLES,), load)


def list_roles(db: Session) -> list[dict]:
    """All roles with their member emails and granted album ids, oldest first."""
    ensure_viewer_role(db)
    roles = db.query(Role).order_by(Role.created_at.asc(), Role.name.asc()).all()
    payload = []
    for role in roles:
        payload.append({
            "id": role.id,
            "name": role.name,
            "color": role.color,
            "is_system": role.is_system,
            "created_at": role.created_at.isoformat() if role.created_at else None,
            "assignments": [
                {"id": assignment.id, "user_id": assignment.user_id, "email": assignment.user.email}
                for assignment in role.assignments
            ],
            "album_access": [
                {"id": access.id, "album_id": access.album_id}
                for access in role.album_access
            ],
        })
    return payload


def create_role(db: Session, name: str, color: Optional[str] = None) -> Role:
    normalized = str(name or "").strip().lower()
    if not normalized:
        raise ValidationError("Name required")

    role = Role(name=normalized, color=(color or DEFAULT_ROLE_COLOR))
    db.add(role)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConsistencyConflict(f"Role {normalized} already exists")
    db.refresh(role)
    invalidate_for("role.change")
    return role


def _get_role(db: Session, role_id: str) -> Role:
    if not role_id:
        raise ValidationError("roleId required")
    role = db.query(Role).filter(Role.id == role_id).first()
    if not role:
        raise NotFound(f"Role {role_id} not found")
    return role


def delete_role(db: Session, role_id: str) -> None:
    """Delete a role with its assignments and album grants.

    Raises:
        ValidationError: The role is the built-in viewer role.
    """
    role = _get_role(db, role_id)
    if role.is_system:
        raise ValidationError("Cannot delete the built-in viewer role")
    db.delete(role)
    db.commit()
    invalidate_for("role.change")


def assign_role(db: Session, role_id: str, email: str) -> RoleAssignment:
    """Assign a role to a user by email, creating the user row if needed."""
    if not role_id or not str(email or "").strip():
        raise ValidationError("roleId and userEmail required")
    _get_role(db, role_id)
    user = get_or_create_user(db, email)

    assignment = db.query(RoleAssignment).filter(
        RoleAssignment.role_id == role_id,
        RoleAssignment.user_id == user.id,
    ).first()
    if assignment is None:
        assignment = RoleAssignment(role_id=role_id, user_id=user.id)
        db.add(assignment)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConsistencyConflict("Role assignment changed concurrently")
        db.refresh(assignment)
    invalidate_for("role.change")
    return assignment


def unassign_role(db: Session, assignment_id: str) -> None:
    assignment = db.query(RoleAssignment).filter(RoleAssignment.id == assignment_id).first()
    if not assignment:
        raise NotFound(f"Role assignment {assignment_id} not found")
    db.delete(assignment)
    db.commit()
    invalidate_for("role.change")


def grant_role_album(db: Session, role_id: str, album_id: str) -> RoleAlbumAccess:
    """Grant a role read access to one album. Idempotent."""
    if not role_id or not album_id:
        raise ValidationError("roleId and albumId required")
    _get_role(db, role_id)
    if not db.query(Album.id).filter(Album.id == album_id).first():
        raise NotFound(f"Album {album_id} not found")

    access = db.query(RoleAlbumAccess).filter(
        RoleAlbumAccess.role_id == role_id,
        RoleAlbumAccess.album_id == album_id,
    ).first()
    if access is None:
        access = RoleAlbumAccess(role_id=role_id, album_id=album_id)
        db.add(access)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConsistencyConflict("Album access changed concurrently")
        db.refresh(access)
    invalidate_for("role.change")
    return access


def revoke_role_album(db: Session, access_id: str) -> None:
    access = db.query(RoleAlbumAccess).filter(RoleAlbumAccess.id == access_id).first()
    if not access:
        raise NotFound(f"Album access {access_id} not found")
    db.delete(access)
    db.commit()
    invalidate_for("role.change")


def grant_album_permission(db: Session, album_id: str, email: str) -> AlbumPermission:
    """Grant one user direct read access to one album. Idempotent."""
    if not album_id or not str(email or "").strip():
        raise ValidationError("albumId and email required")
    if not db.query(Album.id).filter(Album.id == album_id).first():
        raise NotFound(f"Album {album_id} not found")
    user = get_or_create_user(db, email)

    permission = db.query(AlbumPermission).filter(
        AlbumPermission.album_id == album_id,
        AlbumPermission.user_id == user.id,
    ).first()
    if permission is None:
        permission = AlbumPermission(album_id=album_id, user_id=user.id)
        db.add(permission)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConsistencyConflict("Album permission changed concurrently")
        db.refresh(permission)
    invalidate_for("album.permission")
    return permission


def revoke_album_permission(db: Session, album_id: str, email: str) -> int:
    """Remove a user's direct grant on an album. Returns rows removed."""
    normalized = str(email or "").strip().lower()
    user = db.query(User).filter(User.email == normalized).first()
    if not user:
        return 0
    removed = db.query(AlbumPermission).filter(
        AlbumPermission.album_id == album_id,
        AlbumPermission.user_id == user.id,
    ).delete(synchronize_session=False)
    db.commit()
    invalidate_for("album.permission")
    return removed
