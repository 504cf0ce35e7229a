"""Tests for roles, assignments and album grants."""

import pytest
from sqlalchemy.orm import Session

from galleria import roles
from galleria.auth.models import AlbumPermission, Role, RoleAlbumAccess, RoleAssignment, User
from galleria.errors import ConsistencyConflict, NotFound, ValidationError


def test_viewer_role_created_once(test_db: Session):
    first = roles.ensure_viewer_role(test_db)
    second = roles.ensure_viewer_role(test_db)

    assert first.id == second.id
    assert (first.name, first.color, first.is_system) == ("viewer", "#71717a", True)
    assert test_db.query(Role).count() == 1


def test_create_role_lowercases_and_defaults_color(test_db: Session):
    role = roles.create_role(test_db, "  Family ")

    assert role.name == "family"
    assert role.color == "#6366f1"
    assert not role.is_system


def test_create_role_rejects_duplicates_and_blank_names(test_db: Session):
    roles.create_role(test_db, "family")
    with pytest.raises(ConsistencyConflict):
        roles.create_role(test_db, "FAMILY")
    with pytest.raises(ValidationError):
        roles.create_role(test_db, "   ")


def test_viewer_role_cannot_be_deleted(test_db: Session):
    viewer = roles.ensure_viewer_role(test_db)
    with pytest.raises(ValidationError):
        roles.delete_role(test_db, viewer.id)


def test_delete_role_removes_assignments_and_grants(test_db: Session, album_factory):
    album = album_factory("Family")
    role = roles.create_role(test_db, "family")
    roles.assign_role(test_db, role.id, "friend@example.com")
    roles.grant_role_album(test_db, role.id, album.id)

    roles.delete_role(test_db, role.id)

    assert test_db.query(RoleAssignment).count() == 0
    assert test_db.query(RoleAlbumAccess).count() == 0
    with pytest.raises(NotFound):
        roles.delete_role(test_db, role.id)


def test_assign_role_creates_unknown_user(test_db: Session):
    role = roles.create_role(test_db, "family")

    assignment = roles.assign_role(test_db, role.id, "New.Person@Example.com")
    again = roles.assign_role(test_db, role.id, "new.person@example.com")

    user = test_db.query(User).one()
    assert user.email == "new.person@example.com"
    assert user.name == "new.person"
    assert assignment.user_id == user.id
    assert again.id == assignment.id


def test_effective_role_ids_follow_assignments(test_db: Session):
    role = roles.create_role(test_db, "family")
    user = User(email="friend@example.com", name="friend")
    test_db.add(user)
    test_db.commit()
    viewer_id = roles.ensure_viewer_role(test_db).id

    assert roles.effective_role_ids(test_db, user.id) == frozenset({viewer_id})

    assignment = roles.assign_role(test_db, role.id, "friend@example.com")
    assert roles.effective_role_ids(test_db, user.id) == frozenset({viewer_id, role.id})

    roles.unassign_role(test_db, assignment.id)
    assert roles.effective_role_ids(test_db, user.id) == frozenset({viewer_id})


def test_anonymous_user_gets_viewer_role_only(test_db: Session):
    viewer_id = roles.ensure_viewer_role(test_db).id
    assert roles.effective_role_ids(test_db, None) == frozenset({viewer_id})


def test_grant_and_revoke_role_album(test_db: Session, album_factory):
    album = album_factory("Family")
    role = roles.create_role(test_db, "family")

    access = roles.grant_role_album(test_db, role.id, album.id)
    assert roles.grant_role_album(test_db, role.id, album.id).id == access.id

    listed = {entry["name"]: entry for entry in roles.list_roles(test_db)}
    assert listed["family"]["album_access"] == [{"id": access.id, "album_id": album.id}]
    assert listed["viewer"]["is_system"] is True

    roles.revoke_role_album(test_db, access.id)
    assert test_db.query(RoleAlbumAccess).count() == 0


def test_grant_role_album_requires_existing_album(test_db: Session):
    role = roles.create_role(test_db, "family")
    with pytest.raises(NotFound):
        roles.grant_role_album(test_db, role.id, "missing")


def test_direct_album_permission(test_db: Session, album_factory):
    album = album_factory("Family")

    roles.grant_album_permission(test_db, album.id, "Friend@Example.com")
    roles.grant_album_permission(test_db, album.id, "friend@example.com")
    assert test_db.query(AlbumPermission).count() == 1

    assert roles.revoke_album_permission(test_db, album.id, "friend@example.com") == 1
    assert roles.revoke_album_permission(test_db, album.id, "unknown@example.com") == 0
    assert test_db.query(AlbumPermission).count() == 0
