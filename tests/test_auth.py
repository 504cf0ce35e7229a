"""Tests for bearer-token identity and owner checks."""

import asyncio
from datetime import datetime, timedelta

import pytest
from jose import jwt
from sqlalchemy.orm import Session

from galleria.auth.dependencies import Viewer, get_current_viewer, is_owner, require_owner
from galleria.auth.jwt import identity_from_claims
from galleria.auth.models import User
from galleria.errors import Unauthorized
from galleria.roles import create_role, assign_role, ensure_viewer_role
from galleria.settings import settings


def _viewer_for(token: str, db: Session) -> Viewer:
    return asyncio.run(get_current_viewer(authorization=f"Bearer {token}", db=db))


def test_owner_matches_email_or_username():
    assert is_owner("Owner@Example.com")
    assert is_owner("someone@example.com", username="Gallery-Owner")
    assert is_owner("someone@example.com", name="gallery-owner")
    assert not is_owner("someone@example.com", username="someone")


def test_identity_from_claims():
    identity = identity_from_claims({"email": "A@B.com", "name": "Ann", "username": "ann"})
    assert identity == {"email": "a@b.com", "name": "Ann", "username": "ann"}


def test_missing_or_malformed_header_rejected(test_db: Session):
    with pytest.raises(Unauthorized):
        asyncio.run(get_current_viewer(authorization=None, db=test_db))
    with pytest.raises(Unauthorized):
        asyncio.run(get_current_viewer(authorization="Token abc", db=test_db))


def test_invalid_and_expired_tokens_rejected(test_db: Session, make_token):
    forged = jwt.encode({"email": "a@example.com"}, "wrong-secret", algorithm="HS256")
    expired = jwt.encode(
        {"email": "a@example.com", "exp": datetime.utcnow() - timedelta(minutes=5)},
        settings.auth_jwt_secret,
        algorithm="HS256",
    )
    for token in (forged, expired, "not-a-jwt"):
        with pytest.raises(Unauthorized):
            _viewer_for(token, test_db)


def test_token_without_email_rejected_for_non_owner(test_db: Session):
    token = jwt.encode({"preferred_username": "nobody"}, settings.auth_jwt_secret, algorithm="HS256")
    with pytest.raises(Unauthorized):
        _viewer_for(token, test_db)


def test_owner_without_email_matched_by_username(test_db: Session):
    token = jwt.encode({"preferred_username": "gallery-owner"}, settings.auth_jwt_secret, algorithm="HS256")

    viewer = _viewer_for(token, test_db)

    assert viewer.is_owner
    assert viewer.user_id is None
    assert asyncio.run(require_owner(viewer)) is viewer
    assert test_db.query(User).count() == 0


def test_owner_without_email_matched_by_display_name(test_db: Session):
    token = jwt.encode({"name": "Gallery-Owner"}, settings.auth_jwt_secret, algorithm="HS256")
    assert _viewer_for(token, test_db).is_owner


def test_first_request_creates_user_with_viewer_role(test_db: Session, make_token):
    viewer = _viewer_for(make_token("Friend@Example.com", name="Friend"), test_db)

    user = test_db.query(User).one()
    assert (user.email, user.name) == ("friend@example.com", "Friend")
    assert viewer.user_id == user.id
    assert not viewer.is_owner
    assert viewer.role_ids == frozenset({ensure_viewer_role(test_db).id})


def test_assigned_roles_are_loaded(test_db: Session, make_token):
    role = create_role(test_db, "family")
    assign_role(test_db, role.id, "friend@example.com")

    viewer = _viewer_for(make_token("friend@example.com"), test_db)

    assert role.id in viewer.role_ids


def test_owner_via_username_claim(test_db: Session, make_token):
    viewer = _viewer_for(make_token("someone@example.com", username="gallery-owner"), test_db)
    assert viewer.is_owner
    assert asyncio.run(require_owner(viewer)) is viewer


def test_require_owner_rejects_others():
    with pytest.raises(Unauthorized):
        asyncio.run(require_owner(Viewer(email="friend@example.com")))
