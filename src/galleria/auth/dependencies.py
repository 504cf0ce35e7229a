"""FastAPI dependencies for authentication and owner authorization."""

from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Header
from jose import JWTError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from galleria.auth.jwt import decode_identity_token, identity_from_claims
from galleria.auth.models import User
from galleria.database import get_db
from galleria.errors import Unauthorized
from galleria.settings import settings


@dataclass
class Viewer:
    """The authenticated caller of a request."""

    email: str
    name: str = ""
    username: str = ""
    user_id: Optional[str] = None
    is_owner: bool = False
    role_ids: frozenset = field(default_factory=frozenset)


def _normalize(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_owner(email: Optional[str] = None, username: Optional[str] = None, name: Optional[str] = None) -> bool:
    """Check an identity against the configured owner email and username.

    The username setting also matches the display name, since some sign-in
    providers only populate one of the two.
    """
    owner_email = _normalize(settings.owner_email)
    owner_username = _normalize(settings.owner_username)
    if owner_email and _normalize(email) == owner_email:
        return True
    if owner_username and owner_username in {_normalize(username), _normalize(name)}:
        return True
    return False


def get_or_create_user(db: Session, email: str, name: Optional[str] = None) -> User:
    """Find a user by lowercased email, creating the row on first sight."""
    normalized = _normalize(email)
    user = db.query(User).filter(User.email == normalized).first()
    if user:
        return user

    user = User(email=normalized, name=(name or normalized.split("@")[0]))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same user first.
        db.rollback()
        user = db.query(User).filter(User.email == normalized).first()
        if user is None:
            raise
        return user
    db.refresh(user)
    return user


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("Authorization header required")
    if not authorization.startswith("Bearer "):
        raise Unauthorized("Invalid authorization header format")
    token = authorization[7:].strip()
    if not token:
        raise Unauthorized("Authorization header required")
    return token


async def get_current_viewer(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Viewer:
    """Verify the bearer token and return the calling viewer.

    Raises:
        Unauthorized: Missing, malformed or invalid token, or a non-owner token
            without an email.
    """
    from galleria.roles import effective_role_ids

    token = _bearer_token(authorization)
    try:
        claims = decode_identity_token(token)
    except JWTError:
        raise Unauthorized("Invalid or expired token")

    identity = identity_from_claims(claims)
    owner = is_owner(identity["email"], identity["username"], identity["name"])
    if not identity["email"]:
        if not owner:
            raise Unauthorized("Token does not carry an email claim")
        # Owner matched by username alone; user rows are keyed by email.
        return Viewer(
            email="",
            name=identity["name"],
            username=identity["username"],
            is_owner=True,
        )

    user = get_or_create_user(db, identity["email"], identity["name"] or None)
    role_ids = frozenset() if owner else effective_role_ids(db, user.id)
    return Viewer(
        email=identity["email"],
        name=identity["name"],
        username=identity["username"],
        user_id=user.id,
        is_owner=owner,
        role_ids=role_ids,
    )


async def require_owner(viewer: Viewer = Depends(get_current_viewer)) -> Viewer:
    """Require the configured owner.

    Raises:
        Unauthorized: Caller is signed in but is not the owner.
    """
    if not viewer.is_owner:
        raise Unauthorized("Owner access required")
    return viewer
