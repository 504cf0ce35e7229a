"""SQLAlchemy models for users, roles and album grants."""

from datetime import datetime

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from galleria.metadata import Base, new_id


VIEWER_ROLE_NAME = "viewer"
VIEWER_ROLE_COLOR = "#71717a"
DEFAULT_ROLE_COLOR = "#6366f1"


class User(Base):
    """A signed-in person known by email.

    Rows are created the first time an identity makes an authenticated
    request, or when the owner assigns a role to an email that has not
    signed in yet. The owner never needs a row to act as owner.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    role_assignments = relationship("RoleAssignment", back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class Role(Base):
    """Named capability set; grants read access to albums via RoleAlbumAccess.

    Attributes:
        name: Lowercased unique name. "viewer" is built in and cannot be deleted.
        color: Display color for the admin UI.
    """

    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(64), nullable=False, unique=True)
    color = Column(String(16), nullable=False, default=DEFAULT_ROLE_COLOR)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    assignments = relationship("RoleAssignment", back_populates="role", cascade="all, delete-orphan")
    album_access = relationship("RoleAlbumAccess", back_populates="role", cascade="all, delete-orphan")

    @property
    def is_system(self) -> bool:
        return self.name == VIEWER_ROLE_NAME


class RoleAssignment(Base):
    """User membership in a role."""

    __tablename__ = "role_assignments"

    id = Column(String(36), primary_key=True, default=new_id)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    role = relationship("Role", back_populates="assignments")
    user = relationship("User", back_populates="role_assignments")

    __table_args__ = (
        UniqueConstraint("role_id", "user_id", name="uq_role_assignments_role_user"),
    )


class RoleAlbumAccess(Base):
    """Explicit read grant of one album to one role; not inherited by sub-albums."""

    __tablename__ = "role_album_access"

    id = Column(String(36), primary_key=True, default=new_id)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    album_id = Column(String(36), ForeignKey("albums.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    role = relationship("Role", back_populates="album_access")

    __table_args__ = (
        UniqueConstraint("role_id", "album_id", name="uq_role_album_access_role_album"),
    )


class AlbumPermission(Base):
    """Direct read grant of one album to one user."""

    __tablename__ = "album_permissions"

    id = Column(String(36), primary_key=True, default=new_id)
    album_id = Column(String(36), ForeignKey("albums.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("album_id", "user_id", name="uq_album_permissions_album_user"),
    )
