"""Album tree and photo records."""

from datetime import datetime
import uuid

from sqlalchemy import Column, String, Integer, BigInteger, DateTime, Text, ForeignKey, Index, UniqueConstraint, CheckConstraint, text
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()

ALBUM_VISIBILITY_PUBLIC = "public"
ALBUM_VISIBILITY_PRIVATE = "private"
ALBUM_VISIBILITY_ARCHIVED = "archived"
ALBUM_VISIBILITIES = {ALBUM_VISIBILITY_PUBLIC, ALBUM_VISIBILITY_PRIVATE, ALBUM_VISIBILITY_ARCHIVED}

PHOTO_VISIBLE = "visible"
PHOTO_HIDDEN = "hidden"

PROVIDER_R2 = "r2"
PROVIDER_ORACLE = "oracle"
STORAGE_PROVIDERS = {PROVIDER_R2, PROVIDER_ORACLE}


def new_id() -> str:
    return str(uuid.uuid4())


class Album(Base):
    """A node in the album tree.

    parent_id is a weak back-reference: walks over the tree are done with
    indexed lookups on parent_id rather than by loading relationships.
    cover_photo_id is not a foreign key. The photo it names may be deleted
    later, in which case cover resolution falls back.
    """

    __tablename__ = "albums"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    parent_id = Column(String(36), ForeignKey("albums.id"), nullable=True, index=True)
    visibility = Column(String(16), nullable=False, default=ALBUM_VISIBILITY_PRIVATE)
    cover_photo_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    photos = relationship("Photo", back_populates="album")

    __table_args__ = (
        UniqueConstraint("slug", "parent_id", name="uq_albums_slug_parent"),
        # NULL parents never collide under a plain unique constraint.
        Index(
            "uq_albums_root_slug",
            "slug",
            unique=True,
            postgresql_where=text("parent_id IS NULL"),
            sqlite_where=text("parent_id IS NULL"),
        ),
        CheckConstraint(
            "visibility IN ('public', 'private', 'archived')",
            name="ck_albums_visibility",
        ),
    )

    def __repr__(self) -> str:
        return f"<Album(id={self.id}, slug={self.slug}, parent_id={self.parent_id})>"


class Photo(Base):
    """A photo stored in exactly one backend, owned by exactly one album."""

    __tablename__ = "photos"

    id = Column(String(36), primary_key=True, default=new_id)
    album_id = Column(String(36), ForeignKey("albums.id"), nullable=False, index=True)
    filename = Column(String(512), nullable=False)
    r2_key = Column(String(1024), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    storage_provider = Column(String(16), nullable=False, default=PROVIDER_R2)
    visibility = Column(String(16), nullable=False, default=PHOTO_VISIBLE)
    caption = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=True)
    uploaded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    album = relationship("Album", back_populates="photos")
    likes = relationship("PhotoLike", back_populates="photo")

    __table_args__ = (
        UniqueConstraint("storage_provider", "r2_key", name="uq_photos_provider_key"),
        Index("idx_photos_album_visibility", "album_id", "visibility"),
        Index("idx_photos_uploaded_at", "uploaded_at"),
        CheckConstraint(
            "storage_provider IN ('r2', 'oracle')",
            name="ck_photos_storage_provider",
        ),
    )

    def __repr__(self) -> str:
        return f"<Photo(id={self.id}, key={self.r2_key}, provider={self.storage_provider})>"


class PhotoLike(Base):
    """One like per (photo, user)."""

    __tablename__ = "photo_likes"

    id = Column(String(36), primary_key=True, default=new_id)
    photo_id = Column(String(36), ForeignKey("photos.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    photo = relationship("Photo", back_populates="likes")

    __table_args__ = (
        UniqueConstraint("photo_id", "user_id", name="uq_photo_likes_photo_user"),
    )
