"""Test configuration and fixtures."""

import io
import os
from datetime import datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("OWNER_EMAIL", "owner@example.com")
os.environ.setdefault("OWNER_USERNAME", "gallery-owner")
os.environ.setdefault("R2_BUCKET_NAME", "private-bucket")
os.environ.setdefault("R2_ENDPOINT", "https://account.r2.example.com")
os.environ.setdefault("ORACLE_BUCKET_NAME", "public-bucket")
os.environ.setdefault("ORACLE_ENDPOINT", "https://objectstorage.example.com")

import pytest
from botocore.exceptions import ClientError
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from galleria.metadata import Base, Album, Photo
import galleria.auth.models  # noqa: F401
from galleria.cache import cache
from galleria.settings import settings
from galleria.storage import PrivateBlobStore, PublicBlobStore


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client bound to one bucket."""

    def __init__(self, page_size: int = 1000):
        self.objects = {}
        self.page_size = page_size
        self.fail_put = False
        self.fail_delete_keys = set()
        self.deleted = []

    @staticmethod
    def _error(code: str, operation: str) -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": code}}, operation)

    def put_object(self, Bucket, Key, Body, ContentType=None):
        if self.fail_put:
            raise self._error("InternalError", "PutObject")
        self.objects[Key] = (bytes(Body), ContentType)
        return {}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key][0])}

    def delete_object(self, Bucket, Key):
        if Key in self.fail_delete_keys:
            raise self._error("InternalError", "DeleteObject")
        self.deleted.append(Key)
        self.objects.pop(Key, None)
        return {}

    def list_objects_v2(self, Bucket, Prefix="", ContinuationToken=None):
        keys = sorted(key for key in self.objects if key.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start:start + self.page_size]
        truncated = start + self.page_size < len(keys)
        response = {
            "Contents": [{"Key": key, "Size": len(self.objects[key][0])} for key in page],
            "IsTruncated": truncated,
        }
        if truncated:
            response["NextContinuationToken"] = str(start + self.page_size)
        return response

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        return (
            f"https://signed.example.com/{Params['Bucket']}/{Params['Key']}"
            f"?method={ClientMethod}&expires={ExpiresIn}"
        )


@pytest.fixture
def test_db():
    """Create test database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def r2_client():
    return FakeS3Client()


@pytest.fixture
def oracle_client():
    return FakeS3Client()


@pytest.fixture
def private_store(r2_client):
    return PrivateBlobStore(
        bucket_name="private-bucket",
        endpoint_url="https://account.r2.example.com",
        upload_ttl_seconds=600,
        download_ttl_seconds=3600,
        client=r2_client,
    )


@pytest.fixture
def public_store(oracle_client):
    return PublicBlobStore(
        bucket_name="public-bucket",
        endpoint_url="https://objectstorage.example.com/",
        path_style=True,
        client=oracle_client,
    )


@pytest.fixture
def backend_for(private_store, public_store):
    """Provider name -> backend lookup over the fake buckets."""
    backends = {"r2": private_store, "oracle": public_store}
    return backends.__getitem__


@pytest.fixture
def album_factory(test_db):
    def make(name, parent=None, visibility="private", slug=None, cover_photo_id=None):
        album = Album(
            name=name,
            slug=slug or name.lower().replace(" ", "-"),
            parent_id=parent.id if parent is not None else None,
            visibility=visibility,
            cover_photo_id=cover_photo_id,
        )
        test_db.add(album)
        test_db.commit()
        test_db.refresh(album)
        return album

    return make


@pytest.fixture
def photo_factory(test_db):
    base_time = datetime(2024, 1, 1, 12, 0, 0)

    def make(
        album,
        key,
        filename=None,
        file_size=100,
        provider="r2",
        visibility="visible",
        minutes=0,
        sort_order=None,
    ):
        photo = Photo(
            album_id=album.id,
            filename=filename or key.rsplit("/", 1)[-1],
            r2_key=key,
            file_size=file_size,
            storage_provider=provider,
            visibility=visibility,
            sort_order=sort_order,
            uploaded_at=base_time + timedelta(minutes=minutes),
        )
        test_db.add(photo)
        test_db.commit()
        test_db.refresh(photo)
        return photo

    return make


@pytest.fixture
def make_token():
    def make(email, name=None, username=None):
        claims = {
            "email": email,
            "exp": datetime.utcnow() + timedelta(hours=1),
        }
        if name:
            claims["name"] = name
        if username:
            claims["preferred_username"] = username
        return jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)

    return make


@pytest.fixture
def sample_image_data():
    """Generate sample image data for testing."""
    from PIL import Image

    img = Image.new('RGB', (100, 100), color='red')
    buffer = io.BytesIO()
    img.save(buffer, format='JPEG')
    return buffer.getvalue()


@pytest.fixture
def image_bytes():
    """Encode a solid-color image of a given size."""
    from PIL import Image

    def make(width, height, fmt="JPEG", exif=None):
        img = Image.new("RGB", (width, height), color=(30, 120, 200))
        buffer = io.BytesIO()
        if exif is not None:
            img.save(buffer, format=fmt, exif=exif)
        else:
            img.save(buffer, format=fmt)
        return buffer.getvalue()

    return make
