"""Object storage backends: a private R2 bucket and a public Oracle bucket.

Both speak the S3 API. The private bucket is read through signed URLs or the
thumbnail proxy; the public bucket serves byte-identical objects at a stable
anonymous URL. Which backend holds a photo is recorded on the photo row and
never inferred from the key.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
import logging
import re
import time
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from galleria.errors import ObjectNotFound, StorageError, ValidationError
from galleria.metadata import PROVIDER_ORACLE, PROVIDER_R2
from galleria.settings import settings


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class BucketObject:
    """One object from a bucket listing."""

    key: str
    size: int = 0
    last_modified: Optional[datetime] = None


class StorageBackend(ABC):
    """Uniform object storage contract."""

    provider_name: str
    presigns_uploads: bool = False
    serves_public_urls: bool = False

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> None:
        """Store an object. Raises StorageError."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Fetch object bytes. Raises ObjectNotFound or StorageError."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Raises StorageError; callers on delete paths log and continue."""

    @abstractmethod
    def list_objects(self, prefix: str = "") -> Iterator[BucketObject]:
        """Iterate every object under prefix, following pagination to the end."""

    def total_stored_bytes(self) -> int:
        """Sum of object sizes across the whole bucket."""
        return sum(int(obj.size or 0) for obj in self.list_objects())

    def issue_upload_handle(self, key: str, content_type: str) -> str:
        """Return a short-lived write capability for a direct client upload."""
        raise StorageError(f"{self.provider_name} does not issue upload URLs; use the proxied upload")

    def signed_read_url(self, key: str) -> str:
        """Return a time-limited read URL."""
        raise StorageError(f"{self.provider_name} does not issue signed read URLs")

    def public_read_url(self, key: str) -> str:
        """Return the anonymous public URL for an object."""
        raise StorageError(f"{self.provider_name} objects are not publicly readable")


class S3BlobStore(StorageBackend):
    """StorageBackend over a boto3 S3 client bound to one bucket."""

    def __init__(
        self,
        *,
        bucket_name: str,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: Optional[str] = None,
        path_style: bool = False,
        client: Optional[Any] = None,
    ):
        if not bucket_name:
            raise ValueError(f"{self.__class__.__name__} requires a bucket name")
        self.bucket_name = bucket_name
        self.endpoint_url = (endpoint_url or "").rstrip("/")

        if client is None:
            import boto3
            from botocore.config import Config

            client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url or None,
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
                region_name=region or None,
                config=Config(
                    s3={"addressing_style": "path" if path_style else "auto"},
                    connect_timeout=10,
                    read_timeout=60,
                    retries={"max_attempts": 3},
                ),
            )
        self._client = client

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"{self.provider_name} put failed for {key}: {exc}") from exc

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket_name, Key=key)
            body = response.get("Body")
            if body is None:
                raise StorageError(f"{self.provider_name} returned an empty body for {key}")
            return body.read()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFound(f"{key} not found in {self.provider_name}") from exc
            raise StorageError(f"{self.provider_name} get failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"{self.provider_name} get failed for {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"{self.provider_name} delete failed for {key}: {exc}") from exc

    def list_objects(self, prefix: str = "") -> Iterator[BucketObject]:
        continuation_token: Optional[str] = None
        while True:
            params = {"Bucket": self.bucket_name}
            if prefix:
                params["Prefix"] = prefix
            if continuation_token:
                params["ContinuationToken"] = continuation_token
            try:
                response = self._client.list_objects_v2(**params)
            except (ClientError, BotoCoreError) as exc:
                raise StorageError(f"{self.provider_name} list failed: {exc}") from exc

            for item in response.get("Contents") or []:
                key = item.get("Key")
                if not key:
                    continue
                yield BucketObject(
                    key=key,
                    size=int(item.get("Size") or 0),
                    last_modified=item.get("LastModified"),
                )

            if not response.get("IsTruncated"):
                break
            continuation_token = response.get("NextContinuationToken")
            if not continuation_token:
                break

    def _presign(self, client_method: str, params: dict, ttl_seconds: int) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod=client_method,
                Params={"Bucket": self.bucket_name, **params},
                ExpiresIn=int(ttl_seconds),
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"{self.provider_name} presign failed: {exc}") from exc


class PrivateBlobStore(S3BlobStore):
    """Private R2 bucket: presigned uploads, signed reads, proxied thumbnails."""

    provider_name = PROVIDER_R2
    presigns_uploads = True

    def __init__(
        self,
        *,
        upload_ttl_seconds: int = 600,
        download_ttl_seconds: int = 3600,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.upload_ttl_seconds = upload_ttl_seconds
        self.download_ttl_seconds = download_ttl_seconds

    def issue_upload_handle(self, key: str, content_type: str) -> str:
        return self._presign(
            "put_object",
            {"Key": key, "ContentType": content_type},
            self.upload_ttl_seconds,
        )

    def signed_read_url(self, key: str) -> str:
        return self._presign("get_object", {"Key": key}, self.download_ttl_seconds)


class PublicBlobStore(S3BlobStore):
    """Public Oracle bucket: proxied writes, direct anonymous reads."""

    provider_name = PROVIDER_ORACLE
    serves_public_urls = True

    def public_read_url(self, key: str) -> str:
        return f"{self.endpoint_url}/{self.bucket_name}/{key}"


def create_storage_backend(provider_name: str, *, client: Optional[Any] = None) -> StorageBackend:
    """Instantiate the backend recorded on a photo row."""
    normalized = (provider_name or "").strip().lower()
    if normalized == PROVIDER_R2:
        return PrivateBlobStore(
            bucket_name=settings.r2_bucket_name,
            endpoint_url=settings.r2_endpoint,
            access_key_id=settings.r2_access_key_id,
            secret_access_key=settings.r2_secret_access_key,
            region=settings.r2_region,
            upload_ttl_seconds=settings.upload_url_ttl_seconds,
            download_ttl_seconds=settings.download_url_ttl_seconds,
            client=client,
        )
    if normalized == PROVIDER_ORACLE:
        # OCI's S3 compatibility layer only accepts path-style addressing.
        return PublicBlobStore(
            bucket_name=settings.oracle_bucket_name,
            endpoint_url=settings.oracle_endpoint,
            access_key_id=settings.oracle_access_key_id,
            secret_access_key=settings.oracle_secret_access_key,
            region=settings.oracle_region,
            path_style=True,
            client=client,
        )
    raise ValidationError(f"Unknown storage provider: {provider_name}")


def sanitize_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a safe object-key basename."""
    name = str(filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    name = _WHITESPACE.sub("-", name)
    name = _UNSAFE_FILENAME_CHARS.sub("", name)
    name = name.lstrip(".")
    if not name:
        raise ValidationError("filename is required")
    return name


def build_object_key(slug_chain: Sequence[str], filename: str, now_ms: Optional[int] = None) -> str:
    """Build ``<slug>/.../<unix-millis>-<sanitized-filename>``.

    slug_chain is the live ancestor chain at upload time. Keys are never
    rewritten afterwards, so a renamed album keeps its old key prefix.
    """
    timestamp = int(now_ms if now_ms is not None else time.time() * 1000)
    basename = f"{timestamp}-{sanitize_filename(filename)}"
    segments = [segment for segment in slug_chain if segment]
    return "/".join([*segments, basename])


@lru_cache(maxsize=None)
def get_storage_backend(provider_name: str) -> StorageBackend:
    """Process-wide backend per provider, built from settings on first use."""
    return create_storage_backend(provider_name)


def delete_stored_objects(
    targets: Iterable[Tuple[str, str]],
    backend_for: Callable[[str], StorageBackend] = get_storage_backend,
    max_workers: Optional[int] = None,
) -> list[Tuple[str, str]]:
    """Delete (provider, key) objects concurrently; never raises.

    Every delete is attempted. Failures are logged and returned so callers
    can report them while still removing the rows.
    """
    targets = list(targets)
    if not targets:
        return []

    def _delete(provider_name: str, key: str) -> None:
        backend_for(provider_name).delete(key)

    failures: list[Tuple[str, str]] = []
    workers = max(1, min(max_workers or settings.max_workers, len(targets)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(_delete, provider, key): (provider, key) for provider, key in targets}
        for future in as_completed(futures):
            provider, key = futures[future]
            try:
                future.result()
            except Exception:
                logger.exception("Failed to delete %s object %s", provider, key)
                failures.append((provider, key))
    return failures


def measure_storage_usage(
    backend_for: Callable[[str], StorageBackend] = get_storage_backend,
) -> dict[str, int]:
    """Total bytes stored per provider, both buckets listed concurrently."""
    providers = (PROVIDER_R2, PROVIDER_ORACLE)
    with ThreadPoolExecutor(max_workers=len(providers)) as executor:
        futures = {name: executor.submit(lambda n: backend_for(n).total_stored_bytes(), name) for name in providers}
        return {name: futures[name].result() for name in providers}
