"""Storage backend abstractions."""

from .providers import (
    BucketObject,
    StorageBackend,
    S3BlobStore,
    PrivateBlobStore,
    PublicBlobStore,
    build_object_key,
    delete_stored_objects,
    measure_storage_usage,
    get_storage_backend,
    create_storage_backend,
    sanitize_filename,
)

__all__ = [
    "BucketObject",
    "StorageBackend",
    "S3BlobStore",
    "PrivateBlobStore",
    "PublicBlobStore",
    "build_object_key",
    "delete_stored_objects",
    "measure_storage_usage",
    "get_storage_backend",
    "create_storage_backend",
    "sanitize_filename",
]
