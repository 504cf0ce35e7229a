"""Shared dependencies for FastAPI endpoints."""

from typing import Callable

from galleria.image import ThumbnailPipeline
from galleria.storage import StorageBackend, get_storage_backend


_thumbnail_pipeline = None


def get_backend_resolver() -> Callable[[str], StorageBackend]:
    """Provider name -> storage backend lookup used by mutating endpoints."""
    return get_storage_backend


def get_thumbnail_pipeline() -> ThumbnailPipeline:
    """Process-wide thumbnail pipeline over the configured buckets."""
    global _thumbnail_pipeline
    if _thumbnail_pipeline is None:
        _thumbnail_pipeline = ThumbnailPipeline(get_storage_backend)
    return _thumbnail_pipeline
