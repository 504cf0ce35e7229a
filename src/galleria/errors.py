"""Domain errors raised by the gallery core and mapped to HTTP in galleria.api."""


class GalleryError(RuntimeError):
    """Base class for gallery domain errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or ""


class Unauthorized(GalleryError):
    """Missing or insufficient identity."""

    status_code = 401


class Forbidden(Unauthorized):
    """Identity is known but may not view the requested album."""

    status_code = 403


class NotFound(GalleryError):
    """Album path does not resolve or the target row is missing."""

    status_code = 404


class ObjectNotFound(NotFound):
    """Storage object does not exist in the bucket."""


class ValidationError(GalleryError):
    """Request is missing required fields or carries invalid values."""

    status_code = 400


class StorageError(GalleryError):
    """Object storage put/get/delete/list failed."""

    status_code = 502


class ConsistencyConflict(GalleryError):
    """A concurrent write violated a uniqueness constraint; safe to retry."""

    status_code = 409
