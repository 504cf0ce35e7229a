"""Thumbnail and full-view image delivery for the private bucket."""

import base64
from dataclasses import dataclass
import io
import logging
from typing import Callable, Optional, Tuple

from PIL import Image, ImageFile, ImageOps

from galleria.errors import ValidationError
from galleria.metadata import PROVIDER_ORACLE
from galleria.settings import settings
from galleria.storage import StorageBackend, get_storage_backend

logger = logging.getLogger(__name__)

# Register HEIC support if available
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    HEIC_SUPPORTED = True
except ImportError:
    HEIC_SUPPORTED = False
    logger.warning("pillow-heif not installed. HEIC files will not be supported.")

# Owner uploads only; large panoramas exceed Pillow's default pixel limit.
Image.MAX_IMAGE_PIXELS = None
ImageFile.LOAD_TRUNCATED_IMAGES = True

PLACEHOLDER_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")
PLACEHOLDER_CONTENT_TYPE = "image/gif"
NO_CACHE = "no-cache"


HEIC_EXTENSIONS = (".heic", ".heif")


def is_heic(name: str) -> bool:
    return str(name or "").lower().endswith(HEIC_EXTENSIONS)


@dataclass
class RenderedImage:
    body: bytes
    content_type: str
    cache_control: str
    placeholder: bool = False


def placeholder_image() -> RenderedImage:
    return RenderedImage(
        body=PLACEHOLDER_GIF,
        content_type=PLACEHOLDER_CONTENT_TYPE,
        cache_control=NO_CACHE,
        placeholder=True,
    )


def read_dimensions(data: bytes) -> Tuple[Optional[int], Optional[int]]:
    """Return (width, height) after EXIF orientation, or (None, None) if unreadable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            orientation = img.getexif().get(0x0112)
    except Exception:
        return None, None
    if orientation in (5, 6, 7, 8):
        return height, width
    return width, height


class ThumbnailPipeline:
    """Fetch, orient, downscale and re-encode private-bucket images.

    Thumbnail mode caps the width at ``max_width``. Full mode ignores the
    requested width and keeps source resolution up to ``full_max_width``.
    Images are never enlarged.
    """

    def __init__(
        self,
        backend_for: Callable[[str], StorageBackend] = get_storage_backend,
        *,
        default_width: int = settings.thumbnail_default_width,
        max_width: int = settings.thumbnail_max_width,
        quality: int = settings.thumbnail_quality,
        full_max_width: int = settings.full_view_max_width,
        full_quality: int = settings.full_view_quality,
        cache_max_age: int = settings.thumbnail_cache_max_age,
    ):
        self.backend_for = backend_for
        self.default_width = default_width
        self.max_width = max_width
        self.quality = quality
        self.full_max_width = full_max_width
        self.full_quality = full_quality
        self.cache_control = f"public, max-age={cache_max_age}, s-maxage={cache_max_age}"

    def target_width(self, requested_width: Optional[int], full_quality: bool = False) -> int:
        if full_quality:
            return self.full_max_width
        try:
            width = int(requested_width) if requested_width is not None else self.default_width
        except (TypeError, ValueError):
            width = self.default_width
        if width <= 0:
            width = self.default_width
        return min(width, self.max_width)

    def transcode(self, data: bytes, width: int, quality: int) -> bytes:
        """Decode, auto-rotate, shrink to at most ``width`` px wide and encode progressive JPEG."""
        with Image.open(io.BytesIO(data)) as source:
            img = ImageOps.exif_transpose(source)
            if img.mode != "RGB":
                img = img.convert("RGB")
            if img.width > width:
                height = max(1, round(img.height * width / img.width))
                img = img.resize((width, height), Image.Resampling.LANCZOS)

            buffer = io.BytesIO()
            img.save(buffer, format="JPEG", quality=quality, progressive=True, optimize=True)
            return buffer.getvalue()

    def render(
        self,
        key: str,
        provider: str,
        requested_width: Optional[int] = None,
        full_quality: bool = False,
    ) -> RenderedImage:
        """Render one object; any fetch or decode failure yields the placeholder GIF.

        Raises:
            ValidationError: Missing key, or a public-bucket object, which is
                served by redirect to its public URL instead.
        """
        if not key:
            raise ValidationError("key is required")
        if provider == PROVIDER_ORACLE:
            raise ValidationError("Public objects are served from their public URL")

        width = self.target_width(requested_width, full_quality)
        quality = self.full_quality if full_quality else self.quality
        try:
            data = self.backend_for(provider).get(key)
            body = self.transcode(data, width, quality)
        except Exception:
            if is_heic(key) and not HEIC_SUPPORTED:
                logger.warning("Serving placeholder for %s: pillow-heif is not installed", key)
            else:
                logger.warning("Serving placeholder for %s (%s)", key, provider, exc_info=True)
            return placeholder_image()

        return RenderedImage(body=body, content_type="image/jpeg", cache_control=self.cache_control)
