"""Test image processing."""

import io

import pytest
from PIL import Image

from galleria.errors import ValidationError
import galleria.image as image_module
from galleria.image import PLACEHOLDER_GIF, ThumbnailPipeline, is_heic, read_dimensions


@pytest.fixture
def pipeline(backend_for):
    return ThumbnailPipeline(
        backend_for,
        default_width=400,
        max_width=800,
        quality=75,
        full_max_width=10000,
        full_quality=95,
        cache_max_age=604800,
    )


def _rotated_exif(orientation: int) -> bytes:
    exif = Image.Exif()
    exif[0x0112] = orientation
    return exif.tobytes()


def _open(body: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(body))
    img.load()
    return img


@pytest.mark.parametrize(
    "requested, expected",
    [(2000, 800), (300, 300), (None, 400), (0, 400), ("abc", 400)],
)
def test_target_width(pipeline: ThumbnailPipeline, requested, expected):
    assert pipeline.target_width(requested) == expected


def test_full_mode_ignores_requested_width(pipeline: ThumbnailPipeline):
    assert pipeline.target_width(300, full_quality=True) == 10000


def test_thumbnail_is_capped_jpeg(pipeline: ThumbnailPipeline, r2_client, image_bytes):
    r2_client.objects["travel/big.png"] = (image_bytes(2000, 1000, fmt="PNG"), "image/png")

    rendered = pipeline.render("travel/big.png", "r2", requested_width=2000)

    img = _open(rendered.body)
    assert img.format == "JPEG"
    assert img.size == (800, 400)
    assert img.info.get("progressive")
    assert rendered.content_type == "image/jpeg"
    assert rendered.cache_control == "public, max-age=604800, s-maxage=604800"
    assert not rendered.placeholder


def test_small_images_are_not_enlarged(pipeline: ThumbnailPipeline, r2_client, sample_image_data: bytes):
    r2_client.objects["a.jpg"] = (sample_image_data, "image/jpeg")

    rendered = pipeline.render("a.jpg", "r2", requested_width=600)

    assert _open(rendered.body).size == (100, 100)


def test_full_mode_keeps_source_resolution(pipeline: ThumbnailPipeline, r2_client, image_bytes):
    r2_client.objects["wide.jpg"] = (image_bytes(1600, 900), "image/jpeg")

    rendered = pipeline.render("wide.jpg", "r2", requested_width=100, full_quality=True)

    assert _open(rendered.body).size == (1600, 900)


def test_exif_orientation_is_applied(pipeline: ThumbnailPipeline, r2_client, image_bytes):
    r2_client.objects["portrait.jpg"] = (image_bytes(200, 100, exif=_rotated_exif(6)), "image/jpeg")

    rendered = pipeline.render("portrait.jpg", "r2", full_quality=True)

    assert _open(rendered.body).size == (100, 200)


def test_missing_object_yields_placeholder(pipeline: ThumbnailPipeline):
    rendered = pipeline.render("nope.jpg", "r2")

    assert rendered.placeholder
    assert rendered.body == PLACEHOLDER_GIF
    assert rendered.content_type == "image/gif"
    assert rendered.cache_control == "no-cache"


def test_corrupt_object_yields_placeholder(pipeline: ThumbnailPipeline, r2_client):
    r2_client.objects["bad.jpg"] = (b"not an image", "image/jpeg")

    assert pipeline.render("bad.jpg", "r2").placeholder


def test_public_objects_and_blank_keys_rejected(pipeline: ThumbnailPipeline):
    with pytest.raises(ValidationError):
        pipeline.render("a.jpg", "oracle")
    with pytest.raises(ValidationError):
        pipeline.render("", "r2")


def test_read_dimensions(image_bytes):
    assert read_dimensions(image_bytes(640, 480)) == (640, 480)
    assert read_dimensions(image_bytes(640, 480, exif=_rotated_exif(6))) == (480, 640)
    assert read_dimensions(b"garbage") == (None, None)


def test_is_heic():
    assert is_heic("travel/IMG_1.HEIC")
    assert is_heic("a.heif")
    assert not is_heic("a.jpg")
    assert not is_heic("")


def test_heic_without_plugin_names_the_missing_plugin(pipeline: ThumbnailPipeline, r2_client, monkeypatch, caplog):
    monkeypatch.setattr(image_module, "HEIC_SUPPORTED", False)
    r2_client.objects["travel/a.heic"] = (b"heic-bytes", "image/heic")

    with caplog.at_level("WARNING", logger="galleria.image"):
        assert pipeline.render("travel/a.heic", "r2").placeholder

    assert "pillow-heif is not installed" in caplog.text
