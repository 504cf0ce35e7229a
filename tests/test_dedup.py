"""Tests for duplicate hiding."""

from sqlalchemy.orm import Session

from galleria.dedup import looks_machine_generated, normalize_filename, run_deduplication
from galleria.metadata import Photo


def test_normalize_filename():
    assert normalize_filename("IMG_0001.JPG") == "img_0001.jpg"
    assert normalize_filename("1700000000000-IMG_0001.jpg") == "img_0001.jpg"
    assert normalize_filename("r2-1700000000000-img_0001.jpg") == "img_0001.jpg"
    assert normalize_filename("  Beach.png ") == "beach.png"
    # Only a 13-digit prefix counts as an upload timestamp.
    assert normalize_filename("2024-beach.png") == "2024-beach.png"


def test_machine_generated_names():
    assert looks_machine_generated("cjld2cjxh0000qzrmn831i7rn")
    assert looks_machine_generated("3f2504e0-4f89-11d3-9a0c-0305e82c3301")
    assert looks_machine_generated("r2-import")
    assert not looks_machine_generated("Travel")


def _visibility(db: Session, photo) -> str:
    db.refresh(photo)
    return photo.visibility


def test_human_named_album_survives(test_db: Session, album_factory, photo_factory):
    generated = album_factory("cjld2cjxh0000qzrmn831i7rn")
    travel = album_factory("Travel")
    in_generated = photo_factory(generated, "gen/1700000000000-beach.jpg", file_size=500, minutes=0)
    in_travel = photo_factory(travel, "travel/beach.jpg", filename="Beach.jpg", file_size=500, minutes=60)

    result = run_deduplication(test_db)

    assert result.duplicates_found == 1
    assert result.hidden_ids == [in_generated.id]
    assert _visibility(test_db, in_generated) == "hidden"
    assert _visibility(test_db, in_travel) == "visible"


def test_shorter_album_name_then_earlier_upload(test_db: Session, album_factory, photo_factory):
    long_name = album_factory("Summer Holidays")
    short_name = album_factory("Home")
    later = photo_factory(short_name, "home/a.jpg", file_size=7, minutes=10)
    earlier = photo_factory(short_name, "home/1700000000000-a.jpg", file_size=7, minutes=1)
    other = photo_factory(long_name, "summer/a.jpg", file_size=7, minutes=0)

    result = run_deduplication(test_db)

    assert sorted(result.hidden_ids) == sorted([later.id, other.id])
    assert _visibility(test_db, earlier) == "visible"


def test_different_sizes_are_not_duplicates(test_db: Session, album_factory, photo_factory):
    album = album_factory("Travel")
    photo_factory(album, "travel/a.jpg", file_size=1)
    photo_factory(album, "travel/1700000000000-a.jpg", file_size=2)

    assert run_deduplication(test_db).duplicates_found == 0


def test_hidden_photos_are_ignored_and_rows_kept(test_db: Session, album_factory, photo_factory):
    album = album_factory("Travel")
    photo_factory(album, "travel/a.jpg", file_size=3, visibility="hidden")
    photo_factory(album, "travel/1700000000000-a.jpg", file_size=3)

    result = run_deduplication(test_db)

    assert result.processed == 1
    assert result.duplicates_found == 0
    assert test_db.query(Photo).count() == 2


def test_repeat_runs_are_stable(test_db: Session, album_factory, photo_factory):
    album = album_factory("Travel")
    photo_factory(album, "travel/a.jpg", file_size=3, minutes=0)
    photo_factory(album, "travel/1700000000000-a.jpg", file_size=3, minutes=5)

    assert run_deduplication(test_db).duplicates_found == 1
    assert run_deduplication(test_db).duplicates_found == 0
    assert test_db.query(Photo).count() == 2
