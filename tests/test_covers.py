"""Tests for album cover derivation."""

from sqlalchemy import event
from sqlalchemy.orm import Session

from galleria.covers import CoverRef, cover_for, resolve_covers


def test_valid_explicit_cover_wins(test_db: Session, album_factory, photo_factory):
    album = album_factory("Travel")
    photo_factory(album, "travel/early.jpg", minutes=0)
    chosen = photo_factory(album, "travel/chosen.jpg", minutes=10)
    album.cover_photo_id = chosen.id
    test_db.commit()

    assert cover_for(test_db, album) == CoverRef("travel/chosen.jpg", "r2")


def test_hidden_explicit_cover_falls_back(test_db: Session, album_factory, photo_factory):
    album = album_factory("Travel")
    photo_factory(album, "travel/early.jpg", minutes=0)
    hidden = photo_factory(album, "travel/hidden.jpg", minutes=5, visibility="hidden")
    album.cover_photo_id = hidden.id
    test_db.commit()

    assert cover_for(test_db, album).key == "travel/early.jpg"


def test_dangling_explicit_cover_falls_back(test_db: Session, album_factory, photo_factory):
    album = album_factory("Travel", cover_photo_id="00000000-0000-0000-0000-000000000000")
    photo_factory(album, "travel/only.jpg")

    assert cover_for(test_db, album).key == "travel/only.jpg"


def test_fallback_includes_direct_children_but_not_grandchildren(test_db: Session, album_factory, photo_factory):
    root = album_factory("Travel")
    child = album_factory("Japan", parent=root)
    grandchild = album_factory("Tokyo", parent=child)
    photo_factory(grandchild, "travel/japan/tokyo/oldest.jpg", minutes=0)
    photo_factory(child, "travel/japan/older.jpg", minutes=5)
    photo_factory(root, "travel/newest.jpg", minutes=10)

    covers = resolve_covers(test_db, [root, child])

    assert covers[root.id].key == "travel/japan/older.jpg"
    assert covers[child.id].key == "travel/japan/tokyo/oldest.jpg"


def test_hidden_photos_never_become_covers(test_db: Session, album_factory, photo_factory):
    album = album_factory("Travel")
    photo_factory(album, "travel/hidden.jpg", minutes=0, visibility="hidden")
    photo_factory(album, "travel/visible.jpg", minutes=30)

    assert cover_for(test_db, album).key == "travel/visible.jpg"


def test_album_without_visible_photos_has_no_cover(test_db: Session, album_factory, photo_factory):
    album = album_factory("Empty")
    photo_factory(album, "empty/hidden.jpg", visibility="hidden")

    assert cover_for(test_db, album) is None
    assert resolve_covers(test_db, []) == {}


def test_cover_reports_the_storage_provider(test_db: Session, album_factory, photo_factory):
    album = album_factory("Public")
    photo_factory(album, "public/a.jpg", provider="oracle")

    assert cover_for(test_db, album) == CoverRef("public/a.jpg", "oracle")


def test_covers_are_resolved_with_two_queries(test_db: Session, album_factory, photo_factory):
    albums = []
    for index in range(6):
        album = album_factory(f"Album {index}")
        photo = photo_factory(album, f"album-{index}/a.jpg", minutes=index)
        if index % 2 == 0:
            album.cover_photo_id = photo.id
        albums.append(album)
    test_db.commit()
    for album in albums:
        test_db.refresh(album)

    statements = []
    engine = test_db.get_bind()

    def count(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", count)
    try:
        covers = resolve_covers(test_db, albums)
    finally:
        event.remove(engine, "before_cursor_execute", count)

    assert len(statements) == 2
    assert all(covers[album.id] is not None for album in albums)
