"""Hide duplicate photos left behind by repeated uploads and syncs."""

from collections import defaultdict
from dataclasses import dataclass, field
import logging
import re

from sqlalchemy.orm import Session

from galleria.cache import invalidate_for
from galleria.metadata import Album, Photo, PHOTO_HIDDEN, PHOTO_VISIBLE

logger = logging.getLogger(__name__)

_CUID = re.compile(r"^c[a-z0-9]{24}$")
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_UPLOAD_TIMESTAMP = re.compile(r"^\d{13}-")


@dataclass
class DedupResult:
    processed: int = 0
    hidden_ids: list[str] = field(default_factory=list)

    @property
    def duplicates_found(self) -> int:
        return len(self.hidden_ids)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "duplicates_found": self.duplicates_found,
            "hidden_ids": list(self.hidden_ids),
        }


def normalize_filename(name: str) -> str:
    """Strip the prefixes that make copies of one file look distinct.

    Lowercases and trims, then drops a leading ``r2-`` and a leading
    13-digit upload timestamp with its dash, in that order.
    """
    normalized = str(name or "").lower().strip()
    if normalized.startswith("r2-"):
        normalized = normalized[3:]
    return _UPLOAD_TIMESTAMP.sub("", normalized)


def looks_machine_generated(value: str) -> bool:
    value = str(value or "")
    return bool(_CUID.match(value) or _UUID.match(value) or value.startswith("r2-"))


def _survivor_rank(row) -> tuple:
    album_name = row.album_name or ""
    generated = looks_machine_generated(album_name) or looks_machine_generated(row.album_slug)
    return (generated, len(album_name), row.uploaded_at, row.id)


def run_deduplication(db: Session) -> DedupResult:
    """Group visible photos by (file size, normalized filename) and hide all but one per group.

    The survivor prefers a human-named album, then the shortest album name,
    then the earliest upload. Nothing is deleted.
    """
    rows = db.query(
        Photo.id,
        Photo.filename,
        Photo.file_size,
        Photo.uploaded_at,
        Album.name.label("album_name"),
        Album.slug.label("album_slug"),
    ).join(
        Album, Album.id == Photo.album_id,
    ).filter(
        Photo.visibility != PHOTO_HIDDEN,
    ).all()

    groups = defaultdict(list)
    for row in rows:
        groups[(int(row.file_size or 0), normalize_filename(row.filename))].append(row)

    hidden_ids = []
    for members in groups.values():
        if len(members) < 2:
            continue
        members.sort(key=_survivor_rank)
        hidden_ids.extend(member.id for member in members[1:])

    try:
        if hidden_ids:
            db.query(Photo).filter(
                Photo.id.in_(hidden_ids),
                Photo.visibility == PHOTO_VISIBLE,
            ).update({Photo.visibility: PHOTO_HIDDEN}, synchronize_session=False)
            db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        invalidate_for("dedup")

    logger.info("Deduplication scanned %s photos, hid %s", len(rows), len(hidden_ids))
    return DedupResult(processed=len(rows), hidden_ids=hidden_ids)
