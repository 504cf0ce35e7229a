"""Process-local read-through cache with TTL expiry and tag invalidation.

Every read path that composes album tree, photo and cover data goes through
``cache.cached`` with the tags of the entity classes it touches. Mutations
never invalidate tags directly; they call ``invalidate_for`` with their
mutation kind so the tag set for each kind lives in one table.

The cache holds no state the database doesn't: clearing it at any time only
costs a reload.
"""

from __future__ import annotations

from collections import defaultdict
import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple

from galleria.settings import settings

logger = logging.getLogger(__name__)

TAG_ALBUMS = "albums"
TAG_PHOTOS = "photos"
TAG_ROLES = "roles"

ALBUM_VIEW_TTL_SECONDS = settings.album_view_ttl_seconds
PROVIDER_LOOKUP_TTL_SECONDS = settings.provider_lookup_ttl_seconds

MUTATION_TAGS: dict[str, frozenset[str]] = {
    "album.create": frozenset({TAG_ALBUMS}),
    "album.update": frozenset({TAG_ALBUMS}),
    "album.cover": frozenset({TAG_ALBUMS}),
    "album.delete": frozenset({TAG_ALBUMS, TAG_PHOTOS, TAG_ROLES}),
    "album.delete_empty": frozenset({TAG_ALBUMS, TAG_ROLES}),
    "album.permission": frozenset({TAG_ALBUMS, TAG_ROLES}),
    "photo.create": frozenset({TAG_PHOTOS, TAG_ALBUMS}),
    "photo.move": frozenset({TAG_PHOTOS, TAG_ALBUMS}),
    "photo.delete": frozenset({TAG_PHOTOS, TAG_ALBUMS}),
    "photo.caption": frozenset({TAG_PHOTOS}),
    "photo.like": frozenset({TAG_PHOTOS}),
    "photo.reorder": frozenset({TAG_PHOTOS}),
    "role.change": frozenset({TAG_ROLES}),
    "sync": frozenset({TAG_ALBUMS, TAG_PHOTOS}),
    "dedup": frozenset({TAG_PHOTOS, TAG_ALBUMS}),
}


class CacheLayer:
    """Read-through cache keyed by query shape and invalidated by tag.

    Each tag carries a generation counter that ``invalidate`` bumps. A loader
    result is only stored when none of its tags moved while it was loading,
    so a read racing a write never re-caches the pre-write value.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = settings.cache_max_entries,
    ):
        self._clock = clock
        self._max_entries = max(1, int(max_entries))
        self._entries: Dict[Hashable, Tuple[float, frozenset[str], Any]] = {}
        self._generations: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def cached(
        self,
        query_key: Hashable,
        ttl_seconds: float,
        tags: Iterable[str],
        loader: Callable[[], Any],
    ) -> Any:
        """Return the cached value for query_key, calling loader on miss or expiry."""
        tags = frozenset(tags)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(query_key)
            if entry and entry[0] > now:
                return copy.deepcopy(entry[2])
            started = {tag: self._generations[tag] for tag in tags}

        value = loader()
        with self._lock:
            if any(self._generations[tag] != generation for tag, generation in started.items()):
                return value
            self._prune(now)
            self._entries[query_key] = (now + ttl_seconds, tags, copy.deepcopy(value))
        return value

    def _prune(self, now: float) -> None:
        # Caller holds the lock.
        expired = [key for key, entry in self._entries.items() if entry[0] <= now]
        for key in expired:
            del self._entries[key]
        overflow = len(self._entries) - self._max_entries + 1
        if overflow > 0:
            soonest = sorted(self._entries, key=lambda key: self._entries[key][0])[:overflow]
            for key in soonest:
                del self._entries[key]

    def invalidate(self, tags: Iterable[str]) -> int:
        """Drop every entry carrying any of the given tags. Returns entries dropped."""
        targets = set(tags)
        if not targets:
            return 0
        with self._lock:
            for tag in targets:
                self._generations[tag] += 1
            stale = [key for key, (_, entry_tags, _) in self._entries.items() if entry_tags & targets]
            for key in stale:
                self._entries.pop(key, None)
        logger.debug("Invalidated %s cache entries for tags %s", len(stale), sorted(targets))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


cache = CacheLayer()


def invalidate_for(mutation: str, layer: Optional[CacheLayer] = None) -> int:
    """Invalidate the tags registered for a mutation kind."""
    try:
        tags = MUTATION_TAGS[mutation]
    except KeyError:
        raise ValueError(f"Unknown mutation kind: {mutation}")
    return (layer or cache).invalidate(tags)
