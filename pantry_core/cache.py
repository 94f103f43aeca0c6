"""
Local cache of expensive fetches (dashboard aggregate, shopping list).

Each entry is stored as ONE record {"value": ..., "lastFetchTime": epoch_ms}
under its resource key, so value and timestamp are replaced together by a
single store write and no reader can see one without the other.
"""

from dataclasses import dataclass

from .config import log
from .constants import CACHE_KEYS, FRESHNESS_WINDOW_MS, KEY_LAST_FETCH_TIME
from .errors import PantryError
from .scheduler import WallClock


@dataclass(frozen=True)
class CacheEntry:
    value: object
    fetched_at: float

    def age_ms(self, now):
        return now - self.fetched_at


def is_fresh(entry, window_ms, now) -> bool:
    """True iff now - fetched_at < window. Pure."""
    return (now - entry.fetched_at) < window_ms


@dataclass(frozen=True)
class CachedResult:
    value: object
    from_cache: bool
    stale: bool
    fetched_at: float


class LocalCache:
    def __init__(self, store, clock=None, window_ms=FRESHNESS_WINDOW_MS, keys=CACHE_KEYS):
        self._store = store
        self._clock = clock or WallClock()
        self.window_ms = window_ms
        self._keys = set(keys)

    def now(self):
        return self._clock.now()

    def read(self, key):
        raw = self._store.get(key)
        if raw is None:
            return None
        if (
            not isinstance(raw, dict)
            or "value" not in raw
            or not isinstance(raw.get(KEY_LAST_FETCH_TIME), (int, float))
        ):
            log.warning("Cache record %r is malformed, ignoring it", key)
            return None
        return CacheEntry(raw["value"], float(raw[KEY_LAST_FETCH_TIME]))

    def write(self, key, value):
        entry = CacheEntry(value, self.now())
        self._store.set(key, {"value": value, KEY_LAST_FETCH_TIME: entry.fetched_at})
        self._keys.add(key)
        return entry

    def invalidate(self, key):
        self._store.remove(key)

    def invalidate_all(self):
        for key in sorted(self._keys):
            self._store.remove(key)
        log.info("Cache cleared (%d keys)", len(self._keys))

    def is_fresh(self, entry, window_ms=None):
        return is_fresh(entry, self.window_ms if window_ms is None else window_ms, self.now())

    def read_fresh(self, key, window_ms=None):
        entry = self.read(key)
        if entry is not None and self.is_fresh(entry, window_ms):
            return entry
        return None


# ─── Read-through ────────────────────────────────────────────────
# The three phases are separate so a screen can run only the fetch on a
# worker and keep every cache read and write on the event loop.

def serve_fresh(cache, key, window_ms=None, force=False):
    """(entry, CachedResult) when the entry is fresh, else (entry or None, None)."""
    entry = cache.read(key)
    if not force and entry is not None and cache.is_fresh(entry, window_ms):
        return entry, CachedResult(entry.value, from_cache=True, stale=False, fetched_at=entry.fetched_at)
    return entry, None


def store_fetched(cache, key, value):
    fresh = cache.write(key, value)
    return CachedResult(value, from_cache=False, stale=False, fetched_at=fresh.fetched_at)


def serve_stale(key, entry, exc):
    log.warning("Refresh of %r failed, serving stale copy: %s", key, exc)
    return CachedResult(entry.value, from_cache=True, stale=True, fetched_at=entry.fetched_at)


def read_through(cache, key, fetch, window_ms=None, force=False):
    """
    Serve `key` from cache when fresh; otherwise call fetch(), store and serve.
    When fetch() fails, fall back to the stale entry (stale=True) if there is
    one, else re-raise.
    """
    entry, cached = serve_fresh(cache, key, window_ms, force)
    if cached is not None:
        return cached
    try:
        value = fetch()
    except PantryError as e:
        if entry is None:
            raise
        return serve_stale(key, entry, e)
    return store_fetched(cache, key, value)
