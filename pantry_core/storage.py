"""
Key-value stores for persisted client state (credential, profile, caches).

Screens never reach for a global: the store is passed in. MemoryStore is for
tests and throwaway sessions; JsonFileStore persists to one JSON document and
rewrites it atomically (temp file + os.replace) so a crash mid-write never
leaves a torn file behind.
"""

import json
import os
import threading
from pathlib import Path

from .config import log


class MemoryStore:
    def __init__(self, initial=None):
        self._data = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key, default=None):
        with self._lock:
            return self._data.get(key, default)

    def set(self, key, value):
        with self._lock:
            self._data[key] = value

    def remove(self, key):
        with self._lock:
            self._data.pop(key, None)

    def clear(self):
        with self._lock:
            self._data.clear()

    def keys(self):
        with self._lock:
            return list(self._data)


class JsonFileStore(MemoryStore):
    """MemoryStore that writes through to a JSON file on every mutation."""

    def __init__(self, path):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self):
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log.warning("Storage file %s unreadable, starting empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            log.warning("Storage file %s is not a JSON object, starting empty", self.path)
            return {}
        return data

    def _flush(self):
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def set(self, key, value):
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key):
        with self._lock:
            if key in self._data:
                del self._data[key]
                self._flush()

    def clear(self):
        with self._lock:
            self._data.clear()
            self._flush()
