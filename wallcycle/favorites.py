"""Favorites persistence: wallpaper paths the cache must never evict."""

from __future__ import annotations

from pathlib import Path
from typing import List

from .locking import DEFAULT_LOCK_TIMEOUT, FileLock
from .storage import read_json, write_json


class FavoritesStore:
    """JSON-backed set of favorite image paths (``{"favorites": [...]}``)."""

    def __init__(self, path: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = path
        self._lock = FileLock(path, timeout=lock_timeout)

    def _load(self) -> List[str]:
        payload = read_json(self.path, {"favorites": []})
        items = payload.get("favorites") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return []
        return [str(item) for item in items if isinstance(item, str) and item]

    def list(self) -> List[str]:
        return self._load()

    def add(self, path: str) -> bool:
        with self._lock:
            favorites = self._load()
            if path in favorites:
                return False
            favorites.append(path)
            write_json(self.path, {"favorites": favorites})
            return True

    def remove(self, path: str) -> bool:
        with self._lock:
            favorites = self._load()
            if path not in favorites:
                return False
            write_json(self.path, {"favorites": [item for item in favorites if item != path]})
            return True
