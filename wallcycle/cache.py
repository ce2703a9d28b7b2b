"""Cache ledger with TTL expiry, size budget and favorites protection."""

from __future__ import annotations

import os
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .config import CacheSettings, normalize_pack_name
from .locking import DEFAULT_LOCK_TIMEOUT, FileLock
from .logging import get_logger
from .storage import expand_path, list_images, read_json, remove_empty_dirs, write_json

FavoritesProvider = Callable[[], Iterable[str]]


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


def _normalize(path: Any) -> str:
    return os.path.abspath(os.path.expanduser(str(path)))


def _is_within(path: str, root: Path) -> bool:
    root_str = _normalize(root)
    candidate = _normalize(path)
    return candidate == root_str or candidate.startswith(root_str + os.sep)


@dataclass
class CacheEntry:
    """One materialized file, keyed by candidate id."""

    key: str
    local_path: str
    size_bytes: int
    added_at: int
    ttl_seconds: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms - self.added_at > self.ttl_seconds * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "localPath": self.local_path,
            "sizeBytes": self.size_bytes,
            "addedAt": self.added_at,
            "ttlSec": self.ttl_seconds,
        }

    @classmethod
    def from_dict(cls, payload: Any, default_ttl: int) -> Optional["CacheEntry"]:
        if not isinstance(payload, dict):
            return None
        key = payload.get("key")
        local_path = payload.get("localPath")
        if not isinstance(key, str) or not isinstance(local_path, str) or not local_path:
            return None
        size = payload.get("sizeBytes")
        added_at = payload.get("addedAt")
        ttl = payload.get("ttlSec")
        return cls(
            key=key,
            local_path=local_path,
            size_bytes=int(size) if isinstance(size, (int, float)) and size >= 0 else 0,
            added_at=int(added_at) if isinstance(added_at, (int, float)) else 0,
            ttl_seconds=int(ttl) if isinstance(ttl, (int, float)) and ttl > 0 else default_ttl,
        )


@dataclass(frozen=True)
class PruneResult:
    removed: int
    remaining: int
    stale: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"removed": self.removed, "remaining": self.remaining, "stale": self.stale}


@dataclass(frozen=True)
class HardPruneResult:
    removed_files: int
    kept_favorites: int
    remaining_index: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "removedFiles": self.removed_files,
            "keptFavorites": self.kept_favorites,
            "remainingIndex": self.remaining_index,
        }


class CacheLedger:
    """Index of downloaded files plus the policy that evicts them.

    The index lives in ``<cache_dir>/index.json``. Every read-modify-write
    cycle holds an advisory lock on that file so concurrent invocations do
    not clobber each other's entries; a thread lock serializes hydration
    workers inside one process.
    """

    def __init__(
        self,
        cache_dir: Path,
        download_dir: Path,
        max_bytes: int,
        default_ttl_seconds: int,
        favorites: Optional[FavoritesProvider] = None,
        *,
        clock: Callable[[], float] = time.time,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        logger=None,
    ) -> None:
        self.cache_dir = expand_path(cache_dir)
        self.download_dir = expand_path(download_dir)
        self.index_path = self.cache_dir / "index.json"
        self.max_bytes = max_bytes
        self.default_ttl_seconds = default_ttl_seconds
        self._favorites = favorites or (lambda: ())
        self._clock = clock
        self.lock_timeout = lock_timeout
        self._file_lock = FileLock(self.index_path, timeout=lock_timeout)
        self._thread_lock = threading.RLock()
        self.logger = logger or get_logger("wallcycle.cache")
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.download_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(
        cls,
        settings: CacheSettings,
        favorites: Optional[FavoritesProvider] = None,
        **kwargs: Any,
    ) -> "CacheLedger":
        return cls(
            cache_dir=settings.dir,
            download_dir=settings.download_dir,
            max_bytes=settings.max_bytes,
            default_ttl_seconds=settings.default_ttl_sec,
            favorites=favorites,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Index persistence
    # ------------------------------------------------------------------
    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._thread_lock:
            with self._file_lock:
                yield

    def load_entries(self) -> List[CacheEntry]:
        payload = read_json(self.index_path, {"entries": []})
        raw_entries = payload.get("entries") if isinstance(payload, dict) else None
        if not isinstance(raw_entries, list):
            return []
        entries = []
        for item in raw_entries:
            entry = CacheEntry.from_dict(item, self.default_ttl_seconds)
            if entry is not None:
                entries.append(entry)
        return entries

    def _save(self, entries: Iterable[CacheEntry]) -> None:
        write_json(self.index_path, {"entries": [entry.to_dict() for entry in entries]})

    def add_or_update(self, entry: CacheEntry) -> CacheEntry:
        """Upsert ``entry`` by key; an existing record is overwritten in place."""

        with self._locked():
            entries = self.load_entries()
            for existing in entries:
                if existing.key == entry.key:
                    existing.local_path = entry.local_path
                    existing.size_bytes = entry.size_bytes
                    existing.added_at = entry.added_at
                    existing.ttl_seconds = entry.ttl_seconds
                    break
            else:
                entries.append(entry)
            self._save(entries)
        self.logger.debug("cache.entry_recorded", key=entry.key, path=entry.local_path, size=entry.size_bytes)
        return entry

    def record(
        self,
        key: str,
        local_path: Path,
        size_bytes: int,
        ttl_seconds: Optional[int] = None,
    ) -> CacheEntry:
        """Record a freshly materialized file, stamping it with the current time."""

        return self.add_or_update(
            CacheEntry(
                key=key,
                local_path=str(local_path),
                size_bytes=size_bytes,
                added_at=_now_ms(self._clock),
                ttl_seconds=ttl_seconds or self.default_ttl_seconds,
            )
        )

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------
    def prune(self) -> PruneResult:
        """Drop expired entries, then evict oldest non-favorites until under budget."""

        with self._locked():
            entries = self.load_entries()
            kept, removed, stale = self._prune_entries(entries, lambda _entry: True)
            self._save(kept)

        result = PruneResult(removed=removed, remaining=len(kept), stale=stale)
        self.logger.info("cache.prune.completed", **result.to_dict())
        return result

    def prune_pack(self, pack_name: str) -> PruneResult:
        """Run :meth:`prune` on the entries stored under one pack's directory only."""

        pack_dir = self.resolve_pack_dir(pack_name) or self.download_dir / normalize_pack_name(pack_name)

        def in_pack(entry: CacheEntry) -> bool:
            return _is_within(entry.local_path, pack_dir)

        with self._locked():
            entries = self.load_entries()
            kept, removed, stale = self._prune_entries(entries, in_pack)
            self._save(kept)

        remaining = sum(1 for entry in kept if in_pack(entry))
        result = PruneResult(removed=removed, remaining=remaining, stale=stale)
        self.logger.info("cache.prune_pack.completed", pack=pack_name, **result.to_dict())
        return result

    def _prune_entries(
        self,
        entries: List[CacheEntry],
        in_scope: Callable[[CacheEntry], bool],
    ) -> Tuple[List[CacheEntry], int, int]:
        favorites = self._favorite_set()
        now = _now_ms(self._clock)
        removed = 0
        stale = 0

        outside: List[CacheEntry] = []
        survivors: List[CacheEntry] = []
        for entry in entries:
            if not in_scope(entry):
                outside.append(entry)
                continue
            if not os.path.exists(entry.local_path):
                stale += 1
                self.logger.debug("cache.entry_stale", key=entry.key, path=entry.local_path)
                continue
            if entry.is_expired(now) and _normalize(entry.local_path) not in favorites:
                self._delete_file(entry.local_path)
                removed += 1
                continue
            survivors.append(entry)

        # The budget applies to in-scope bytes only; entries outside the scope
        # are carried through untouched and never counted.
        def protected(entry: CacheEntry) -> bool:
            return _normalize(entry.local_path) in favorites

        queue = deque(sorted(survivors, key=lambda entry: entry.added_at))
        total = sum(entry.size_bytes for entry in queue)
        evictable = sum(1 for entry in queue if not protected(entry))
        while queue and total > self.max_bytes:
            if evictable == 0:
                self.logger.warning(
                    "cache.over_budget_favorites_only",
                    total_bytes=total,
                    max_bytes=self.max_bytes,
                )
                break
            head = queue.popleft()
            if protected(head):
                queue.append(head)
                continue
            self._delete_file(head.local_path)
            total -= head.size_bytes
            evictable -= 1
            removed += 1

        kept = sorted(list(queue) + outside, key=lambda entry: entry.added_at)
        return kept, removed, stale

    def hard_prune_all(self) -> HardPruneResult:
        """Delete every non-favorite image under the download directory."""

        result = self._hard_prune(self.download_dir)
        self.logger.info("cache.hard_prune.completed", **result.to_dict())
        return result

    def hard_prune_pack(self, pack_name: str) -> HardPruneResult:
        """Delete every non-favorite image in one pack's download directory."""

        pack_dir = self.resolve_pack_dir(pack_name)
        if pack_dir is None:
            remaining = len(self.load_entries())
            self.logger.info("cache.hard_prune_pack.missing_dir", pack=pack_name)
            return HardPruneResult(removed_files=0, kept_favorites=0, remaining_index=remaining)
        result = self._hard_prune(pack_dir)
        self.logger.info("cache.hard_prune_pack.completed", pack=pack_name, **result.to_dict())
        return result

    def _hard_prune(self, root: Path) -> HardPruneResult:
        favorites = self._favorite_set()
        removed_files = 0
        kept_favorites = 0
        for image in list_images(root):
            if _normalize(image) in favorites:
                kept_favorites += 1
                continue
            if self._delete_file(str(image)):
                removed_files += 1

        with self._locked():
            entries = self.load_entries()
            remaining = [
                entry
                for entry in entries
                if not _is_within(entry.local_path, root) or os.path.exists(entry.local_path)
            ]
            self._save(remaining)

        remove_empty_dirs(root)
        return HardPruneResult(
            removed_files=removed_files,
            kept_favorites=kept_favorites,
            remaining_index=len(remaining),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def resolve_pack_dir(self, pack_name: str) -> Optional[Path]:
        """Find the download subdirectory of ``pack_name``, tolerating name spelling."""

        direct = self.download_dir / pack_name
        if direct.is_dir():
            return direct
        if not self.download_dir.is_dir():
            return None
        target = normalize_pack_name(pack_name)
        for child in sorted(self.download_dir.iterdir()):
            if child.is_dir() and normalize_pack_name(child.name) == target:
                return child
        return None

    def pack_usage(self, pack_name: str) -> Tuple[int, int]:
        """Return ``(entry_count, total_bytes)`` recorded under a pack directory."""

        pack_dir = self.resolve_pack_dir(pack_name) or self.download_dir / normalize_pack_name(pack_name)
        entries = [entry for entry in self.load_entries() if _is_within(entry.local_path, pack_dir)]
        return len(entries), sum(entry.size_bytes for entry in entries)

    def total_bytes(self) -> int:
        return sum(entry.size_bytes for entry in self.load_entries())

    def _favorite_set(self) -> Set[str]:
        return {_normalize(path) for path in self._favorites()}

    def _delete_file(self, path: str) -> bool:
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            self.logger.warning("cache.delete_failed", path=path, error=str(exc))
            return False
        return True
