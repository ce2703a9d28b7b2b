"""Append-only log of applied wallpapers."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .locking import DEFAULT_LOCK_TIMEOUT, FileLock
from .storage import read_json, write_json

HISTORY_LIMIT = 500


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: int
    pack: str
    output: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "pack": self.pack, "output": self.output, "path": self.path}

    @classmethod
    def from_dict(cls, payload: Any) -> Optional["HistoryEntry"]:
        if not isinstance(payload, dict):
            return None
        try:
            return cls(
                timestamp=int(payload["timestamp"]),
                pack=str(payload["pack"]),
                output=str(payload["output"]),
                path=str(payload["path"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


class HistoryStore:
    """``history.json`` holding the most recent :data:`HISTORY_LIMIT` entries."""

    def __init__(self, path: Path, limit: int = HISTORY_LIMIT, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = path
        self.limit = limit
        self._lock = FileLock(path, timeout=lock_timeout)

    def _load(self) -> List[HistoryEntry]:
        payload = read_json(self.path, {"entries": []})
        raw = payload.get("entries") if isinstance(payload, dict) else None
        if not isinstance(raw, list):
            return []
        entries = []
        for item in raw:
            entry = HistoryEntry.from_dict(item)
            if entry is not None:
                entries.append(entry)
        return entries

    def entries(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        """Stored entries, newest last; ``limit`` keeps only the newest ones."""

        items = self._load()
        if limit is not None and limit >= 0:
            return items[-limit:] if limit else []
        return items

    def append(self, pack: str, assignments: Iterable[tuple], now: Optional[int] = None) -> int:
        """Append one entry per ``(output, path)`` pair; returns how many were added."""

        timestamp = now if now is not None else int(time.time() * 1000)
        new_entries = [HistoryEntry(timestamp, pack, output, path) for output, path in assignments]
        if not new_entries:
            return 0
        with self._lock:
            items = self._load() + new_entries
            write_json(self.path, {"entries": [entry.to_dict() for entry in items[-self.limit:]]})
        return len(new_entries)

    def clear(self) -> int:
        with self._lock:
            removed = len(self._load())
            write_json(self.path, {"entries": []})
        return removed
