"""Content hashing used by the ``hash`` pool dedupe mode."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict, Protocol, Tuple

_CHUNK_SIZE = 1024 * 1024


class ContentHasher(Protocol):
    """Maps a pool path to a key identifying the image content."""

    def digest(self, path: str) -> str:
        ...


class Sha256ContentHasher:
    """SHA-256 of the file bytes, or of the path string when the file is not local yet.

    Digests are memoized per ``(path, mtime, size)`` so one aggregation pass
    never hashes the same file twice.
    """

    def __init__(self) -> None:
        self._memo: Dict[Tuple[str, float, int], str] = {}

    def digest(self, path: str) -> str:
        target = Path(path)
        try:
            stat = target.stat()
        except OSError:
            return "path:" + hashlib.sha256(path.encode("utf-8")).hexdigest()
        if not target.is_file():
            return "path:" + hashlib.sha256(path.encode("utf-8")).hexdigest()

        memo_key = (path, stat.st_mtime, stat.st_size)
        cached = self._memo.get(memo_key)
        if cached is not None:
            return cached

        sha = hashlib.sha256()
        try:
            with target.open("rb") as handle:
                for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                    sha.update(chunk)
        except OSError:
            return "path:" + hashlib.sha256(path.encode("utf-8")).hexdigest()
        digest = "sha256:" + sha.hexdigest()
        self._memo[memo_key] = digest
        return digest
