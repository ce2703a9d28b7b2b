"""Static URL source: fixed image URLs downloaded into the cache."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..candidates import Candidate, candidate_id, sha256_hex
from ..config import StaticUrlPackConfig
from ..errors import HydrationFailure
from ..locking import FileLock
from ..services.http_client import NetworkError
from ..storage import IMAGE_EXTENSIONS, read_json, write_json
from .base import SourceContext, SourceStatus, WallpaperSource

DEFAULT_EXTENSION = ".jpg"


def _extension_for(url: str) -> str:
    suffix = os.path.splitext(urlparse(url).path)[1].lower()
    return suffix if suffix in IMAGE_EXTENSIONS else DEFAULT_EXTENSION


class StaticUrlSource(WallpaperSource):
    """Expose each configured URL (or ``count`` draws of it) as a candidate.

    With ``different_images`` enabled the same URL may be drawn several
    times; every draw gets its own ordinal, id and cache file, which suits
    endpoints that serve a random image per request.
    """

    def __init__(self, name: str, config: StaticUrlPackConfig, context: SourceContext) -> None:
        self.name = name
        self.config = config
        self.context = context
        self.index_path = context.cache.cache_dir / "indexes" / f"{name}.json"
        self._index_lock = FileLock(self.index_path, timeout=context.cache.lock_timeout)
        self.pack_dir = context.cache.download_dir / name
        self._last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------
    def _planned_count(self) -> int:
        urls = self.config.url_list
        if self.config.different_images:
            return self.config.count or len(urls)
        return 1

    def _build_candidates(self) -> List[Candidate]:
        urls = self.config.url_list
        metadata: Dict[str, Any] = {}
        if self.config.author_name:
            metadata["authorName"] = self.config.author_name
        if self.config.author_url:
            metadata["authorUrl"] = self.config.author_url
        if self.config.post_url:
            metadata["postUrl"] = self.config.post_url

        candidates: List[Candidate] = []
        for ordinal in range(self._planned_count()):
            url = urls[ordinal % len(urls)]
            identifier = candidate_id(self.name, url, ordinal)
            local_path = self.pack_dir / f"{sha256_hex(identifier)}{_extension_for(url)}"
            candidates.append(
                Candidate(
                    id=identifier,
                    source=self.name,
                    url=url,
                    local_path_hint=str(local_path),
                    ttl_seconds=self.config.ttl_sec,
                    metadata=dict(metadata),
                )
            )
        return candidates

    def refresh_index(self) -> int:
        candidates = self._build_candidates()
        with self._index_lock:
            write_json(
                self.index_path,
                {
                    "updatedAt": int(time.time() * 1000),
                    "candidates": [candidate.to_dict() for candidate in candidates],
                },
            )
        self.context.logger.debug("source.index_refreshed", pack=self.name, candidates=len(candidates))
        return len(candidates)

    def _read_index(self) -> Dict[str, Any]:
        payload = read_json(self.index_path, {})
        return payload if isinstance(payload, dict) else {}

    def list_candidates(self) -> List[Candidate]:
        candidates = self._build_candidates()
        with self._index_lock:
            raw = self._read_index().get("candidates")
            indexed = [item.get("id") for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []
            if indexed != [candidate.id for candidate in candidates]:
                # Missing or written for a different configuration.
                self.refresh_index()
        return candidates

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------
    def local_path_for(self, candidate: Candidate) -> Path:
        return candidate.local_path

    def hydrate(self, candidate: Candidate) -> Path:
        path = self.local_path_for(candidate)
        if path.is_file() and path.stat().st_size > 0:
            return path
        http = self.context.http
        if http is None:
            raise HydrationFailure(f"No HTTP client available to download {candidate.url}")
        try:
            size = http.download(candidate.url, path, min_bytes=self.context.min_image_bytes)
        except NetworkError as exc:
            self._last_error = str(exc)
            self.context.logger.warning(
                "source.download_failed",
                pack=self.name,
                url=candidate.url,
                status=exc.status,
                error=str(exc),
            )
            raise HydrationFailure(f"Failed to download {candidate.url}: {exc}") from exc
        self.context.cache.record(candidate.id, path, size, candidate.ttl_seconds)
        self._last_error = None
        return path

    def status(self) -> SourceStatus:
        index = self._read_index()
        updated_at = index.get("updatedAt")
        raw = index.get("candidates")
        items, size = self.context.cache.pack_usage(self.name)
        return SourceStatus(
            name=self.name,
            ok=self._last_error is None,
            candidates=len(raw) if isinstance(raw, list) else 0,
            last_refresh=int(updated_at) if isinstance(updated_at, (int, float)) else None,
            cache_items=items,
            cache_bytes=size,
            last_error=self._last_error,
        )
