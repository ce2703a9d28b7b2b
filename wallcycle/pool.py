"""Aggregate several packs into one weighted, de-duplicated pool."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Tuple

from .candidates import Candidate
from .config import PoolSettings, PoolSourceSettings, POOL_PACK_NAME
from .errors import PoolNotEnabled
from .hashing import ContentHasher, Sha256ContentHasher
from .logging import get_logger
from .sources import WallpaperSource


@dataclass
class PoolResult:
    """Paths eligible for selection plus where each one came from.

    ``pool`` may repeat a path (pool weights); ``owners`` maps every path to
    the source name and candidate able to hydrate it.
    """

    pool: List[str] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    owners: Dict[str, Tuple[str, Candidate]] = field(default_factory=dict)


def _list_with_refresh(name: str, source: WallpaperSource, logger) -> List[Candidate]:
    candidates = source.list_candidates()
    if not candidates:
        logger.debug("pool.source_refresh", source=name)
        source.refresh_index()
        candidates = source.list_candidates()
    return candidates


def resolve_source_pool(name: str, source: WallpaperSource, logger=None) -> PoolResult:
    """Pool for a single pack: every candidate once, in listing order."""

    logger = logger or get_logger("wallcycle.pool")
    result = PoolResult()
    candidates = _list_with_refresh(name, source, logger)
    for candidate in candidates:
        path = str(source.local_path_for(candidate))
        if path in result.owners:
            continue
        result.pool.append(path)
        result.owners[path] = (name, candidate)
    result.stats[name] = len(candidates)
    return result


class PoolAggregator:
    """Combine configured pool sources with weights, caps and de-duplication."""

    def __init__(
        self,
        settings: PoolSettings,
        sources: Mapping[str, WallpaperSource],
        hasher: Optional[ContentHasher] = None,
        logger=None,
    ) -> None:
        self.settings = settings
        self.sources = sources
        self.hasher = hasher or Sha256ContentHasher()
        self.logger = logger or get_logger("wallcycle.pool")

    @property
    def enabled(self) -> bool:
        return self.settings.enabled and bool(self.settings.sources)

    def _dedupe_key(self, path: str, candidate: Candidate) -> str:
        mode = self.settings.dedupe
        if mode == "url":
            return candidate.url
        if mode == "hash":
            return self.hasher.digest(path)
        return path

    def aggregate(self) -> PoolResult:
        """Build the combined pool; a failing source contributes nothing."""

        if not self.enabled:
            raise PoolNotEnabled()

        result = PoolResult()
        seen: Set[str] = set()
        for entry in self.settings.sources:
            if entry.name == POOL_PACK_NAME:
                continue
            listed = self._collect(entry)
            if listed is None:
                result.stats[entry.name] = 0
                continue
            source, candidates = listed
            result.stats[entry.name] = len(candidates)
            self._merge(entry, source, candidates, seen, result)

        self.logger.debug("pool.aggregated", size=len(result.pool), stats=result.stats)
        return result

    def _collect(self, entry: PoolSourceSettings) -> Optional[Tuple[WallpaperSource, List[Candidate]]]:
        source = self.sources.get(entry.name)
        if source is None:
            self.logger.warning("pool.source_unknown", source=entry.name)
            return None
        try:
            candidates = _list_with_refresh(entry.name, source, self.logger)
        except Exception as exc:
            self.logger.warning("pool.source_failed", source=entry.name, error=str(exc))
            return None
        return source, candidates

    def _merge(
        self,
        entry: PoolSourceSettings,
        source: WallpaperSource,
        candidates: List[Candidate],
        seen: Set[str],
        result: PoolResult,
    ) -> None:
        limit = entry.max_candidates if entry.max_candidates is not None else len(candidates)
        for candidate in candidates[:limit]:
            path = str(source.local_path_for(candidate))
            key = self._dedupe_key(path, candidate)
            if key in seen:
                continue
            seen.add(key)
            result.pool.extend([path] * entry.weight)
            result.owners.setdefault(path, (entry.name, candidate))

    def status(self, refresh: bool = False) -> Dict[str, int]:
        """Per-source candidate counts, optionally refreshing every index first."""

        if not self.enabled:
            return {}
        if not refresh:
            return self.aggregate().stats

        stats: Dict[str, int] = {}
        for entry in self.settings.sources:
            source = self.sources.get(entry.name)
            if source is None:
                stats[entry.name] = 0
                continue
            try:
                source.refresh_index()
                stats[entry.name] = len(source.list_candidates())
            except Exception as exc:  # pragma: no cover - reported as an empty source
                self.logger.warning("pool.source_failed", source=entry.name, error=str(exc))
                stats[entry.name] = 0
        return stats
