"""Base interfaces for wallcycle wallpaper sources."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, TYPE_CHECKING

from structlog.stdlib import BoundLogger

from ..candidates import Candidate

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from ..cache import CacheLedger
    from ..config import PackConfig
    from ..services.http_client import HttpClient


@dataclass
class SourceContext:
    """Runtime collaborators shared with sources when they are built."""

    logger: BoundLogger
    cache: "CacheLedger"
    http: Optional["HttpClient"] = None
    min_image_bytes: int = 0
    rng: random.Random = field(default_factory=random.Random)


@dataclass(frozen=True)
class SourceStatus:
    """Health summary reported by ``pool-status`` and ``pack-status``."""

    name: str
    ok: bool
    candidates: int
    last_refresh: Optional[int] = None
    cache_items: Optional[int] = None
    cache_bytes: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "ok": self.ok, "candidates": self.candidates}
        if self.last_refresh is not None:
            payload["lastRefresh"] = self.last_refresh
        if self.cache_items is not None:
            payload["cacheItems"] = self.cache_items
        if self.cache_bytes is not None:
            payload["cacheBytes"] = self.cache_bytes
        if self.last_error:
            payload["lastError"] = self.last_error
        return payload


class WallpaperSource(Protocol):
    """Capability every pack type implements."""

    name: str

    def refresh_index(self) -> int:
        """Re-discover candidates; returns how many are now known."""

    def list_candidates(self) -> List[Candidate]:
        """Candidates known right now, without touching the network."""

    def local_path_for(self, candidate: Candidate) -> Path:
        """Where ``candidate`` lives (or will live) on disk."""

    def hydrate(self, candidate: Candidate) -> Path:
        """Make ``candidate`` available as a local file and return its path."""

    def status(self) -> SourceStatus:
        """Summarize index freshness, cache usage and the last error."""


class SourceFactory(Protocol):
    """Factories create source instances from pack configuration."""

    def __call__(self, name: str, config: "PackConfig", context: SourceContext) -> WallpaperSource:
        ...
