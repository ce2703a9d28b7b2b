"""Shared application context for wallcycle CLI commands and the supervisor."""

from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .cache import CacheLedger
from .config import ConfigPaths, GlobalConfig, load_global_config
from .controller import Applier, Orchestrator
from .favorites import FavoritesStore
from .hashing import Sha256ContentHasher
from .history import HistoryStore
from .logging import get_logger
from .managers import SwwwApplier
from .outputs import detect_outputs
from .pool import PoolAggregator
from .services import HttpClient
from .sources import SourceContext, WallpaperSource, build_sources
from .state import StateStore
from .storage import expand_path


@dataclass
class AppContext:
    """Container for resolved configuration used by CLI commands."""

    paths: ConfigPaths
    global_config: GlobalConfig

    @property
    def storage_dir(self) -> Path:
        return expand_path(self.global_config.runtime.storage_dir)

    @property
    def lock_timeout(self) -> float:
        return self.global_config.runtime.lock_timeout_seconds


@dataclass
class Runtime:
    """Wired collaborators for one invocation."""

    favorites: FavoritesStore
    ledger: CacheLedger
    sources: Dict[str, WallpaperSource]
    aggregator: PoolAggregator
    state_store: StateStore
    history: HistoryStore
    orchestrator: Orchestrator


def determine_paths(config_dir: Optional[Path]) -> ConfigPaths:
    """Resolve configuration paths based on optional CLI override."""

    return ConfigPaths.from_base_dir(config_dir) if config_dir else ConfigPaths.default()


def load_context(paths: ConfigPaths) -> AppContext:
    """Load the global configuration from disk."""

    global_config = load_global_config(paths.global_config)
    return AppContext(paths=paths, global_config=global_config)


def build_favorites(context: AppContext) -> FavoritesStore:
    return FavoritesStore(context.storage_dir / "favorites.json", lock_timeout=context.lock_timeout)


def build_ledger(context: AppContext, favorites: Optional[FavoritesStore] = None) -> CacheLedger:
    favorites = favorites or build_favorites(context)
    return CacheLedger.from_settings(
        context.global_config.cache,
        favorites.list,
        lock_timeout=context.lock_timeout,
    )


def build_runtime(
    context: AppContext,
    *,
    applier: Optional[Applier] = None,
    outputs: Optional[Callable[[], List[str]]] = None,
    http: Optional[HttpClient] = None,
    rng: Optional[random.Random] = None,
) -> Runtime:
    """Wire stores, sources and the orchestrator from configuration."""

    config = context.global_config
    rng = rng or random.Random()
    favorites = build_favorites(context)
    ledger = build_ledger(context, favorites)
    source_context = SourceContext(
        logger=get_logger("wallcycle.sources"),
        cache=ledger,
        http=http or HttpClient.from_settings(config.http),
        min_image_bytes=config.http.min_image_bytes,
        rng=rng,
    )
    sources = build_sources(config.packs, source_context)
    aggregator = PoolAggregator(config.pool, sources, Sha256ContentHasher())
    state_store = StateStore(context.storage_dir / "state.json", lock_timeout=context.lock_timeout)
    history = HistoryStore(context.storage_dir / "history.json", lock_timeout=context.lock_timeout)
    orchestrator = Orchestrator(
        config,
        sources=sources,
        aggregator=aggregator,
        state_store=state_store,
        applier=applier or SwwwApplier(config.transition, config.runtime.namespace),
        detect_outputs=outputs or detect_outputs,
        history=history,
        rng=rng,
    )
    return Runtime(
        favorites=favorites,
        ledger=ledger,
        sources=sources,
        aggregator=aggregator,
        state_store=state_store,
        history=history,
        orchestrator=orchestrator,
    )
