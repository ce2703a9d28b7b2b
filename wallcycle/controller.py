"""Rotation orchestrator: resolve a pool, select, hydrate, apply and commit."""

from __future__ import annotations

import os
import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from .config import GlobalConfig, POOL_PACK_NAME, normalize_pack_name
from .errors import (
    HydrationFailure,
    NoImagesForPack,
    NoOutputsDetected,
    NoSelectionPossible,
    PackNotFound,
)
from .history import HistoryStore
from .logging import get_logger
from .pool import PoolAggregator, PoolResult, resolve_source_pool
from .selection import Pick, pick_images_for_outputs
from .sources import WallpaperSource
from .state import StateStore

HYDRATE_WORKERS = 4


class Applier(Protocol):
    def apply(self, picks: Iterable[Pick]) -> None:
        ...


@dataclass
class RotationResult:
    pack: str
    outputs: List[str]
    picks: List[Pick]
    failures: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "pack": self.pack,
            "outputs": list(self.outputs),
            "picks": [pick.to_dict() for pick in self.picks],
        }
        if self.failures:
            payload["failures"] = self.failures
        return payload


@dataclass
class HydratePackResult:
    pack: str
    downloaded: int
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"pack": self.pack, "downloaded": self.downloaded}
        if self.failed:
            payload["failed"] = self.failed
        return payload


class Orchestrator:
    """Runs one rotation tick end to end.

    Every collaborator is injected so a tick can run against fake outputs,
    sources and appliers. The rotation state lock is held for the whole
    tick, which keeps concurrent invocations from interleaving commits.
    """

    def __init__(
        self,
        config: GlobalConfig,
        *,
        sources: Mapping[str, WallpaperSource],
        aggregator: PoolAggregator,
        state_store: StateStore,
        applier: Applier,
        detect_outputs: Callable[[], List[str]],
        history: Optional[HistoryStore] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        logger=None,
    ) -> None:
        self.config = config
        self.sources = sources
        self.aggregator = aggregator
        self.state_store = state_store
        self.applier = applier
        self.detect_outputs = detect_outputs
        self.history = history
        self.rng = rng or random.Random()
        self.clock = clock
        self.logger = logger or get_logger("wallcycle.rotate")

    # ------------------------------------------------------------------
    # Pool resolution
    # ------------------------------------------------------------------
    def _resolve_pool(self, requested_pack: Optional[str]) -> Tuple[str, PoolResult]:
        if requested_pack:
            name = normalize_pack_name(requested_pack)
            if name == POOL_PACK_NAME:
                return name, self.aggregator.aggregate()
            source = self.sources.get(name)
            if source is None:
                raise PackNotFound(requested_pack)
            return name, resolve_source_pool(name, source, self.logger)

        if self.aggregator.enabled:
            return POOL_PACK_NAME, self.aggregator.aggregate()
        if not self.sources:
            raise PackNotFound()
        name = self.rng.choice(sorted(self.sources))
        return name, resolve_source_pool(name, self.sources[name], self.logger)

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------
    def _hydrate_one(self, path: str, pool: PoolResult) -> None:
        owner = pool.owners.get(path)
        if owner is None:
            raise HydrationFailure(f"No source can provide {path}")
        source_name, candidate = owner
        self.sources[source_name].hydrate(candidate)

    def _hydrate_picks(self, picks: List[Pick], pool: PoolResult) -> Tuple[List[Pick], List[Dict[str, str]]]:
        missing = sorted({pick.path for pick in picks if not os.path.isfile(pick.path)})
        if not missing:
            return picks, []

        errors: Dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=len(missing)) as executor:
            futures = {path: executor.submit(self._hydrate_one, path, pool) for path in missing}
            for path, future in futures.items():
                try:
                    future.result()
                except Exception as exc:
                    errors[path] = str(exc)
                    self.logger.warning("rotate.hydration_failed", path=path, error=str(exc))

        failures = [
            {"output": pick.output, "path": pick.path, "error": errors[pick.path]}
            for pick in picks
            if pick.path in errors
        ]
        kept = [pick for pick in picks if pick.path not in errors]
        if not kept:
            raise HydrationFailure("Failed to hydrate any selected image", failures=failures)
        return kept, failures

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def rotate(self, requested_pack: Optional[str] = None) -> RotationResult:
        """Select, hydrate and apply one image per connected output."""

        with self.state_store.lock():
            state = self.state_store.load()
            outputs = list(self.detect_outputs())
            if not outputs:
                raise NoOutputsDetected()
            state.cleanup_disconnected_outputs(outputs)

            pack, pool = self._resolve_pool(requested_pack)
            if not pool.pool:
                raise NoImagesForPack(pack)

            picks = pick_images_for_outputs(outputs, pool.pool, state, self.config.selection, self.rng)
            if not picks:
                raise NoSelectionPossible(pack)

            picks, failures = self._hydrate_picks(picks, pool)
            self.applier.apply(picks)

            now = int(self.clock() * 1000)
            for pick in picks:
                state.commit(pick.output, pick.path, now)
            state.current_pack = pack
            self.state_store.save(state)

        if self.history is not None:
            self.history.append(pack, [(pick.output, pick.path) for pick in picks], now)

        self.logger.info(
            "rotate.completed",
            pack=pack,
            outputs=outputs,
            applied=len(picks),
            failed=len(failures),
        )
        return RotationResult(pack=pack, outputs=outputs, picks=picks, failures=failures)

    def hydrate_pack(self, name: str, count: int) -> HydratePackResult:
        """Download up to ``count`` images of a pack without applying them."""

        pack = normalize_pack_name(name)
        source = self.sources.get(pack)
        if source is None:
            raise PackNotFound(name)

        source.refresh_index()
        candidates = source.list_candidates()[: max(0, count)]
        if not candidates:
            return HydratePackResult(pack=pack, downloaded=0)

        errors: List[str] = []
        with ThreadPoolExecutor(max_workers=min(HYDRATE_WORKERS, len(candidates))) as executor:
            futures = [executor.submit(source.hydrate, candidate) for candidate in candidates]
            for candidate, future in zip(candidates, futures):
                try:
                    future.result()
                except Exception as exc:
                    errors.append(str(exc))
                    self.logger.warning("hydrate.failed", pack=pack, url=candidate.url, error=str(exc))

        downloaded = len(candidates) - len(errors)
        if downloaded == 0:
            raise HydrationFailure(f"Hydrate failed for pack {pack}: {errors[0]}")
        self.logger.info("hydrate.completed", pack=pack, downloaded=downloaded, failed=len(errors))
        return HydratePackResult(pack=pack, downloaded=downloaded, failed=len(errors))
