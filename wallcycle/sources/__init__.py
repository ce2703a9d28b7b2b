"""Wallpaper source interfaces and registry for wallcycle."""

from __future__ import annotations

from typing import Dict, Iterable

from .base import SourceContext, SourceFactory, SourceStatus, WallpaperSource
from .local_folder import LocalFolderSource
from .static_url import StaticUrlSource

__all__ = [
    "SourceContext",
    "SourceFactory",
    "SourceStatus",
    "WallpaperSource",
    "SourceRegistry",
    "build_sources",
    "default_registry",
]


class SourceRegistry:
    """Registry of source implementations keyed by pack ``type``."""

    def __init__(self) -> None:
        self._registry: Dict[str, SourceFactory] = {}

    def register(self, pack_type: str, factory: SourceFactory) -> None:
        if pack_type in self._registry:
            raise ValueError(f"Source type already registered: {pack_type}")
        self._registry[pack_type] = factory

    def get(self, pack_type: str) -> SourceFactory:
        try:
            return self._registry[pack_type]
        except KeyError as exc:
            raise KeyError(f"Unknown source type: {pack_type}") from exc

    def types(self) -> Iterable[str]:
        return self._registry.keys()


default_registry = SourceRegistry()
default_registry.register("local", LocalFolderSource)
default_registry.register("static_url", StaticUrlSource)


def build_sources(
    packs: Dict[str, object],
    context: SourceContext,
    registry: SourceRegistry = default_registry,
) -> Dict[str, WallpaperSource]:
    """Instantiate one source per configured pack."""

    sources: Dict[str, WallpaperSource] = {}
    for name, pack in packs.items():
        factory = registry.get(getattr(pack, "type"))
        sources[name] = factory(name, pack, context)
    return sources
