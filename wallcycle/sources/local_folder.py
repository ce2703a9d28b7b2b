"""Local folder source: images already on disk."""

from __future__ import annotations

from pathlib import Path
from typing import List

from ..candidates import Candidate, candidate_id
from ..config import LocalPackConfig
from ..errors import HydrationFailure
from ..storage import expand_path, list_images
from .base import SourceContext, SourceStatus, WallpaperSource

SOURCE_TAG = "local"


class LocalFolderSource(WallpaperSource):
    """Scan the configured folders recursively; hydration is a file check."""

    def __init__(self, name: str, config: LocalPackConfig, context: SourceContext) -> None:
        self.name = name
        self.config = config
        self.context = context

    def _scan(self) -> List[Path]:
        images: List[Path] = []
        seen = set()
        for root in self.config.paths:
            for image in list_images(expand_path(root)):
                if image not in seen:
                    seen.add(image)
                    images.append(image)
        return images

    def refresh_index(self) -> int:
        return len(self._scan())

    def list_candidates(self) -> List[Candidate]:
        images = self._scan()
        # Shuffled so a max_candidates cap samples the folder instead of its first files.
        self.context.rng.shuffle(images)
        return [
            Candidate(
                id=candidate_id(SOURCE_TAG, str(image)),
                source=SOURCE_TAG,
                url=image.as_uri(),
                local_path_hint=str(image),
            )
            for image in images
        ]

    def local_path_for(self, candidate: Candidate) -> Path:
        return candidate.local_path

    def hydrate(self, candidate: Candidate) -> Path:
        path = self.local_path_for(candidate)
        if not path.is_file():
            raise HydrationFailure(f"Local image no longer exists: {path}")
        return path

    def status(self) -> SourceStatus:
        missing = [str(root) for root in self.config.paths if not expand_path(root).exists()]
        return SourceStatus(
            name=self.name,
            ok=not missing,
            candidates=len(self._scan()),
            last_error=f"Missing paths: {', '.join(missing)}" if missing else None,
        )
