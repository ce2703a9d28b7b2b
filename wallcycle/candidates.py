"""Common candidate record produced by every wallpaper source."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def candidate_id(source: str, url: str, ordinal: Optional[int] = None) -> str:
    """Stable identifier derived from where the image comes from."""

    seed = f"{source}:{url}" if ordinal is None else f"{source}:{url}:{ordinal}"
    return sha256_hex(seed)


@dataclass(frozen=True)
class Candidate:
    """An image a source can offer, local or not yet downloaded.

    Two candidates sharing ``id`` are the same image even when fetched twice.
    """

    id: str
    source: str
    url: str
    local_path_hint: str
    ttl_seconds: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def local_path(self) -> Path:
        return Path(self.local_path_hint)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "url": self.url,
            "localPathHint": self.local_path_hint,
        }
        if self.ttl_seconds is not None:
            payload["ttlSec"] = self.ttl_seconds
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload
