"""Persistent rotation state: mode, current pack and recently shown images."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .locking import DEFAULT_LOCK_TIMEOUT, FileLock
from .logging import get_logger
from .storage import read_json, write_json

RECENT_LIMIT = 10
MODES = ("manual", "rotate")


def _now_ms() -> int:
    return int(time.time() * 1000)


def push_recent(queue: Iterable[str], value: str, limit: int = RECENT_LIMIT) -> List[str]:
    """Move ``value`` to the most-recent end of ``queue`` and keep the last ``limit``."""

    updated = [item for item in queue if item != value]
    updated.append(value)
    return updated[-limit:] if limit > 0 else []


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


@dataclass
class RotationState:
    """What was shown where, used to enforce cooldowns across ticks."""

    mode: str = "manual"
    current_pack: Optional[str] = None
    last_outputs: List[str] = field(default_factory=list)
    last_assigned: Dict[str, str] = field(default_factory=dict)
    recent_by_output: Dict[str, List[str]] = field(default_factory=dict)
    recent_global: List[str] = field(default_factory=list)
    last_updated: int = 0

    def trim(self, limit: int = RECENT_LIMIT) -> None:
        self.recent_global = self.recent_global[-limit:] if limit > 0 else []
        for output, queue in list(self.recent_by_output.items()):
            self.recent_by_output[output] = queue[-limit:] if limit > 0 else []

    def set_mode(self, mode: str, now: Optional[int] = None) -> None:
        if mode not in MODES:
            raise ValueError(f"Unknown mode: {mode!r} (expected one of {', '.join(MODES)})")
        self.mode = mode
        self.last_updated = now if now is not None else _now_ms()

    def cleanup_disconnected_outputs(self, current: Iterable[str]) -> None:
        """Forget per-output history of displays that are no longer connected."""

        alive = list(current)
        alive_set = set(alive)
        for output in list(self.last_assigned):
            if output not in alive_set:
                del self.last_assigned[output]
        for output in list(self.recent_by_output):
            if output not in alive_set:
                del self.recent_by_output[output]
        self.last_outputs = alive
        self.trim()

    def commit(self, output: str, path: str, now: Optional[int] = None) -> None:
        """Record that ``path`` is now shown on ``output``."""

        self.last_assigned[output] = path
        self.recent_by_output[output] = push_recent(self.recent_by_output.get(output, []), path)
        self.recent_global = push_recent(self.recent_global, path)
        self.last_updated = now if now is not None else _now_ms()
        self.trim()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "currentPack": self.current_pack,
            "lastOutputs": list(self.last_outputs),
            "lastAssigned": dict(self.last_assigned),
            "recentByOutput": {output: list(queue) for output, queue in self.recent_by_output.items()},
            "recentGlobal": list(self.recent_global),
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "RotationState":
        """Build a state from persisted JSON, repairing anything malformed."""

        if not isinstance(payload, dict):
            return cls()

        mode = payload.get("mode")
        current_pack = payload.get("currentPack")
        assigned = payload.get("lastAssigned")
        by_output = payload.get("recentByOutput")
        last_updated = payload.get("lastUpdated")

        state = cls(
            mode=mode if mode in MODES else "manual",
            current_pack=current_pack if isinstance(current_pack, str) else None,
            last_outputs=_string_list(payload.get("lastOutputs")),
            last_assigned=(
                {k: v for k, v in assigned.items() if isinstance(v, str)} if isinstance(assigned, dict) else {}
            ),
            recent_by_output=(
                {k: _string_list(v) for k, v in by_output.items()} if isinstance(by_output, dict) else {}
            ),
            recent_global=_string_list(payload.get("recentGlobal")),
            last_updated=(
                last_updated if isinstance(last_updated, int) and not isinstance(last_updated, bool) else 0
            ),
        )
        state.trim()
        return state


class StateStore:
    """Loads and saves :class:`RotationState` as ``state.json``."""

    def __init__(self, path: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT, logger=None) -> None:
        self.path = path
        self._lock = FileLock(path, timeout=lock_timeout)
        self.logger = logger or get_logger("wallcycle.state")

    def lock(self) -> FileLock:
        """Advisory lock to hold across a load/mutate/save cycle."""

        return self._lock

    def load(self) -> RotationState:
        raw = read_json(self.path, None)
        if not isinstance(raw, dict) or not raw:
            state = RotationState()
            write_json(self.path, state.to_dict())
            if raw is not None:
                self.logger.warning("state.reset", path=str(self.path))
            return state

        state = RotationState.from_dict(raw)
        repaired = state.to_dict()
        if repaired != raw:
            self.logger.info("state.repaired", path=str(self.path))
            write_json(self.path, repaired)
        return state

    def save(self, state: RotationState) -> bool:
        """Persist ``state``; returns ``False`` when the file already matches."""

        payload = state.to_dict()
        if read_json(self.path, None) == payload:
            return False
        write_json(self.path, payload)
        return True
