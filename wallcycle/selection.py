"""Pick one image per output while honouring cooldowns."""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterator, List, Optional, Sequence, Set

from .config import SelectionSettings
from .state import RotationState


class RelaxationLevel(IntEnum):
    """Rules tried in order until one admits a path; lower is stricter."""

    STRICT = 1
    RELAX_GLOBAL = 2
    RELAX_OUTPUT = 3
    RELAX_COOLDOWNS = 4
    ANY = 5

    def admits(
        self,
        path: str,
        banned_output: Set[str],
        banned_global: Set[str],
        used: Set[str],
        avoid_duplicates: bool,
    ) -> bool:
        if self is RelaxationLevel.ANY:
            return True
        if avoid_duplicates and path in used:
            return False
        if self is RelaxationLevel.STRICT:
            return path not in banned_output and path not in banned_global
        if self is RelaxationLevel.RELAX_GLOBAL:
            return path not in banned_output
        if self is RelaxationLevel.RELAX_OUTPUT:
            return path not in banned_global
        return True


@dataclass(frozen=True)
class Pick:
    output: str
    path: str
    level: RelaxationLevel = RelaxationLevel.STRICT

    def to_dict(self) -> Dict[str, str]:
        return {"output": self.output, "path": self.path}


def _tail(items: Sequence[str], count: int) -> Set[str]:
    if count <= 0:
        return set()
    return set(items[-count:])


def _rotated(pool: Sequence[str], start: int) -> Iterator[str]:
    size = len(pool)
    for offset in range(size):
        yield pool[(start + offset) % size]


def pick_images_for_outputs(
    outputs: Sequence[str],
    pool: Sequence[str],
    state: RotationState,
    config: SelectionSettings,
    rng: Optional[random.Random] = None,
) -> List[Pick]:
    """Choose a path for every output, degrading rules when the pool is small.

    The state is only read here; callers commit the picks once applied.
    """

    picks: List[Pick] = []
    if not pool:
        return picks

    rng = rng or random.Random()
    per_output = max(0, int(config.per_output_cooldown))
    global_cooldown = max(0, int(config.global_cooldown))
    avoid_duplicates = bool(config.avoid_same_tick_duplicates)

    banned_global = _tail(state.recent_global, global_cooldown)
    used: Set[str] = set()
    # One random starting point per tick so the first match is not always pool[0].
    start = rng.randrange(len(pool))

    for output in outputs:
        banned_output = _tail(state.recent_by_output.get(output, []), per_output)
        for level in RelaxationLevel:
            chosen = next(
                (
                    path
                    for path in _rotated(pool, start)
                    if level.admits(path, banned_output, banned_global, used, avoid_duplicates)
                ),
                None,
            )
            if chosen is not None:
                picks.append(Pick(output=output, path=chosen, level=level))
                used.add(chosen)
                break

    return picks
