"""Detect connected displays through hyprctl, falling back to swww."""

from __future__ import annotations

import json
import subprocess
from typing import Callable, List, Sequence

from .logging import get_logger

Runner = Callable[..., "subprocess.CompletedProcess[str]"]
COMMAND_TIMEOUT = 10


def _run(runner: Runner, args: Sequence[str]) -> str:
    result = runner(list(args), check=True, capture_output=True, text=True, timeout=COMMAND_TIMEOUT)
    return result.stdout or ""


def _names_from_monitors(stdout: str) -> List[str]:
    parsed = json.loads(stdout)
    if not isinstance(parsed, list):
        return []
    return [str(item["name"]) for item in parsed if isinstance(item, dict) and item.get("name")]


def _from_hyprctl(runner: Runner) -> List[str]:
    return _names_from_monitors(_run(runner, ["hyprctl", "monitors", "-j"]))


def _from_hyprctl_instances(runner: Runner) -> List[str]:
    parsed = json.loads(_run(runner, ["hyprctl", "instances", "-j"]))
    candidates = ["0"]
    if isinstance(parsed, list):
        candidates.extend(
            str(item["instance"]).strip()
            for item in parsed
            if isinstance(item, dict) and str(item.get("instance") or "").strip()
        )
    for instance in candidates:
        try:
            names = _names_from_monitors(_run(runner, ["hyprctl", "--instance", instance, "monitors", "-j"]))
        except (OSError, subprocess.SubprocessError, ValueError):
            continue
        if names:
            return names
    return []


def _from_swww(runner: Runner) -> List[str]:
    names = []
    for line in _run(runner, ["swww", "query"]).splitlines():
        line = line.strip()
        index = line.find(":")
        if index > 0:
            names.append(line[:index].strip())
    return names


def detect_outputs(runner: Runner = subprocess.run, logger=None) -> List[str]:
    """Return the names of connected outputs, or an empty list when none answer."""

    logger = logger or get_logger("wallcycle.outputs")
    for strategy in (_from_hyprctl, _from_hyprctl_instances, _from_swww):
        try:
            names = strategy(runner)
        except (OSError, subprocess.SubprocessError, ValueError) as exc:
            logger.debug("outputs.strategy_failed", strategy=strategy.__name__, error=str(exc))
            continue
        if names:
            return names
    return []
